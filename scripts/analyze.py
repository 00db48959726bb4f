#!/usr/bin/env python3
"""Standalone analysis script - analyzes a project, optionally stores it, and exits."""

import asyncio
import json
import logging
import os
import sys
from pathlib import Path

# Setup logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def main():
    """Main analysis function."""
    from codelens.analysis.engine import AnalysisEngine, AnalysisEngineConfig
    from codelens.graph_db.neo4j_client import CodeGraphDB
    from codelens.tools.analysis_tool import AnalysisTool

    workspace_path = os.getenv("WORKSPACE_PATH", "/workspace")
    store_results = os.getenv("STORE_RESULTS", "false").lower() == "true"
    include_tests = os.getenv("INCLUDE_TESTS", "false").lower() == "true"
    output_path = os.getenv("OUTPUT_PATH")
    exclude_patterns_str = os.getenv("EXCLUDE_PATTERNS", "")

    if not Path(workspace_path).exists():
        logger.error(f"Project path does not exist: {workspace_path}")
        sys.exit(1)

    logger.info(f"Starting analysis of: {workspace_path}")

    graph_db = None
    if store_results:
        neo4j_uri = os.getenv("NEO4J_URI", "bolt://localhost:7687")
        logger.info(f"Neo4j: {neo4j_uri}")
        graph_db = CodeGraphDB(
            uri=neo4j_uri,
            user=os.getenv("NEO4J_USER", "neo4j"),
            password=os.getenv("NEO4J_PASSWORD", "codelens"),
        )
        if not graph_db.verify_connectivity():
            logger.error("Neo4j connectivity check failed!")
            sys.exit(1)
        graph_db.create_indexes()

    engine = AnalysisEngine(
        graph=graph_db,
        config=AnalysisEngineConfig(
            enable_real_time_analysis=False,
            analysis_depth=os.getenv("ANALYSIS_DEPTH", "detailed"),
        ),
    )
    tool = AnalysisTool(engine, graph=graph_db)

    options = {"include_tests": include_tests}
    exclude_patterns = [p.strip() for p in exclude_patterns_str.split(",") if p.strip()]
    if exclude_patterns:
        options["exclude_patterns"] = exclude_patterns

    try:
        response = await tool.analyze_project(workspace_path, options, store_results)
    finally:
        engine.stop()
        if graph_db is not None:
            graph_db.close()

    if not response["success"]:
        logger.error(f"Analysis failed: {response['error']}")
        sys.exit(1)

    summary = response["summary"]
    logger.info("=" * 60)
    logger.info(f"Files analyzed: {response['files_analyzed']} ({response['files_failed']} failed)")
    logger.info(f"Entities: {response['total_entities']}")
    logger.info(f"Relationships: {response['total_relationships']}")
    logger.info(f"Overall health: {summary['overall_health']}")
    logger.info(f"Critical issues: {summary['critical_issues']}")
    for recommendation in summary["recommendations"]:
        logger.info(f"  - {recommendation}")
    logger.info("=" * 60)

    if output_path:
        Path(output_path).write_text(json.dumps(response, indent=2, default=str))
        logger.info(f"Wrote analysis to {output_path}")


if __name__ == "__main__":
    asyncio.run(main())
