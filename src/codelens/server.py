"""FastMCP server exposing TypeScript/JavaScript code analysis."""

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

from mcp.server.fastmcp import FastMCP

from .analysis.engine import AnalysisEngine, AnalysisEngineConfig
from .analysis.file_watcher import SourceWatcher
from .graph_db.neo4j_client import CodeGraphDB
from .tools.analysis_tool import AnalysisTool
from .tools.query_tool import QueryTool
from .vector_db.code_vectors import CodeVectorStore
from .vector_db.embeddings import OllamaEmbeddings

# Configure logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", "/tmp/codelens-server.log")

formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

console_handler = logging.StreamHandler()
console_handler.setLevel(log_level)
console_handler.setFormatter(formatter)

file_handler = logging.FileHandler(log_file)
file_handler.setLevel(log_level)
file_handler.setFormatter(formatter)

root_logger = logging.getLogger()
root_logger.setLevel(log_level)
root_logger.addHandler(console_handler)
root_logger.addHandler(file_handler)

logger = logging.getLogger(__name__)

mcp = FastMCP("codelens")

# Global components (initialized on startup)
graph_db: Optional[CodeGraphDB] = None
vector_store: Optional[CodeVectorStore] = None
embeddings: Optional[OllamaEmbeddings] = None
engine: Optional[AnalysisEngine] = None
analysis_tool: Optional[AnalysisTool] = None
query_tool: Optional[QueryTool] = None
file_watcher: Optional[SourceWatcher] = None


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def get_env_config():
    """Get configuration from environment variables."""
    return {
        "workspace_path": os.getenv("WORKSPACE_PATH", "/workspace"),
        "enable_graph": _env_flag("ENABLE_GRAPH", "true"),
        "neo4j_uri": os.getenv("NEO4J_URI", "bolt://localhost:7687"),
        "neo4j_user": os.getenv("NEO4J_USER", "neo4j"),
        "neo4j_password": os.getenv("NEO4J_PASSWORD", "codelens"),
        "enable_semantic_search": _env_flag("ENABLE_SEMANTIC_SEARCH", "false"),
        "qdrant_host": os.getenv("QDRANT_HOST", "localhost"),
        "qdrant_port": int(os.getenv("QDRANT_PORT", "6333")),
        "ollama_host": os.getenv("OLLAMA_HOST", "http://localhost:11434"),
        "embedding_model": os.getenv("EMBEDDING_MODEL", "nomic-embed-text"),
        "enable_watcher": _env_flag("ENABLE_FILE_WATCHER", "true"),
        "watcher_debounce": float(os.getenv("WATCHER_DEBOUNCE_SECONDS", "2.0")),
        "max_concurrent_analysis": int(os.getenv("MAX_CONCURRENT_ANALYSIS", "3")),
        "analysis_depth": os.getenv("ANALYSIS_DEPTH", "detailed"),
    }


async def handle_file_changes(modified_files: set, deleted_files: set) -> None:
    """Handle file changes detected by the watcher.

    Args:
        modified_files: Set of modified/created file paths
        deleted_files: Set of deleted file paths
    """
    if analysis_tool is None:
        logger.warning("Components not initialized, skipping file change handling")
        return

    logger.info(
        f"File watcher detected changes: {len(modified_files)} modified, "
        f"{len(deleted_files)} deleted"
    )
    await analysis_tool.handle_file_changes(modified_files, deleted_files)


async def initialize_components():
    """Initialize all components on startup."""
    global graph_db, vector_store, embeddings, engine, analysis_tool, query_tool, file_watcher

    config = get_env_config()
    logger.info("Initializing codelens...")

    if config["enable_graph"]:
        try:
            logger.info(f"Connecting to Neo4j at {config['neo4j_uri']}")
            graph_db = CodeGraphDB(
                uri=config["neo4j_uri"],
                user=config["neo4j_user"],
                password=config["neo4j_password"],
            )
            if graph_db.verify_connectivity():
                graph_db.create_indexes()
            else:
                logger.warning("Neo4j is not reachable; queries will return empty results")
        except Exception as e:
            logger.error(f"Graph database unavailable, continuing without it: {e}")
            graph_db = None
    else:
        logger.info("Graph database disabled (set ENABLE_GRAPH=true to enable)")

    if config["enable_semantic_search"]:
        try:
            logger.info(f"Connecting to Ollama at {config['ollama_host']}")
            embeddings = OllamaEmbeddings(
                host=config["ollama_host"], model=config["embedding_model"]
            )
            if not await embeddings.health_check():
                logger.warning(
                    f"Ollama health check failed. Make sure Ollama is running and "
                    f"'{config['embedding_model']}' model is available."
                )

            logger.info(f"Connecting to Qdrant at {config['qdrant_host']}:{config['qdrant_port']}")
            vector_store = CodeVectorStore(
                embeddings, host=config["qdrant_host"], port=config["qdrant_port"]
            )
        except Exception as e:
            logger.error(f"Semantic search unavailable, continuing without it: {e}")
            vector_store = None

    engine_config = AnalysisEngineConfig(
        enable_real_time_analysis=config["enable_watcher"],
        analysis_depth=config["analysis_depth"],
        max_concurrent_analysis=config["max_concurrent_analysis"],
    )
    engine = AnalysisEngine(graph=graph_db, vectors=vector_store, config=engine_config)
    analysis_tool = AnalysisTool(engine, graph=graph_db, vectors=vector_store)
    query_tool = QueryTool(engine)

    if engine_config.enable_real_time_analysis:
        workspace_path = Path(config["workspace_path"])
        if workspace_path.exists():
            logger.info(
                f"Initializing file watcher for {workspace_path} "
                f"(debounce: {config['watcher_debounce']}s)"
            )
            file_watcher = SourceWatcher(
                watch_path=str(workspace_path),
                on_change_callback=handle_file_changes,
                debounce_seconds=config["watcher_debounce"],
            )
        else:
            logger.warning(
                f"Workspace path does not exist: {workspace_path}. "
                "File watcher will not be started."
            )
    else:
        logger.info("File watcher disabled (set ENABLE_FILE_WATCHER=true to enable)")

    logger.info("All components initialized successfully!")


def stop_components():
    """Stop the watcher and release connections."""
    if file_watcher is not None:
        file_watcher.stop()
    if engine is not None:
        engine.stop()
    if graph_db is not None:
        graph_db.close()


def run_watcher_debounce_in_thread():
    """Run the file watcher's async debounce processor in a separate thread."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    try:
        if file_watcher is not None and file_watcher.is_running():
            logger.info("Starting file watcher debounce processor in background thread...")
            loop.run_until_complete(file_watcher.start_debounce_processor())
    except Exception as e:
        logger.error(f"File watcher debounce processor error: {e}")
    finally:
        loop.close()


@mcp.tool()
async def analyze_file(
    file_path: str,
    content: Optional[str] = None,
    include_tests: bool = False,
    include_private: bool = True,
    store_results: bool = True,
) -> dict:
    """Analyze a TypeScript or JavaScript file: entities, relationships, patterns, debt and insights.

    Args:
        file_path: Path to the source file
        content: Source text (read from disk when omitted)
        include_tests: Include test functions in the extracted entities
        include_private: Include private class members
        store_results: Persist entities and relationships to the graph database

    Returns:
        Dictionary with the analysis summary, metrics, entities, patterns, debt and insights
    """
    if not analysis_tool:
        return {"success": False, "error": "Server not initialized"}

    options = {"include_tests": include_tests, "include_private": include_private}
    return await analysis_tool.analyze_file(file_path, content, options, store_results)


@mcp.tool()
async def analyze_project(
    project_path: Optional[str] = None,
    include_tests: bool = False,
    follow_gitignore: bool = True,
    exclude_patterns: Optional[list[str]] = None,
    store_results: bool = True,
    include_entities: bool = False,
) -> dict:
    """Analyze every TypeScript/JavaScript file in a project directory.

    Results are cached until a file in the project changes.

    Args:
        project_path: Project root (defaults to the workspace)
        include_tests: Include test files and test functions
        follow_gitignore: Skip files ignored by the project's .gitignore
        exclude_patterns: Glob patterns of files to skip (e.g., "*.generated.ts")
        store_results: Persist entities and relationships to the graph database
        include_entities: Return every entity and relationship, not just counts

    Returns:
        Dictionary with health summary, metrics, patterns, technical debt and insights
    """
    if not analysis_tool:
        return {"success": False, "error": "Server not initialized"}

    options = {"include_tests": include_tests, "follow_gitignore": follow_gitignore}
    if exclude_patterns:
        options["exclude_patterns"] = exclude_patterns

    path = project_path or get_env_config()["workspace_path"]
    return await analysis_tool.analyze_project(path, options, store_results, include_entities)


@mcp.tool()
async def query_code(
    query: str,
    include_explanations: bool = True,
    include_suggestions: bool = True,
    max_results: Optional[int] = None,
) -> dict:
    """Ask a natural-language question about the analyzed code.

    Args:
        query: Question (e.g., "What are the most complex functions?", "find classes named User")
        include_explanations: Explain the answer
        include_suggestions: Suggest follow-up queries
        max_results: Maximum number of entities to return

    Returns:
        Dictionary with matching entities, metrics, explanations and the parsed intent
    """
    if not query_tool:
        return {"success": False, "error": "Server not initialized"}

    return await query_tool.query_code(
        query,
        include_explanations=include_explanations,
        include_suggestions=include_suggestions,
        max_results=max_results,
    )


@mcp.tool()
def get_query_suggestions(context: Optional[str] = None) -> dict:
    """List example questions, optionally filtered by a context word (e.g., "complexity").

    Args:
        context: Topic to filter suggestions by

    Returns:
        Dictionary with suggested queries
    """
    if not query_tool:
        return {"success": False, "error": "Server not initialized"}

    return query_tool.get_query_suggestions(context)


@mcp.tool()
async def get_impact_analysis(entity_id: str) -> dict:
    """Find what depends on an entity and how risky changing it is.

    Args:
        entity_id: Entity id as returned by analyze_file / analyze_project

    Returns:
        Dictionary with direct and indirect dependents, dependencies and risk level
    """
    if not analysis_tool:
        return {"success": False, "error": "Server not initialized"}

    return await analysis_tool.get_impact_analysis(entity_id)


@mcp.tool()
async def find_similar_code(code_snippet: str, limit: int = 10, threshold: float = 0.8) -> dict:
    """Find analyzed entities similar to a code snippet (requires ENABLE_SEMANTIC_SEARCH).

    Args:
        code_snippet: Code to compare against
        limit: Maximum number of results
        threshold: Minimum similarity score (0-1)

    Returns:
        Dictionary with similar entities and their scores
    """
    if not analysis_tool:
        return {"success": False, "error": "Server not initialized"}

    return await analysis_tool.find_similar_code(code_snippet, limit, threshold)


@mcp.tool()
def get_analysis_status() -> dict:
    """Get analysis engine status: in-flight analyses, cache statistics, configuration and watcher.

    Returns:
        Dictionary with engine status
    """
    if not analysis_tool:
        return {"success": False, "error": "Server not initialized"}

    status = analysis_tool.get_analysis_status()
    status["components"] = {
        "graph_db": graph_db is not None,
        "semantic_search": vector_store is not None,
    }
    status["watcher"] = {
        "enabled": file_watcher is not None,
        "running": file_watcher is not None and file_watcher.is_running(),
    }
    return status


@mcp.tool()
def clear_analysis_cache() -> dict:
    """Clear cached project analyses.

    Returns:
        Dictionary indicating success or failure
    """
    if not analysis_tool:
        return {"success": False, "error": "Server not initialized"}

    return analysis_tool.clear_analysis_cache()


if __name__ == "__main__":
    import atexit
    import threading

    logger.info("Starting codelens MCP Server...")

    # Initialize components (runs in temporary event loop)
    asyncio.run(initialize_components())

    if file_watcher is not None:
        file_watcher.start()
        watcher_thread = threading.Thread(
            target=run_watcher_debounce_in_thread,
            daemon=True,
            name="FileWatcherDebounce",
        )
        watcher_thread.start()
        logger.info("File watcher fully initialized and running")

    atexit.register(stop_components)

    logger.info("Server ready!")

    try:
        mcp.run()
    except KeyboardInterrupt:
        logger.info("Server interrupted")
    except Exception as e:
        logger.error(f"Server error: {e}")
        raise
