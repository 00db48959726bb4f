"""MCP tool for analyzing files and projects."""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Set

from ..analysis.engine import AnalysisEngine, ComprehensiveAnalysisResult
from ..analysis.errors import AnalysisError, NotFoundError, Result
from ..analysis.models import to_dict

logger = logging.getLogger(__name__)


def error_response(error: Optional[AnalysisError]) -> Dict[str, Any]:
    if error is None:
        return {"success": False, "error": "Unknown error"}
    return {
        "success": False,
        "error": error.message,
        "error_code": error.code,
        "context": to_dict(error.context),
    }


def format_analysis(
    result: ComprehensiveAnalysisResult, include_entities: bool = False
) -> Dict[str, Any]:
    """Convert a comprehensive analysis into a JSON-friendly response body.

    Entities and relationships can run into the thousands for a project, so
    only their counts are returned unless ``include_entities`` is set.
    """
    analysis = result.analysis
    response = {
        "summary": result.summary,
        "metrics": to_dict(analysis.metrics),
        "files_analyzed": analysis.files_analyzed,
        "files_failed": analysis.files_failed,
        "total_entities": len(analysis.entities),
        "total_relationships": len(analysis.relationships),
        "analysis_insights": analysis.insights,
        "patterns": to_dict(result.patterns),
        "technical_debt": to_dict(result.technical_debt),
        "insights": to_dict(result.insights),
    }
    if include_entities:
        response["entities"] = to_dict(analysis.entities)
        response["relationships"] = to_dict(analysis.relationships)
    return response


class AnalysisTool:
    """Tool for running analyses and persisting their results."""

    def __init__(
        self,
        engine: AnalysisEngine,
        graph: Optional[Any] = None,
        vectors: Optional[Any] = None,
    ):
        """Initialize analysis tool.

        Args:
            engine: Analysis engine
            graph: Graph database results are stored in (optional)
            vectors: Vector store entity embeddings are stored in (optional)
        """
        self.engine = engine
        self.graph = graph
        self.vectors = vectors

    async def _persist(self, result: ComprehensiveAnalysisResult) -> Dict[str, Any]:
        stored: Dict[str, Any] = {}
        analysis = result.analysis

        if self.graph is not None:
            try:
                stored["graph"] = await asyncio.to_thread(
                    self.graph.store_analysis, analysis.entities, analysis.relationships
                )
            except Exception as e:
                logger.error(f"Error storing analysis in graph: {e}")
                stored["graph_error"] = str(e)

        if self.vectors is not None:
            try:
                stored["vectors"] = await self.vectors.store(analysis.entities)
            except Exception as e:
                logger.error(f"Error storing entity embeddings: {e}")
                stored["vectors_error"] = str(e)

        return stored

    async def analyze_file(
        self,
        file_path: str,
        content: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
        store_results: bool = True,
        include_entities: bool = True,
    ) -> Dict[str, Any]:
        """Analyze a single file.

        Args:
            file_path: Path to the file
            content: Source text; read from ``file_path`` when omitted
            options: Flat analysis options
            store_results: Whether to write entities to the graph and vector stores
            include_entities: Whether to return the extracted entities

        Returns:
            Dictionary with the analysis
        """
        try:
            if content is None:
                path = Path(file_path)
                if not path.is_file():
                    return error_response(NotFoundError(f"File not found: {file_path}"))
                content = await asyncio.to_thread(
                    path.read_text, encoding="utf-8", errors="ignore"
                )

            logger.info(f"Analyzing file: {file_path}")
            result = await self.engine.analyze_file(file_path, content, options)
            if not result.success:
                return error_response(result.error)

            response = {"success": True, "file_path": file_path}
            response.update(format_analysis(result.data, include_entities))
            if store_results:
                response["stored"] = await self._persist(result.data)
            return response

        except Exception as e:
            logger.error(f"Error analyzing file {file_path}: {e}")
            return {"success": False, "error": str(e)}

    async def analyze_project(
        self,
        project_path: str,
        options: Optional[Dict[str, Any]] = None,
        store_results: bool = True,
        include_entities: bool = False,
    ) -> Dict[str, Any]:
        """Analyze every supported file below a directory.

        Args:
            project_path: Root directory of the project
            options: Flat analysis options
            store_results: Whether to write entities to the graph and vector stores
            include_entities: Whether to return every entity and relationship

        Returns:
            Dictionary with the analysis; ``cached`` is true when served from cache
        """
        try:
            logger.info(f"Analyzing project: {project_path}")
            result = await self.engine.analyze_project(project_path, options)
            if not result.success:
                return error_response(result.error)

            cached = bool(result.metadata.get("cached"))
            response = {"success": True, "project_path": project_path, "cached": cached}
            response.update(format_analysis(result.data, include_entities))
            if store_results and not cached:
                response["stored"] = await self._persist(result.data)
            return response

        except Exception as e:
            logger.error(f"Error analyzing project {project_path}: {e}")
            return {"success": False, "error": str(e)}

    async def get_impact_analysis(self, entity_id: str) -> Dict[str, Any]:
        result = await self.engine.get_impact_analysis(entity_id)
        if not result.success:
            return error_response(result.error)
        return {"success": True, "entity_id": entity_id, **result.data}

    async def find_similar_code(
        self, code_snippet: str, limit: int = 10, threshold: float = 0.8
    ) -> Dict[str, Any]:
        result = await self.engine.find_similar_code(code_snippet, limit, threshold)
        if not result.success:
            return error_response(result.error)
        return {"success": True, "total_results": len(result.data), "results": result.data}

    def get_analysis_status(self) -> Dict[str, Any]:
        return {"success": True, **self.engine.get_analysis_status()}

    def clear_analysis_cache(self) -> Dict[str, Any]:
        self.engine.clear_cache()
        return {"success": True, "message": "Analysis cache cleared"}

    async def handle_file_changes(self, modified_files: Set[str], deleted_files: Set[str]) -> None:
        """Invalidate cached analyses and refresh stored entities for changed files.

        Args:
            modified_files: Created or modified file paths
            deleted_files: Deleted file paths
        """
        for file_path in deleted_files:
            self.engine.notify_file_changed(file_path, "deleted")
            await self._remove_stored(file_path)

        for file_path in modified_files:
            self.engine.notify_file_changed(file_path, "modified")
            if self.graph is None and self.vectors is None:
                continue
            if not Path(file_path).exists():
                continue

            await self._remove_stored(file_path)
            response = await self.analyze_file(file_path, store_results=True, include_entities=False)
            if response["success"]:
                logger.info(f"Re-analyzed {file_path}: {response['total_entities']} entities")
            else:
                logger.warning(f"Re-analysis failed for {file_path}: {response['error']}")

    async def _remove_stored(self, file_path: str) -> None:
        if self.graph is not None:
            try:
                await asyncio.to_thread(self.graph.delete_by_file_path, file_path)
            except Exception as e:
                logger.error(f"Error removing {file_path} from graph: {e}")
        if self.vectors is not None:
            try:
                await asyncio.to_thread(self.vectors.delete_by_file_path, file_path)
            except Exception as e:
                logger.error(f"Error removing {file_path} from vector store: {e}")


def result_response(result: Result, **extra: Any) -> Dict[str, Any]:
    """Generic success/error response for results whose data is JSON-friendly."""
    if not result.success:
        return error_response(result.error)
    return {"success": True, **extra, "data": to_dict(result.data)}
