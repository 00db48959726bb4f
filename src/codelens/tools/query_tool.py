"""MCP tool for natural-language questions about the code graph."""

import logging
from typing import Any, Dict, Optional

from ..analysis.engine import AnalysisEngine
from ..analysis.models import to_dict
from ..analysis.query.nl_processor import NLQueryOptions
from .analysis_tool import error_response, result_response

logger = logging.getLogger(__name__)


class QueryTool:
    """Tool for natural-language code queries."""

    def __init__(self, engine: AnalysisEngine):
        self.engine = engine

    async def query_code(
        self,
        query: str,
        include_explanations: bool = True,
        include_suggestions: bool = True,
        include_metrics: bool = True,
        max_results: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Answer a free-text question such as "most complex functions".

        Args:
            query: The question
            include_explanations: Add human-readable explanations
            include_suggestions: Add follow-up suggestions
            include_metrics: Compute metrics over the returned entities
            max_results: Cap on returned entities

        Returns:
            Dictionary with entities, relationships, metrics, explanations,
            suggestions and the parsed intent
        """
        try:
            logger.info(f"Processing query: {query}")
            options = NLQueryOptions(
                include_explanations=include_explanations,
                include_suggestions=include_suggestions,
                include_metrics=include_metrics,
                max_results=max_results,
            )
            result = await self.engine.process_query(query, options)
            if not result.success:
                return error_response(result.error)

            data = result.data
            return {
                "success": True,
                "query": query,
                "intent": to_dict(data.intent),
                "total_results": len(data.entities),
                "entities": data.entities,
                "relationships": data.relationships,
                "metrics": data.metrics,
                "explanations": data.explanations,
                "suggestions": data.suggestions,
            }

        except Exception as e:
            logger.error(f"Error processing query: {e}")
            return {"success": False, "error": str(e)}

    def get_query_suggestions(self, context: Optional[str] = None) -> Dict[str, Any]:
        result = self.engine.get_query_suggestions(context)
        return result_response(result, context=context)
