"""Orchestrate code analysis, pattern detection, debt analysis, insights and queries."""

import asyncio
import json
import logging
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, List, Optional, Set

from .cache import AnalysisCache, FileChangeEvent
from .code_analyzer import AnalysisOptions, CodeAnalyzer
from .errors import AlreadyInProgressError, Result, ValidationError, to_analysis_error
from .insights import InsightOptions, InsightsGenerator, InsightsReport
from .models import AnalysisResult
from .patterns.debt_analyzer import DebtOptions, TechnicalDebtAnalyzer
from .patterns.detector import DetectionOptions, PatternDetector
from .patterns.models import Pattern, Severity, TechnicalDebtReport
from .query.nl_processor import NaturalLanguageProcessor, NLQueryOptions, QueryResult

logger = logging.getLogger(__name__)

ANALYSIS_DEPTHS = ("basic", "detailed", "comprehensive")


@dataclass
class AnalysisEngineConfig:
    """Feature switches and tunables of the analysis engine."""

    enable_real_time_analysis: bool = True
    enable_pattern_detection: bool = True
    enable_debt_analysis: bool = True
    enable_insights_generation: bool = True
    enable_natural_language_queries: bool = True
    analysis_depth: str = "detailed"
    batch_size: int = 10
    max_concurrent_analysis: int = 3


@dataclass
class ComprehensiveAnalysisResult:
    analysis: AnalysisResult
    patterns: List[Pattern]
    technical_debt: TechnicalDebtReport
    insights: InsightsReport
    summary: Dict[str, Any]


def _options_for(cls, options: Dict[str, Any]):
    """Build an options dataclass from the keys of a flat options dict it knows."""
    names = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in options.items() if k in names})


def insight_options(options: Dict[str, Any]) -> InsightOptions:
    """Build InsightOptions from the ``insight_*`` and ``focus_areas`` keys."""
    return InsightOptions(
        include_types=options.get("insight_types"),
        min_confidence=options.get("insight_min_confidence"),
        focus_areas=options.get("focus_areas"),
    )


def cache_key(project_path: str, options: Dict[str, Any]) -> str:
    return f"project_{project_path}_{json.dumps(options, sort_keys=True, default=str)}"


def generate_summary(
    analysis: AnalysisResult,
    patterns: List[Pattern],
    technical_debt: TechnicalDebtReport,
    insights: InsightsReport,
) -> Dict[str, Any]:
    """Summarize health, critical issues and recommendations of an analysis.

    Args:
        analysis: Code analysis result
        patterns: Detected patterns
        technical_debt: Debt report
        insights: Insights report

    Returns:
        Dictionary with overall_health, critical_issues, recommendations and metrics
    """
    functions = analysis.metrics.functions
    avg_complexity = analysis.metrics.complexity / functions if functions else 0

    critical_patterns = len([p for p in patterns if p.severity == Severity.CRITICAL])
    critical_debt = len(
        [d for d in technical_debt.top_priorities if d.severity == Severity.CRITICAL]
    )
    critical_issues = critical_patterns + critical_debt + insights.summary["critical_insights"]

    health_factors = [
        max(0, 100 - avg_complexity * 5),
        max(0, 100 - critical_patterns * 20),
        max(0, 100 - technical_debt.summary["debt_ratio"] * 100),
        insights.summary["overall_health"],
    ]
    overall_health = round(sum(health_factors) / len(health_factors))

    recommendations = []
    if critical_issues > 0:
        recommendations.append(f"Address {critical_issues} critical issues immediately")
    quick_wins = technical_debt.recommendations.get("quick_wins", [])
    if quick_wins:
        recommendations.append(
            f"Consider {len(quick_wins)} quick wins for immediate improvement"
        )
    if avg_complexity > 10:
        recommendations.append("Focus on reducing code complexity in high-complexity functions")
    if not recommendations:
        recommendations.append("Code quality is good, continue current practices")

    return {
        "overall_health": overall_health,
        "critical_issues": critical_issues,
        "recommendations": recommendations,
        "metrics": {
            "total_functions": functions,
            "total_classes": analysis.metrics.classes,
            "average_complexity": avg_complexity,
            "total_patterns": len(patterns),
            "technical_debt_items": technical_debt.summary["total_items"],
            "total_insights": insights.summary["total_insights"],
        },
    }


class AnalysisEngine:
    """Main entry point for code analysis capabilities."""

    def __init__(
        self,
        graph: Optional[Any] = None,
        vectors: Optional[Any] = None,
        config: Optional[AnalysisEngineConfig] = None,
    ):
        """Initialize the analysis engine.

        Args:
            graph: Graph service used by queries and impact analysis
            vectors: Vector store used by similarity search
            config: Engine configuration
        """
        self.config = config or AnalysisEngineConfig()
        self.code_analyzer = CodeAnalyzer(graph=graph, vectors=vectors)
        self.pattern_detector = PatternDetector()
        self.debt_analyzer = TechnicalDebtAnalyzer(self.pattern_detector)
        self.insights_generator = InsightsGenerator()
        self.nl_processor = NaturalLanguageProcessor(graph)
        self.cache = AnalysisCache()

        self._in_flight: Set[str] = set()
        self._in_flight_lock = asyncio.Lock()

    def _analysis_options(self, options: Dict[str, Any]) -> AnalysisOptions:
        analysis_options = _options_for(AnalysisOptions, options)
        if "max_concurrent" not in options:
            analysis_options.max_concurrent = self.config.max_concurrent_analysis
        return analysis_options

    def _build_result(
        self,
        analysis: AnalysisResult,
        patterns: List[Pattern],
        options: Dict[str, Any],
    ) -> ComprehensiveAnalysisResult:
        technical_debt = TechnicalDebtReport.empty()
        if self.config.enable_debt_analysis:
            debt_result = self.debt_analyzer.analyze_technical_debt(
                analysis.entities, analysis.relationships, _options_for(DebtOptions, options)
            )
            if debt_result.success:
                technical_debt = debt_result.data
            else:
                logger.warning(f"Debt analysis failed: {debt_result.error_message}")

        insights = InsightsReport.empty()
        if self.config.enable_insights_generation:
            insights_result = self.insights_generator.generate_insights(
                analysis, patterns, technical_debt, insight_options(options)
            )
            if insights_result.success:
                insights = insights_result.data
            else:
                logger.warning(f"Insight generation failed: {insights_result.error_message}")

        return ComprehensiveAnalysisResult(
            analysis=analysis,
            patterns=patterns,
            technical_debt=technical_debt,
            insights=insights,
            summary=generate_summary(analysis, patterns, technical_debt, insights),
        )

    async def analyze_file(
        self, file_path: str, content: str, options: Optional[Dict[str, Any]] = None
    ) -> Result[ComprehensiveAnalysisResult]:
        """Run the full analysis pipeline on a single file.

        Args:
            file_path: Path of the file
            content: Source text
            options: Flat dict of analysis, detection, debt and insight options

        Returns:
            Result with the comprehensive analysis
        """
        options = options or {}

        try:
            analysis_result = await self.code_analyzer.analyze_file(
                file_path, content, self._analysis_options(options)
            )
            if not analysis_result.success:
                return Result.fail(analysis_result.error)
            analysis = analysis_result.data

            patterns: List[Pattern] = []
            if self.config.enable_pattern_detection:
                pattern_result = self.pattern_detector.detect_patterns_in_file(
                    file_path,
                    analysis.entities,
                    analysis.relationships,
                    _options_for(DetectionOptions, options),
                )
                if pattern_result.success:
                    patterns = pattern_result.data

            return Result.ok(self._build_result(analysis, patterns, options))
        except Exception as e:
            logger.error(f"Error analyzing file {file_path}: {e}")
            return Result.fail(to_analysis_error(e, operation="analyze_file"))

    async def analyze_project(
        self, project_path: str, options: Optional[Dict[str, Any]] = None
    ) -> Result[ComprehensiveAnalysisResult]:
        """Run the full analysis pipeline on a project.

        Results are cached per project path and options until a change event
        for a file under the project is received. Only one analysis per path
        runs at a time; a second request fails fast.

        Args:
            project_path: Root directory of the project
            options: Flat dict of analysis, detection, debt and insight options

        Returns:
            Result with the comprehensive analysis
        """
        options = options or {}
        key = cache_key(project_path, options)

        async with self._in_flight_lock:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug(f"Cache hit for {project_path}")
                return Result.ok(cached, cached=True)

            if project_path in self._in_flight:
                return Result.fail(
                    AlreadyInProgressError(
                        "Analysis already in progress for this project",
                        {"operation": "analyze_project", "project_path": project_path},
                    )
                )
            self._in_flight.add(project_path)
            version = self.cache.mark()

        try:
            analysis_result = await self.code_analyzer.analyze_project(
                project_path, self._analysis_options(options)
            )
            if not analysis_result.success:
                return Result.fail(analysis_result.error)
            analysis = analysis_result.data

            patterns: List[Pattern] = []
            if self.config.enable_pattern_detection:
                pattern_result = self.pattern_detector.detect_patterns(
                    analysis.entities,
                    analysis.relationships,
                    _options_for(DetectionOptions, options),
                )
                if pattern_result.success:
                    patterns = pattern_result.data

            result = self._build_result(analysis, patterns, options)
            self.cache.set(key, project_path, result, since=version)

            logger.info(
                f"Project analysis complete for {project_path}: "
                f"health {result.summary['overall_health']}, "
                f"{result.summary['critical_issues']} critical issues"
            )
            return Result.ok(result)
        except Exception as e:
            logger.error(f"Error analyzing project {project_path}: {e}")
            return Result.fail(to_analysis_error(e, operation="analyze_project"))
        finally:
            async with self._in_flight_lock:
                self._in_flight.discard(project_path)

    async def process_query(
        self, query: str, options: Optional[NLQueryOptions] = None
    ) -> Result[QueryResult]:
        if not self.config.enable_natural_language_queries:
            return Result.fail(
                ValidationError(
                    "Natural language queries are disabled", {"operation": "process_query"}
                )
            )
        return await self.nl_processor.process_query(query, options)

    def get_query_suggestions(self, context: Optional[str] = None) -> Result[List[str]]:
        if not self.config.enable_natural_language_queries:
            return Result.fail(
                ValidationError(
                    "Natural language queries are disabled",
                    {"operation": "get_query_suggestions"},
                )
            )
        return self.nl_processor.get_query_suggestions(context)

    async def get_impact_analysis(self, entity_id: str) -> Result[Dict[str, Any]]:
        return await self.code_analyzer.get_impact_analysis(entity_id)

    async def find_similar_code(
        self, snippet: str, limit: int = 10, threshold: float = 0.8
    ) -> Result[List[Dict[str, Any]]]:
        return await self.code_analyzer.find_similar_code(snippet, limit, threshold)

    def notify_file_changed(self, file_path: Optional[str], event_type: str = "modified") -> None:
        """Queue a change event; cached analyses covering the file are dropped on next read.

        Safe to call from the file watcher thread.
        """
        self.cache.notify(FileChangeEvent(file_path=file_path, event_type=event_type))

    def get_analysis_status(self) -> Dict[str, Any]:
        return {
            "is_analyzing": bool(self._in_flight),
            "queue_size": len(self._in_flight),
            "in_progress": sorted(self._in_flight),
            "cache_size": len(self.cache),
            "cache": self.cache.get_metrics(),
            "config": asdict(self.config),
        }

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("Analysis cache cleared")

    def update_config(self, **changes: Any) -> Result[AnalysisEngineConfig]:
        """Update engine configuration in place.

        Args:
            **changes: Field names of AnalysisEngineConfig and their new values

        Returns:
            Result with the updated configuration, or a ValidationError for
            unknown fields or an invalid analysis depth
        """
        known = {f.name for f in fields(AnalysisEngineConfig)}
        unknown = [name for name in changes if name not in known]
        if unknown:
            return Result.fail(
                ValidationError(f"Unknown configuration options: {', '.join(sorted(unknown))}")
            )
        depth = changes.get("analysis_depth")
        if depth is not None and depth not in ANALYSIS_DEPTHS:
            return Result.fail(ValidationError(f"Invalid analysis depth: {depth}"))

        for name, value in changes.items():
            setattr(self.config, name, value)
        logger.info(f"Engine configuration updated: {changes}")
        return Result.ok(self.config)

    def stop(self) -> None:
        """Drop cached results, pending change events and the in-flight set."""
        self.cache.clear()
        self.cache.discard_events()
        self._in_flight.clear()
        logger.info("Analysis engine stopped")
