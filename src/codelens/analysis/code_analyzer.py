"""Analyze single files and whole projects into entity/relationship graphs."""

import asyncio
import dataclasses
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import blake3

from .entity_extractor import EntityExtractor, ExtractionOptions
from .errors import NotFoundError, Result, ValidationError, to_analysis_error
from .models import (
    AnalysisMetrics,
    AnalysisResult,
    CodeRelationship,
    EntityType,
    RelationshipType,
)
from .parser import TypeScriptParser
from .relationship_extractor import (
    EntityIndex,
    RelationshipExtractor,
    RelationshipOptions,
    module_id,
    strip_extension,
)

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDES = {
    "node_modules",
    ".git",
    "__pycache__",
    ".pytest_cache",
    "venv",
    ".venv",
    "dist",
    "build",
    "coverage",
    ".next",
    ".nuxt",
    "vendor",
}

TEST_DIRECTORIES = {"__tests__", "__mocks__", "test", "tests"}

HIGH_FUNCTION_COUNT = 50
HIGH_CLASS_COUNT = 20
HIGH_MODULE_COUNT = 100

IMPACT_RELATIONSHIPS = "CALLS|USES|REFERENCES"
HIGH_RISK_DEPENDENTS = 20
MEDIUM_RISK_DEPENDENTS = 5


@dataclass
class AnalysisOptions:
    """Options for file and project analysis."""

    include_tests: bool = False
    include_private: bool = True
    include_internal_calls: bool = False
    resolve_external_imports: bool = False
    max_depth: Optional[int] = None
    languages: Optional[List[str]] = None
    exclude_patterns: Optional[List[str]] = None
    follow_gitignore: bool = True
    max_concurrent: int = 3


def is_test_file(file_path: str) -> bool:
    """Whether a path looks like a test file or lives in a test directory."""
    path = Path(file_path)
    if any(part in TEST_DIRECTORIES for part in path.parts[:-1]):
        return True
    return ".test." in path.name or ".spec." in path.name


def _read_file(file_path: str) -> str:
    with open(file_path, "r", encoding="utf-8") as f:
        return f.read()


def generate_insights(
    entities: List[Any], relationships: List[CodeRelationship], metrics: AnalysisMetrics
) -> List[str]:
    """Short observations about size and coupling."""
    insights = []

    if metrics.functions > HIGH_FUNCTION_COUNT:
        insights.append(
            f"High function count ({metrics.functions}) - consider modularization"
        )

    if metrics.classes > HIGH_CLASS_COUNT:
        insights.append(f"High class count ({metrics.classes}) - consider package organization")

    calls = [r for r in relationships if r.type == RelationshipType.CALLS]
    if len(calls) > len(entities) * 2:
        insights.append(
            "High coupling detected - consider refactoring for better separation of concerns"
        )

    return insights


def generate_project_insights(entities: List[Any], relationships: List[CodeRelationship]) -> List[str]:
    insights = []

    modules = [e for e in entities if e.type == EntityType.MODULE]
    if len(modules) > HIGH_MODULE_COUNT:
        insights.append("Large module count suggests need for better organization")

    imports = [r for r in relationships if r.type == RelationshipType.IMPORTS]
    if len(imports) > len(entities):
        insights.append("High import ratio suggests potential circular dependencies")

    return insights


def calculate_metrics(content: str, entities: List[Any]) -> AnalysisMetrics:
    functions = [e for e in entities if e.type == EntityType.FUNCTION and not e.is_external]
    classes = [e for e in entities if e.type == EntityType.CLASS and not e.is_external]
    return AnalysisMetrics(
        total_lines=len(content.split("\n")),
        functions=len(functions),
        classes=len(classes),
        complexity=sum(f.metadata.get("complexity", 1) for f in functions),
    )


class CodeAnalyzer:
    """Parse and extract code entities and relationships."""

    def __init__(
        self,
        graph: Optional[Any] = None,
        vectors: Optional[Any] = None,
        parser: Optional[TypeScriptParser] = None,
    ):
        """Initialize code analyzer.

        Args:
            graph: Graph service used for impact analysis (optional)
            vectors: Vector store used for similarity search (optional)
            parser: Parser instance; one is created if omitted
        """
        self.graph = graph
        self.vectors = vectors
        self.parser = parser or TypeScriptParser()
        self.entity_extractor = EntityExtractor(self.parser)

    async def analyze_file(
        self,
        file_path: str,
        content: str,
        options: Optional[AnalysisOptions] = None,
        index: Optional[EntityIndex] = None,
    ) -> Result[AnalysisResult]:
        """Analyze a single source file.

        Args:
            file_path: Path of the file (used for language detection and ids)
            content: Source text
            options: Analysis options
            index: Session entity index shared across the files of a project run

        Returns:
            Result with the file's entities, relationships, metrics and insights
        """
        options = options or AnalysisOptions()
        index = index if index is not None else EntityIndex()

        language = self.parser.detect_language(file_path)
        if not language:
            return Result.fail(
                ValidationError(f"Unsupported file type: {file_path}", {"file_path": file_path})
            )

        try:
            parsed = self.parser.parse(content, file_path, language)
            entities = self.entity_extractor.extract(
                parsed,
                ExtractionOptions(
                    include_private=options.include_private,
                    include_tests=options.include_tests,
                    max_depth=options.max_depth,
                ),
            )

            relationship_options = RelationshipOptions(
                include_internal_calls=options.include_internal_calls,
                include_test_relationships=options.include_tests,
                resolve_external_imports=options.resolve_external_imports,
                max_depth=options.max_depth,
            )

            # One file commits its entities before the next resolves against them
            async with index.lock:
                mark = len(index)
                extractor = RelationshipExtractor(self.parser, index)
                relationships = extractor.extract(parsed, entities, relationship_options)
                known = {e.id for e in entities}
                created = [e for e in index.entities_since(mark) if e.id not in known]

            all_entities = entities + created
            metrics = calculate_metrics(content, all_entities)
            result = AnalysisResult(
                entities=all_entities,
                relationships=relationships,
                metrics=metrics,
                insights=generate_insights(all_entities, relationships, metrics),
                files_analyzed=1,
            )

            logger.info(
                f"Analyzed {file_path}: {len(all_entities)} entities, "
                f"{len(relationships)} relationships"
            )
            return Result.ok(result)
        except Exception as e:
            logger.error(f"Error analyzing {file_path}: {e}")
            return Result.fail(to_analysis_error(e, operation="analyze_file", file_path=file_path))

    def discover_files(self, project_path: str, options: Optional[AnalysisOptions] = None) -> List[str]:
        """Find the supported source files of a project.

        Args:
            project_path: Root directory
            options: Language, test and exclusion options

        Returns:
            Sorted list of file paths
        """
        from gitignore_parser import parse_gitignore

        options = options or AnalysisOptions()
        root = Path(project_path)

        gitignore_matcher = None
        if options.follow_gitignore:
            gitignore_path = root / ".gitignore"
            if gitignore_path.exists():
                try:
                    gitignore_matcher = parse_gitignore(gitignore_path)
                    logger.info(f"Loaded .gitignore from {gitignore_path}")
                except Exception as e:
                    logger.warning(f"Error parsing .gitignore: {e}")

        files = []
        for file_path in root.rglob("*"):
            if not file_path.is_file():
                continue

            language = self.parser.detect_language(str(file_path))
            if not language:
                continue
            if options.languages and language not in options.languages:
                continue

            relative_parts = file_path.relative_to(root).parts
            if any(part in DEFAULT_EXCLUDES for part in relative_parts):
                continue

            if gitignore_matcher and gitignore_matcher(str(file_path)):
                continue

            if options.exclude_patterns and any(
                file_path.match(pattern) for pattern in options.exclude_patterns
            ):
                continue

            if not options.include_tests and is_test_file(str(file_path.relative_to(root))):
                continue

            files.append(str(file_path))

        files.sort()
        logger.info(f"Discovered {len(files)} source files in {project_path}")
        return files

    async def analyze_project(
        self, project_path: str, options: Optional[AnalysisOptions] = None
    ) -> Result[AnalysisResult]:
        """Analyze every supported file of a project.

        Files are analyzed concurrently, bounded by ``options.max_concurrent``.
        A file that cannot be read or analyzed is counted in ``files_failed``
        and contributes nothing.

        Args:
            project_path: Root directory of the project
            options: Analysis options

        Returns:
            Result with the merged analysis
        """
        options = options or AnalysisOptions()

        if not os.path.isdir(project_path):
            return Result.fail(
                NotFoundError(
                    f"Project directory not found: {project_path}", {"project_path": project_path}
                )
            )

        try:
            files = await asyncio.to_thread(self.discover_files, project_path, options)
            index = EntityIndex()
            semaphore = asyncio.Semaphore(max(1, options.max_concurrent))

            async def analyze_one(file_path: str) -> Optional[AnalysisResult]:
                async with semaphore:
                    try:
                        content = await asyncio.to_thread(_read_file, file_path)
                    except (OSError, UnicodeDecodeError) as e:
                        logger.warning(f"Could not read {file_path}: {e}")
                        return None
                    result = await self.analyze_file(file_path, content, options, index=index)
                    if not result.success:
                        logger.warning(f"Skipping {file_path}: {result.error_message}")
                        return None
                    return result.data

            results = await asyncio.gather(*(analyze_one(f) for f in files))

            entities: List[Any] = []
            seen_ids = set()
            relationships: List[CodeRelationship] = []
            metrics = AnalysisMetrics()
            failed = 0

            for file_result in results:
                if file_result is None:
                    failed += 1
                    continue
                for entity in file_result.entities:
                    if entity.id not in seen_ids:
                        seen_ids.add(entity.id)
                        entities.append(entity)
                relationships.extend(file_result.relationships)
                metrics.total_lines += file_result.metrics.total_lines
                metrics.functions += file_result.metrics.functions
                metrics.classes += file_result.metrics.classes
                metrics.complexity += file_result.metrics.complexity

            entities, relationships = self.resolve_cross_file_modules(entities, relationships)

            insights = generate_insights(entities, relationships, metrics)
            insights.extend(generate_project_insights(entities, relationships))

            logger.info(
                f"Analyzed project {project_path}: {len(files) - failed} files, "
                f"{failed} failed, {len(entities)} entities, {len(relationships)} relationships"
            )
            return Result.ok(
                AnalysisResult(
                    entities=entities,
                    relationships=relationships,
                    metrics=metrics,
                    insights=insights,
                    files_analyzed=len(files) - failed,
                    files_failed=failed,
                )
            )
        except Exception as e:
            logger.error(f"Error analyzing project {project_path}: {e}")
            return Result.fail(
                to_analysis_error(e, operation="analyze_project", project_path=project_path)
            )

    def _lookup_file_module(self, file_modules: Dict[str, Any], resolved: str) -> Optional[Any]:
        base = strip_extension(resolved)
        for candidate in (resolved, base, os.path.join(resolved, "index")):
            if candidate in file_modules:
                return file_modules[candidate]
        return None

    def resolve_cross_file_modules(
        self, entities: List[Any], relationships: List[CodeRelationship]
    ) -> Tuple[List[Any], List[CodeRelationship]]:
        """Connect relative imports to the analyzed files they point at.

        Module placeholders created for relative imports are replaced by the
        Module entity of the imported file, a Module -> Module IMPORTS edge is
        added for each importing/imported file pair, and USES edges are added
        for named imports whose declarations were analyzed after the importer.

        Args:
            entities: Merged project entities
            relationships: Merged project relationships

        Returns:
            Tuple of (entities, relationships) with cross-file edges resolved
        """
        # Extension-less path -> Module entity of an analyzed file
        file_modules: Dict[str, Any] = {}
        for entity in entities:
            if entity.type == EntityType.MODULE and entity.metadata.get("is_file"):
                file_modules[strip_extension(entity.file_path)] = entity

        declared: Dict[Tuple[str, str], Any] = {}
        for entity in entities:
            if entity.is_external or entity.type in (EntityType.IMPORT, EntityType.EXPORT, EntityType.MODULE):
                continue
            declared.setdefault((strip_extension(entity.file_path), entity.name), entity)

        redirects: Dict[str, str] = {}
        existing = {(r.source_id, r.target_id, r.type) for r in relationships}
        added: List[CodeRelationship] = []

        def add_edge(source_id: str, target_id: str, rel_type: RelationshipType, file_path: str, line: int, metadata: Dict[str, Any]) -> None:
            key = (source_id, target_id, rel_type)
            if key in existing:
                return
            existing.add(key)
            hash_input = f"crossfile:{file_path}:{source_id}:{target_id}:{rel_type.value}"
            added.append(
                CodeRelationship(
                    id=blake3.blake3(hash_input.encode()).hexdigest()[:16],
                    source_id=source_id,
                    target_id=target_id,
                    type=rel_type,
                    file_path=file_path,
                    line=line,
                    metadata=metadata,
                )
            )

        for rel in relationships:
            if rel.type != RelationshipType.IMPORTS or rel.metadata.get("is_external", True):
                continue
            resolved = rel.metadata.get("resolved_path")
            if not resolved:
                continue

            target_module = self._lookup_file_module(file_modules, resolved)
            if target_module is None:
                continue

            if rel.target_id != target_module.id:
                redirects[rel.target_id] = target_module.id

            add_edge(
                module_id(rel.file_path),
                target_module.id,
                RelationshipType.IMPORTS,
                rel.file_path,
                rel.line,
                {"cross_file": True, "resolved_path": target_module.file_path},
            )

            target_key = strip_extension(target_module.file_path)
            for name in rel.metadata.get("specifiers", []):
                target = declared.get((target_key, name))
                if target is not None:
                    add_edge(
                        rel.source_id,
                        target.id,
                        RelationshipType.USES,
                        rel.file_path,
                        rel.line,
                        {"imported_name": name, "cross_file": True},
                    )

        if redirects:
            relationships = [
                dataclasses.replace(r, target_id=redirects[r.target_id])
                if r.target_id in redirects
                else r
                for r in relationships
            ]
            entities = [e for e in entities if e.id not in redirects]

        if added:
            logger.debug(f"Resolved {len(added)} cross-file relationships")
        return entities, relationships + added

    async def _graph_rows(self, cypher: str, params: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
        result = await asyncio.to_thread(self.graph.query, cypher, params)
        if not result.success:
            logger.debug(f"Impact query failed: {result.error_message}")
            return []
        return [row[key] for row in result.data or [] if row.get(key)]

    async def get_impact_analysis(self, entity_id: str) -> Result[Dict[str, Any]]:
        """Estimate what would be affected by changing an entity.

        Args:
            entity_id: ID of the entity in the graph

        Returns:
            Result with direct_dependents, indirect_dependents, depends_on and risk_level
        """
        if self.graph is None:
            return Result.fail(ValidationError("Graph database is not enabled"))

        try:
            params = {"entity_id": entity_id}
            direct = await self._graph_rows(
                f"MATCH (source {{id: $entity_id}})<-[:{IMPACT_RELATIONSHIPS}]-(dependent) "
                "RETURN dependent",
                params,
                "dependent",
            )
            indirect = await self._graph_rows(
                f"MATCH (source {{id: $entity_id}})<-[:{IMPACT_RELATIONSHIPS}*2..3]-(dependent) "
                "WHERE dependent.id <> $entity_id RETURN DISTINCT dependent",
                params,
                "dependent",
            )
            depends_on = await self._graph_rows(
                f"MATCH (source {{id: $entity_id}})-[:{IMPACT_RELATIONSHIPS}]->(dependency) "
                "RETURN dependency",
                params,
                "dependency",
            )

            total = len(direct) + len(indirect)
            if total > HIGH_RISK_DEPENDENTS:
                risk_level = "high"
            elif total > MEDIUM_RISK_DEPENDENTS:
                risk_level = "medium"
            else:
                risk_level = "low"

            return Result.ok(
                {
                    "direct_dependents": direct,
                    "indirect_dependents": indirect,
                    "depends_on": depends_on,
                    "risk_level": risk_level,
                }
            )
        except Exception as e:
            logger.error(f"Impact analysis failed for {entity_id}: {e}")
            return Result.fail(to_analysis_error(e, operation="get_impact_analysis"))

    async def find_similar_code(
        self, snippet: str, limit: int = 10, threshold: float = 0.8
    ) -> Result[List[Dict[str, Any]]]:
        """Find stored code entities semantically similar to a snippet."""
        if self.vectors is None:
            return Result.fail(ValidationError("Semantic search is not enabled"))

        try:
            hits = await self.vectors.search(snippet, limit=limit, score_threshold=threshold)
            entity_types = {t.value for t in EntityType}
            return Result.ok([hit for hit in hits if hit.get("type") in entity_types])
        except Exception as e:
            logger.error(f"Similarity search failed: {e}")
            return Result.fail(to_analysis_error(e, operation="find_similar_code"))
