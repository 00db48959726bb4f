"""Extract calls, imports, inheritance, usage, definitions and exports between entities."""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

import blake3

from .entity_extractor import generate_entity_id, is_test_name
from .models import (
    CodeEntity,
    CodeRelationship,
    EntityType,
    ExternalEntity,
    RelationshipType,
)
from .parser import (
    CALL_NODE_TYPES,
    CLASS_NODE_TYPES,
    FUNCTION_NODE_TYPES,
    ParsedTree,
    TypeScriptParser,
    node_column,
    node_line,
    node_text,
)

logger = logging.getLogger(__name__)

# Calls into the runtime that say nothing about the structure of the code base
INTERNAL_CALL_TARGETS = {
    "console",
    "setTimeout",
    "setInterval",
    "Promise",
    "Array",
    "Object",
    "JSON",
}

# Entities that never contain a usage site
NON_CONTAINER_TYPES = {EntityType.IMPORT, EntityType.EXPORT, EntityType.MODULE}

# Tie-break order when two entities span the same lines
CONTAINER_PREFERENCE = {
    EntityType.FUNCTION: 0,
    EntityType.CLASS: 1,
    EntityType.INTERFACE: 2,
    EntityType.TYPE: 3,
}

TYPE_CONTEXT_NODES = ("type_annotation", "type_arguments", "type_parameters", "implements_clause")
ASSIGNMENT_NODES = ("assignment_expression", "augmented_assignment_expression")
USAGE_BOUNDARY_NODES = set(FUNCTION_NODE_TYPES) | set(CLASS_NODE_TYPES) | {"program"}
# Expressions an awaited call can be wrapped in
AWAIT_WRAPPER_NODES = (
    "parenthesized_expression",
    "as_expression",
    "non_null_expression",
    "satisfies_expression",
)


def module_id(path: str) -> str:
    """Deterministic ID of the Module entity for a file or module specifier."""
    return blake3.blake3(f"module:{path}".encode()).hexdigest()[:16]


def external_id(entity_type: EntityType, name: str) -> str:
    return blake3.blake3(f"external:{entity_type.value}:{name}".encode()).hexdigest()[:16]


def is_relative_specifier(source: str) -> bool:
    return source in (".", "..") or source.startswith("./") or source.startswith("../")


def resolve_module_path(source: str, file_path: str) -> str:
    """Resolve an import specifier against the importing file.

    Relative specifiers are joined with the importing file's directory and
    ``.``/``..`` segments are collapsed. Anything else (package names, path
    aliases) is returned unchanged.

    Args:
        source: Import specifier as written
        file_path: Path of the importing file

    Returns:
        Resolved module path without extension
    """
    if not is_relative_specifier(source):
        return source
    base = os.path.dirname(file_path)
    return os.path.normpath(os.path.join(base, source))


def strip_extension(path: str) -> str:
    root, ext = os.path.splitext(path)
    return root if ext else path


class EntityIndex:
    """Append-only arena of every entity seen during one analysis session.

    Lookups are by id and by name. Writers must hold ``lock`` so that one
    file's entities are committed before another file resolves against them.
    """

    def __init__(self):
        self._entities: List[Any] = []
        self._by_id: Dict[str, Any] = {}
        self._by_name: Dict[str, List[Any]] = {}
        self.lock = asyncio.Lock()

    def add(self, entity: Any) -> Any:
        existing = self._by_id.get(entity.id)
        if existing is not None:
            return existing
        self._entities.append(entity)
        self._by_id[entity.id] = entity
        self._by_name.setdefault(entity.name, []).append(entity)
        return entity

    def add_all(self, entities: List[Any]) -> None:
        for entity in entities:
            self.add(entity)

    def get(self, entity_id: str) -> Optional[Any]:
        return self._by_id.get(entity_id)

    def find_by_name(
        self,
        name: str,
        entity_types: Optional[Tuple[EntityType, ...]] = None,
        include_external: bool = False,
    ) -> List[Any]:
        matches = []
        for entity in self._by_name.get(name, []):
            if entity.is_external and not include_external:
                continue
            if entity_types and entity.type not in entity_types:
                continue
            matches.append(entity)
        return matches

    def entities_since(self, mark: int) -> List[Any]:
        return self._entities[mark:]

    def __len__(self) -> int:
        return len(self._entities)

    def __iter__(self) -> Iterator[Any]:
        return iter(list(self._entities))


@dataclass
class RelationshipOptions:
    """Switches controlling which relationships are emitted."""

    include_internal_calls: bool = False
    include_test_relationships: bool = False
    resolve_external_imports: bool = False
    max_depth: Optional[int] = None  # advisory


@dataclass
class _FileContext:
    parsed: ParsedTree
    entities: List[CodeEntity]
    symbols: Dict[str, List[CodeEntity]]
    options: RelationshipOptions
    module: CodeEntity
    relationships: List[CodeRelationship] = field(default_factory=list)
    seen: Set[Tuple[str, str, str]] = field(default_factory=set)

    @property
    def file_path(self) -> str:
        return self.parsed.file_path


class RelationshipExtractor:
    """Resolve references between entities of one file and the session index."""

    def __init__(self, parser: TypeScriptParser, index: Optional[EntityIndex] = None):
        """Initialize relationship extractor.

        Args:
            parser: Parser used to query the syntax tree
            index: Session-wide entity index; a fresh one is created if omitted
        """
        self.parser = parser
        self.index = index if index is not None else EntityIndex()

    def extract(
        self,
        parsed: ParsedTree,
        entities: List[CodeEntity],
        options: Optional[RelationshipOptions] = None,
    ) -> List[CodeRelationship]:
        """Extract relationships for one parsed file.

        The file's entities are committed to the session index first. Entities
        created while resolving (the file's Module entity, imported modules,
        external placeholders) are added to the index as well and can be
        collected with ``EntityIndex.entities_since``.

        Args:
            parsed: Parsed source file
            entities: Entities extracted from the same file
            options: Extraction switches

        Returns:
            List of relationships originating in this file
        """
        options = options or RelationshipOptions()
        self.index.add_all(entities)

        module = self.index.add(
            CodeEntity(
                id=module_id(parsed.file_path),
                name=parsed.file_path,
                type=EntityType.MODULE,
                file_path=parsed.file_path,
                line=1,
                column=1,
                content="",
                language=parsed.language,
                metadata={"path": parsed.file_path, "is_file": True},
            )
        )

        ctx = _FileContext(
            parsed=parsed,
            entities=entities,
            symbols=self._build_symbol_table(entities),
            options=options,
            module=module,
        )

        steps = [
            ("calls", self._extract_calls),
            ("imports", self._extract_imports),
            ("inheritance", self._extract_inheritance),
            ("usage", self._extract_usage),
            ("definitions", self._extract_definitions),
            ("exports", self._extract_exports),
        ]
        for step_name, step in steps:
            try:
                step(ctx)
            except Exception as e:
                logger.error(f"Error extracting {step_name} relationships from {ctx.file_path}: {e}")

        logger.debug(f"Extracted {len(ctx.relationships)} relationships from {ctx.file_path}")
        return ctx.relationships

    # Helpers

    def _build_symbol_table(self, entities: List[CodeEntity]) -> Dict[str, List[CodeEntity]]:
        symbols: Dict[str, List[CodeEntity]] = {}
        for entity in entities:
            if entity.type in NON_CONTAINER_TYPES:
                continue
            symbols.setdefault(entity.name, []).append(entity)
        return symbols

    def _resolve(
        self, ctx: _FileContext, name: str, preferred: Tuple[EntityType, ...] = ()
    ) -> Optional[Any]:
        """Resolve a name against the file first, then the session index."""
        local = ctx.symbols.get(name, [])
        for entity in local:
            if not preferred or entity.type in preferred:
                return entity

        if preferred:
            candidates = self.index.find_by_name(name, preferred)
            if candidates:
                return candidates[0]

        if local:
            return local[0]

        candidates = [
            e for e in self.index.find_by_name(name) if e.type not in NON_CONTAINER_TYPES
        ]
        return candidates[0] if candidates else None

    def _external(
        self, entity_type: EntityType, name: str, metadata: Dict[str, Any], language: str
    ) -> Any:
        placeholder = ExternalEntity(
            id=external_id(entity_type, name),
            name=name,
            type=entity_type,
            language=language,
            metadata={"is_external": True, **metadata},
        )
        return self.index.add(placeholder)

    def _add(
        self,
        ctx: _FileContext,
        source: Any,
        target: Any,
        rel_type: RelationshipType,
        line: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CodeRelationship:
        sequence = len(ctx.relationships)
        hash_input = (
            f"{ctx.file_path}:{source.id}:{target.id}:{rel_type.value}:{line}:{sequence}"
        )
        relationship = CodeRelationship(
            id=blake3.blake3(hash_input.encode()).hexdigest()[:16],
            source_id=source.id,
            target_id=target.id,
            type=rel_type,
            file_path=ctx.file_path,
            line=line,
            metadata=metadata or {},
        )
        ctx.relationships.append(relationship)
        ctx.seen.add((source.id, target.id, rel_type.value))
        return relationship

    def _entities_of(self, ctx: _FileContext, *types: EntityType) -> List[CodeEntity]:
        return [e for e in ctx.entities if e.type in types]

    def _is_internal_call(self, name: str, receiver: Optional[str]) -> bool:
        if name in INTERNAL_CALL_TARGETS or name.startswith("_"):
            return True
        if receiver:
            root = receiver.split(".")[0]
            if root in INTERNAL_CALL_TARGETS:
                return True
        return False

    # Calls

    def _extract_calls(self, ctx: _FileContext) -> None:
        root = ctx.parsed.root_node
        function_nodes = {
            (node.start_point[0] + 1, node.start_point[1] + 1): node
            for node in self.parser.find_functions(root)
        }
        functions_by_node = {}
        for entity in self._entities_of(ctx, EntityType.FUNCTION):
            node = function_nodes.get((entity.line, entity.column))
            if node is not None:
                functions_by_node[(node.start_byte, node.end_byte)] = entity

        for call in self.parser.find_function_calls(root):
            try:
                # Calls in anonymous callbacks belong to the nearest named function,
                # top-level calls to the file module
                caller = self._named_caller(call, functions_by_node) or ctx.module
                self._add_call(ctx, caller, call)
            except Exception as e:
                logger.debug(f"Error processing call at line {node_line(call)}: {e}")

    def _named_caller(self, node: Any, functions_by_node: Dict) -> Optional[CodeEntity]:
        current = self.parser.find_ancestor(node, FUNCTION_NODE_TYPES)
        while current is not None:
            entity = functions_by_node.get((current.start_byte, current.end_byte))
            if entity is not None:
                return entity
            current = self.parser.find_ancestor(current, FUNCTION_NODE_TYPES)
        return None

    def _is_awaited(self, call: Any) -> bool:
        current = call.parent
        while current is not None and current.type in AWAIT_WRAPPER_NODES:
            current = current.parent
        return current is not None and current.type == "await_expression"

    def _add_call(self, ctx: _FileContext, caller: Any, call: Any) -> None:
        name = self.parser.get_called_function_name(call)
        if not name:
            return

        receiver = self.parser.get_call_receiver(call)
        if not ctx.options.include_internal_calls and self._is_internal_call(name, receiver):
            return
        if not ctx.options.include_test_relationships and is_test_name(name):
            return

        is_constructor = call.type == "new_expression"
        if is_constructor:
            preferred = (EntityType.CLASS,)
            call_type = "constructor_call"
        else:
            preferred = (EntityType.FUNCTION,)
            callee_node = call.child_by_field_name("function")
            if callee_node is not None and callee_node.type == "member_expression":
                call_type = "method_call"
            elif callee_node is not None and callee_node.type == "identifier":
                call_type = "function_call"
            else:
                call_type = "unknown_call"

        target = self._resolve(ctx, name, preferred)
        if target is None:
            target = self._external(
                preferred[0], name, {"called_from": ctx.file_path}, ctx.parsed.language
            )

        arguments = call.child_by_field_name("arguments")
        self._add(
            ctx,
            caller,
            target,
            RelationshipType.CALLS,
            node_line(call),
            {
                "call_type": call_type,
                "is_async": self._is_awaited(call),
                "arguments": [node_text(a) for a in arguments.named_children]
                if arguments is not None
                else [],
                "node_type": call.type,
            },
        )

    # Imports

    def _extract_imports(self, ctx: _FileContext) -> None:
        imports_by_line = {e.line: e for e in self._entities_of(ctx, EntityType.IMPORT)}

        for node in self.parser.find_imports(ctx.parsed.root_node):
            try:
                info = self.parser.get_import_specifiers(node)
                source = info["source"]
                if not source:
                    continue

                import_entity = imports_by_line.get(node_line(node))
                if import_entity is None:
                    import_entity = self._create_import_entity(ctx, node, info)

                is_external = not is_relative_specifier(source)
                resolved = resolve_module_path(source, ctx.file_path)
                module_entity = self._module_entity(ctx, source, resolved, is_external)

                if info["default"]:
                    import_type = "default"
                elif info["namespace"]:
                    import_type = "namespace"
                elif info["named"]:
                    import_type = "named"
                else:
                    import_type = "side_effect"

                specifiers = list(info["named"])
                if info["default"]:
                    specifiers.insert(0, info["default"])

                self._add(
                    ctx,
                    import_entity,
                    module_entity,
                    RelationshipType.IMPORTS,
                    node_line(node),
                    {
                        "import_type": import_type,
                        "specifiers": specifiers,
                        "resolved_path": resolved,
                        "is_external": is_external,
                    },
                )

                if not is_external or ctx.options.resolve_external_imports:
                    for target in self.find_module_exports(resolved, info["named"]):
                        self._add(
                            ctx,
                            import_entity,
                            target,
                            RelationshipType.USES,
                            node_line(node),
                            {"imported_name": target.name},
                        )
            except Exception as e:
                logger.debug(f"Error processing import at line {node_line(node)}: {e}")

    def _create_import_entity(self, ctx: _FileContext, node: Any, info: Dict) -> CodeEntity:
        name = f"import from {info['source']}"
        entity = CodeEntity(
            id=generate_entity_id(
                ctx.file_path, EntityType.IMPORT, name, node_line(node), node_column(node)
            ),
            name=name,
            type=EntityType.IMPORT,
            file_path=ctx.file_path,
            line=node_line(node),
            column=node_column(node),
            content=node_text(node),
            language=ctx.parsed.language,
            metadata={"source": info["source"], "specifiers": info["named"]},
        )
        return self.index.add(entity)

    def _module_entity(
        self, ctx: _FileContext, source: str, resolved: str, is_external: bool
    ) -> Any:
        if is_external:
            existing = self.index.get(module_id(source))
            if existing is not None:
                return existing
            placeholder = ExternalEntity(
                id=module_id(source),
                name=source,
                type=EntityType.MODULE,
                language=ctx.parsed.language,
                metadata={"is_external": True, "resolved_path": source},
            )
            return self.index.add(placeholder)

        entity = CodeEntity(
            id=module_id(resolved),
            name=source,
            type=EntityType.MODULE,
            file_path=resolved,
            line=1,
            column=1,
            content="",
            language=ctx.parsed.language,
            metadata={"path": resolved, "is_file": False, "resolved_path": resolved},
        )
        return self.index.add(entity)

    def find_module_exports(self, resolved: str, names: List[str]) -> List[Any]:
        """Entities named ``names`` declared in the module at ``resolved``."""
        candidates = {resolved, os.path.join(resolved, "index")}
        # Path aliases such as "@/utils/math" match on the path suffix
        alias = resolved.split("/", 1)[1] if resolved[:2] in ("@/", "~/") else None
        matches = []
        for name in names:
            for entity in self.index.find_by_name(name):
                if entity.type in NON_CONTAINER_TYPES:
                    continue
                module_path = strip_extension(entity.file_path)
                if module_path in candidates or (alias and module_path.endswith(alias)):
                    matches.append(entity)
                    break
        return matches

    # Inheritance

    def _extract_inheritance(self, ctx: _FileContext) -> None:
        classes_by_position = {
            (e.line, e.column): e for e in self._entities_of(ctx, EntityType.CLASS)
        }

        for node in self.parser.find_classes(ctx.parsed.root_node):
            try:
                entity = classes_by_position.get((node_line(node), node_column(node)))
                if entity is None:
                    continue

                extends, implements = self.parser.get_class_heritage(node)

                if extends:
                    target = self._resolve(ctx, extends, (EntityType.CLASS,))
                    if target is None:
                        target = self._external(
                            EntityType.CLASS, extends, {"extended_by": entity.name},
                            ctx.parsed.language,
                        )
                    self._add(
                        ctx, entity, target, RelationshipType.INHERITS, entity.line,
                        {"target_name": extends},
                    )

                for interface in implements:
                    target = self._resolve(
                        ctx, interface, (EntityType.INTERFACE, EntityType.CLASS)
                    )
                    if target is None:
                        target = self._external(
                            EntityType.INTERFACE, interface, {"implemented_by": entity.name},
                            ctx.parsed.language,
                        )
                    self._add(
                        ctx, entity, target, RelationshipType.IMPLEMENTS, entity.line,
                        {"target_name": interface},
                    )
            except Exception as e:
                logger.debug(f"Error processing class heritage at line {node_line(node)}: {e}")

    # Usage

    def _find_container(self, ctx: _FileContext, line: int) -> Optional[CodeEntity]:
        best = None
        best_key = None
        for entity in ctx.entities:
            if entity.type in NON_CONTAINER_TYPES:
                continue
            end_line = entity.metadata.get("end_line", entity.line)
            if not entity.line <= line <= end_line:
                continue
            key = (end_line - entity.line, CONTAINER_PREFERENCE.get(entity.type, 9))
            if best_key is None or key < best_key:
                best, best_key = entity, key
        return best

    def _classify_usage(self, node: Any) -> RelationshipType:
        """Classify an identifier by the nearest meaningful ancestor.

        The walk stops at the enclosing function or class, so an identifier
        inside a callback body is not attributed to the call taking the callback.
        """
        if node.type == "type_identifier":
            return RelationshipType.USES

        child = node
        current = node.parent
        while current is not None and current.type not in USAGE_BOUNDARY_NODES:
            if current.type in CALL_NODE_TYPES:
                return RelationshipType.CALLS
            if current.type in TYPE_CONTEXT_NODES:
                return RelationshipType.USES
            if current.type in ASSIGNMENT_NODES:
                if current.child_by_field_name("left") == child:
                    return RelationshipType.MODIFIES
                return RelationshipType.REFERENCES
            if current.type == "update_expression":
                return RelationshipType.MODIFIES
            child = current
            current = current.parent

        return RelationshipType.REFERENCES

    def _is_declaration_name(self, node: Any) -> bool:
        parent = node.parent
        return parent is not None and parent.child_by_field_name("name") == node

    def _extract_usage(self, ctx: _FileContext) -> None:
        identifiers = self.parser.find_nodes_by_type(
            ctx.parsed.root_node, ("identifier", "type_identifier")
        )

        for node in identifiers:
            try:
                if self._is_declaration_name(node):
                    continue
                if self.parser.find_ancestor(node, ("import_statement",)):
                    continue

                container = self._find_container(ctx, node_line(node))
                if container is None:
                    continue

                name = node_text(node)
                referenced = ctx.symbols.get(name, [None])[0]
                if referenced is None:
                    referenced = next(
                        (
                            e
                            for e in self.index.find_by_name(name)
                            if e.type not in NON_CONTAINER_TYPES
                        ),
                        None,
                    )
                if referenced is None or referenced.id == container.id:
                    continue

                rel_type = self._classify_usage(node)
                if (container.id, referenced.id, rel_type.value) in ctx.seen:
                    continue

                self._add(
                    ctx,
                    container,
                    referenced,
                    rel_type,
                    node_line(node),
                    {"reference_name": name, "usage_context": node.parent.type},
                )
            except Exception as e:
                logger.debug(f"Error processing identifier at line {node_line(node)}: {e}")

    # Definitions and exports

    def _extract_definitions(self, ctx: _FileContext) -> None:
        members = [
            e
            for e in ctx.entities
            if e.type in (EntityType.FUNCTION, EntityType.VARIABLE, EntityType.CONSTANT)
            and e.metadata.get("parent_class")
        ]

        for cls in self._entities_of(ctx, EntityType.CLASS):
            end_line = cls.metadata.get("end_line", cls.line)
            for member in members:
                if member.metadata["parent_class"] != cls.name:
                    continue
                if not cls.line <= member.line <= end_line:
                    continue
                self._add(
                    ctx,
                    cls,
                    member,
                    RelationshipType.DEFINES,
                    member.line,
                    {
                        "member_type": "method"
                        if member.type == EntityType.FUNCTION
                        else "property",
                        "visibility": member.metadata.get("visibility", "public"),
                        "is_static": member.metadata.get("is_static", False),
                    },
                )

    def _extract_exports(self, ctx: _FileContext) -> None:
        for export in self._entities_of(ctx, EntityType.EXPORT):
            try:
                self._add(
                    ctx,
                    ctx.module,
                    export,
                    RelationshipType.EXPORTS,
                    export.line,
                    {
                        "export_type": export.metadata.get("export_type"),
                        "is_default": export.metadata.get("is_default", False),
                    },
                )
                for exported_name in export.metadata.get("exported_names", []):
                    declared = ctx.symbols.get(exported_name)
                    if not declared:
                        continue
                    self._add(
                        ctx,
                        export,
                        declared[0],
                        RelationshipType.EXPORTS,
                        export.line,
                        {"exported_name": exported_name},
                    )
            except Exception as e:
                logger.debug(f"Error processing export at line {export.line}: {e}")
