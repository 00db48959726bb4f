"""Extract functions, classes, interfaces, types, variables, imports and exports."""

import logging
import re
from dataclasses import dataclass
from typing import Any, List, Optional

import blake3

from .models import CodeEntity, EntityType
from .parser import (
    ParsedTree,
    TypeScriptParser,
    node_column,
    node_end_line,
    node_line,
    node_text,
    strip_quotes,
)

logger = logging.getLogger(__name__)

# Test framework naming conventions (describe/it blocks, hooks, spec files)
TEST_NAME_PATTERNS = [
    re.compile(r"^test", re.IGNORECASE),
    re.compile(r"^it(?![a-z])"),
    re.compile(r"^describe(?![a-z])", re.IGNORECASE),
    re.compile(r"^beforeEach", re.IGNORECASE),
    re.compile(r"^afterEach", re.IGNORECASE),
    re.compile(r"^beforeAll", re.IGNORECASE),
    re.compile(r"^afterAll", re.IGNORECASE),
    re.compile(r"\.test\.", re.IGNORECASE),
    re.compile(r"\.spec\.", re.IGNORECASE),
]

VISIBILITY_MARKERS = ("private", "protected", "internal")

FUNCTION_SCOPE_TYPES = (
    "function_declaration",
    "generator_function_declaration",
    "function_expression",
    "function",
    "generator_function",
    "arrow_function",
    "method_definition",
)
MODULE_SCOPE_TYPES = ("module", "internal_module")

MAX_INITIAL_VALUE_LENGTH = 200


def generate_entity_id(
    file_path: str, entity_type: EntityType, name: str, line: int, column: int
) -> str:
    """Generate a deterministic entity ID using Blake3.

    Args:
        file_path: File the entity is declared in
        entity_type: Kind of entity
        name: Entity name
        line: 1-based line
        column: 1-based column

    Returns:
        Hexadecimal hash string
    """
    hash_input = f"{file_path}:{entity_type.value}:{name}:{line}:{column}"
    return blake3.blake3(hash_input.encode()).hexdigest()[:16]


def is_test_name(name: str) -> bool:
    return any(pattern.search(name) for pattern in TEST_NAME_PATTERNS)


@dataclass
class ExtractionOptions:
    """Filters applied while extracting entities."""

    include_private: bool = False
    include_tests: bool = False
    min_complexity: int = 0
    max_depth: Optional[int] = None  # advisory


class EntityExtractor:
    """Walk a syntax tree and produce typed code entities."""

    def __init__(self, parser: TypeScriptParser):
        """Initialize entity extractor.

        Args:
            parser: Parser used to query the syntax tree
        """
        self.parser = parser

    def extract(
        self, parsed: ParsedTree, options: Optional[ExtractionOptions] = None
    ) -> List[CodeEntity]:
        """Extract all entities declared in a parsed file.

        Sub-extractors run independently; a node that fails to extract is
        logged and skipped so that the rest of the file is still reported.

        Args:
            parsed: Parsed source file
            options: Extraction filters

        Returns:
            Entities in the order functions, classes, interfaces, types,
            variables, imports, exports
        """
        options = options or ExtractionOptions()
        lines = parsed.lines

        entities = []
        entities.extend(self._extract_functions(parsed, lines, options))
        entities.extend(self._extract_classes(parsed, lines, options))
        if parsed.language == "typescript":
            entities.extend(self._extract_interfaces(parsed, lines, options))
            entities.extend(self._extract_types(parsed, lines, options))
        entities.extend(self._extract_variables(parsed, options))
        entities.extend(self._extract_imports(parsed))
        entities.extend(self._extract_exports(parsed))

        logger.debug(f"Extracted {len(entities)} entities from {parsed.file_path}")
        return entities

    def _make_entity(
        self,
        parsed: ParsedTree,
        node: Any,
        name: str,
        entity_type: EntityType,
        metadata: dict,
        signature: Optional[str] = None,
        anchor: Any = None,
    ) -> CodeEntity:
        anchor = anchor if anchor is not None else node
        line = node_line(anchor)
        column = node_column(anchor)
        return CodeEntity(
            id=generate_entity_id(parsed.file_path, entity_type, name, line, column),
            name=name,
            type=entity_type,
            file_path=parsed.file_path,
            line=line,
            column=column,
            content=node_text(node),
            language=parsed.language,
            signature=signature,
            metadata=metadata,
        )

    def _declaration_head(self, node: Any) -> str:
        """Text of a declaration before its parameters or body."""
        text = node_text(node)
        cut_points = [i for i in (text.find("{"), text.find("(")) if i >= 0]
        return text[: min(cut_points)] if cut_points else text

    def _get_visibility(self, node: Any) -> str:
        for child in node.children:
            if child.type == "accessibility_modifier":
                return node_text(child)
        name_node = node.child_by_field_name("name")
        if name_node is not None and name_node.type == "private_property_identifier":
            return "private"

        head = self._declaration_head(node)
        for marker in VISIBILITY_MARKERS:
            if f"{marker} " in head:
                return marker
        return "public"

    def _should_include(self, name: str, visibility: str, options: ExtractionOptions) -> bool:
        if not options.include_private and (visibility == "private" or name.startswith("_")):
            return False
        if not options.include_tests and is_test_name(name):
            return False
        return True

    def _enclosing_class_name(self, node: Any) -> Optional[str]:
        """Name of the class a method or class field belongs to."""
        body = node.parent
        if node.parent is not None and node.parent.type in (
            "public_field_definition",
            "field_definition",
        ):
            body = node.parent.parent
        if body is None or body.type != "class_body" or body.parent is None:
            return None
        return self.parser.get_class_name(body.parent)

    def _extract_functions(
        self, parsed: ParsedTree, lines: List[str], options: ExtractionOptions
    ) -> List[CodeEntity]:
        entities = []

        for node in self.parser.find_functions(parsed.root_node):
            try:
                name = self.parser.get_function_name(node)
                if not name:
                    continue

                visibility = self._get_visibility(node)
                if node.parent is not None and node.parent.type in (
                    "public_field_definition",
                    "field_definition",
                ):
                    visibility = self._get_visibility(node.parent)
                if not self._should_include(name, visibility, options):
                    continue

                complexity = self.parser.calculate_complexity(node)
                if options.min_complexity and complexity < options.min_complexity:
                    continue

                metadata = {
                    "parameters": self.parser.get_parameters(node),
                    "return_type": self.parser.get_return_type(node),
                    "visibility": visibility,
                    "is_async": self.parser.has_modifier(node, "async"),
                    "is_static": self.parser.has_modifier(node, "static"),
                    "complexity": complexity,
                    "line_count": self.parser.get_line_count(node),
                    "documentation": self.parser.get_documentation(
                        self._documented_node(node), lines
                    ),
                    "end_line": node_end_line(node),
                    "parent_class": self._enclosing_class_name(node),
                    "node_type": node.type,
                }
                entities.append(
                    self._make_entity(
                        parsed,
                        node,
                        name,
                        EntityType.FUNCTION,
                        metadata,
                        signature=self.parser.get_function_signature(node),
                    )
                )
            except Exception as e:
                logger.debug(f"Error processing function node in {parsed.file_path}: {e}")

        return entities

    def _documented_node(self, node: Any) -> Any:
        """The outermost statement a doc comment would precede."""
        current = node
        while current.parent is not None and current.parent.type in (
            "export_statement",
            "variable_declarator",
            "lexical_declaration",
            "variable_declaration",
            "public_field_definition",
            "field_definition",
        ):
            current = current.parent
        return current

    def _extract_classes(
        self, parsed: ParsedTree, lines: List[str], options: ExtractionOptions
    ) -> List[CodeEntity]:
        entities = []

        for node in self.parser.find_classes(parsed.root_node):
            try:
                name = self.parser.get_class_name(node)
                if not name:
                    continue

                visibility = self._get_visibility(node)
                if not self._should_include(name, visibility, options):
                    continue

                extends, implements = self.parser.get_class_heritage(node)
                members = self.parser.get_class_members(node)

                metadata = {
                    "visibility": visibility,
                    "is_abstract": node.type == "abstract_class_declaration",
                    "extends": extends,
                    "implements": implements,
                    "methods": members["methods"],
                    "properties": members["properties"],
                    "constructors": members["constructors"],
                    "documentation": self.parser.get_documentation(
                        self._documented_node(node), lines
                    ),
                    "line_count": self.parser.get_line_count(node),
                    "end_line": node_end_line(node),
                    "node_type": node.type,
                }
                entities.append(self._make_entity(parsed, node, name, EntityType.CLASS, metadata))
            except Exception as e:
                logger.debug(f"Error processing class node in {parsed.file_path}: {e}")

        return entities

    def _extract_interfaces(
        self, parsed: ParsedTree, lines: List[str], options: ExtractionOptions
    ) -> List[CodeEntity]:
        entities = []

        for node in self.parser.find_interfaces(parsed.root_node):
            try:
                name = self.parser.get_declared_name(node)
                if not name or not self._should_include(name, "public", options):
                    continue

                members = self.parser.get_interface_members(node)
                metadata = {
                    "extends": self.parser.get_interface_extends(node),
                    "methods": members["methods"],
                    "properties": members["properties"],
                    "documentation": self.parser.get_documentation(
                        self._documented_node(node), lines
                    ),
                    "end_line": node_end_line(node),
                }
                entities.append(
                    self._make_entity(parsed, node, name, EntityType.INTERFACE, metadata)
                )
            except Exception as e:
                logger.debug(f"Error processing interface node in {parsed.file_path}: {e}")

        return entities

    def _extract_types(
        self, parsed: ParsedTree, lines: List[str], options: ExtractionOptions
    ) -> List[CodeEntity]:
        entities = []

        for node in self.parser.find_types(parsed.root_node):
            try:
                name = self.parser.get_declared_name(node)
                if not name or not self._should_include(name, "public", options):
                    continue

                value = node.child_by_field_name("value")
                type_params = node.child_by_field_name("type_parameters")
                generic_parameters = []
                if type_params is not None:
                    for param in type_params.named_children:
                        param_name = param.child_by_field_name("name")
                        if param_name is not None:
                            generic_parameters.append(node_text(param_name))

                metadata = {
                    "definition": node_text(value) if value is not None else None,
                    "generic_parameters": generic_parameters,
                    "documentation": self.parser.get_documentation(
                        self._documented_node(node), lines
                    ),
                    "end_line": node_end_line(node),
                }
                entities.append(self._make_entity(parsed, node, name, EntityType.TYPE, metadata))
            except Exception as e:
                logger.debug(f"Error processing type alias in {parsed.file_path}: {e}")

        return entities

    def _get_scope(self, node: Any) -> str:
        """Classify where a declaration lives by walking its ancestors."""
        current = node.parent
        while current is not None:
            if current.type in FUNCTION_SCOPE_TYPES:
                return "function"
            if current.type == "statement_block":
                if current.parent is not None and current.parent.type in FUNCTION_SCOPE_TYPES:
                    return "function"
                return "block"
            if current.type in MODULE_SCOPE_TYPES:
                return "module"
            if current.type == "program":
                return "global"
            current = current.parent
        return "global"

    def _extract_variables(
        self, parsed: ParsedTree, options: ExtractionOptions
    ) -> List[CodeEntity]:
        entities = []

        for node in self.parser.find_variables(parsed.root_node):
            try:
                kind_token = node.children[0] if node.children else None
                is_constant = kind_token is not None and kind_token.type == "const"
                scope = self._get_scope(node)

                for name, declarator in self.parser.get_variable_declarators(node):
                    if not self._should_include(name, "public", options):
                        continue

                    type_node = declarator.child_by_field_name("type")
                    value_node = declarator.child_by_field_name("value")
                    metadata = {
                        "variable_type": node_text(type_node).lstrip(":").strip()
                        if type_node is not None
                        else None,
                        "scope": scope,
                        "is_constant": is_constant,
                        "is_static": False,
                        "initial_value": node_text(value_node)[:MAX_INITIAL_VALUE_LENGTH]
                        if value_node is not None
                        else None,
                        "parent_class": None,
                        "end_line": node_end_line(declarator),
                    }
                    entity_type = EntityType.CONSTANT if is_constant else EntityType.VARIABLE
                    entities.append(
                        self._make_entity(
                            parsed, declarator, name, entity_type, metadata, anchor=declarator
                        )
                    )
            except Exception as e:
                logger.debug(f"Error processing variable declaration in {parsed.file_path}: {e}")

        for node in self.parser.find_class_fields(parsed.root_node):
            try:
                name_node = node.child_by_field_name("name") or node.child_by_field_name(
                    "property"
                )
                if name_node is None:
                    continue
                name = node_text(name_node)

                visibility = self._get_visibility(node)
                if not self._should_include(name, visibility, options):
                    continue

                is_constant = self.parser.has_modifier(node, "readonly")
                type_node = node.child_by_field_name("type")
                value_node = node.child_by_field_name("value")
                metadata = {
                    "variable_type": node_text(type_node).lstrip(":").strip()
                    if type_node is not None
                    else None,
                    "scope": "class",
                    "is_constant": is_constant,
                    "is_static": self.parser.has_modifier(node, "static"),
                    "initial_value": node_text(value_node)[:MAX_INITIAL_VALUE_LENGTH]
                    if value_node is not None
                    else None,
                    "parent_class": self._enclosing_class_name(name_node),
                    "visibility": visibility,
                    "end_line": node_end_line(node),
                }
                entity_type = EntityType.CONSTANT if is_constant else EntityType.VARIABLE
                entities.append(self._make_entity(parsed, node, name, entity_type, metadata))
            except Exception as e:
                logger.debug(f"Error processing class field in {parsed.file_path}: {e}")

        return entities

    def _extract_imports(self, parsed: ParsedTree) -> List[CodeEntity]:
        entities = []

        for node in self.parser.find_imports(parsed.root_node):
            try:
                info = self.parser.get_import_specifiers(node)
                if not info["source"]:
                    continue

                specifiers = list(info["named"])
                if info["default"]:
                    specifiers.insert(0, info["default"])
                if info["namespace"]:
                    specifiers.append(info["namespace"])

                metadata = {
                    "source": info["source"],
                    "specifiers": specifiers,
                    "named_imports": info["named"],
                    "default_import": info["default"],
                    "namespace_import": info["namespace"],
                    "end_line": node_end_line(node),
                }
                entities.append(
                    self._make_entity(
                        parsed, node, f"import from {info['source']}", EntityType.IMPORT, metadata
                    )
                )
            except Exception as e:
                logger.debug(f"Error processing import in {parsed.file_path}: {e}")

        return entities

    def get_exported_names(self, node: Any) -> List[str]:
        """Names an export statement makes public."""
        names = []
        declaration = node.child_by_field_name("declaration")
        value = node.child_by_field_name("value")

        if declaration is not None:
            if declaration.type in ("lexical_declaration", "variable_declaration"):
                names.extend(name for name, _ in self.parser.get_variable_declarators(declaration))
            else:
                name_node = declaration.child_by_field_name("name")
                if name_node is not None:
                    names.append(node_text(name_node))
        elif value is not None:
            if value.type == "identifier":
                names.append(node_text(value))
            else:
                name_node = value.child_by_field_name("name")
                if name_node is not None:
                    names.append(node_text(name_node))
        else:
            for child in node.named_children:
                if child.type == "export_clause":
                    for specifier in child.named_children:
                        name_node = specifier.child_by_field_name("name")
                        if name_node is not None:
                            names.append(node_text(name_node))
                elif child.type in ("function_declaration", "class_declaration", "class"):
                    # export default function foo() / export default class Foo
                    name_node = child.child_by_field_name("name")
                    if name_node is not None:
                        names.append(node_text(name_node))

        return names

    def _extract_exports(self, parsed: ParsedTree) -> List[CodeEntity]:
        entities = []

        for node in self.parser.find_exports(parsed.root_node):
            try:
                is_default = any(child.type == "default" for child in node.children)
                exported_names = self.get_exported_names(node)
                source_node = node.child_by_field_name("source")

                if is_default:
                    name = "export default"
                elif exported_names:
                    name = f"export {exported_names[0]}"
                elif source_node is not None:
                    name = f"export from {strip_quotes(node_text(source_node))}"
                else:
                    continue

                metadata = {
                    "exported_name": exported_names[0] if exported_names else None,
                    "exported_names": exported_names,
                    "is_default": is_default,
                    "export_type": "default_export" if is_default else "named_export",
                    "source": strip_quotes(node_text(source_node))
                    if source_node is not None
                    else None,
                    "end_line": node_end_line(node),
                }
                entities.append(self._make_entity(parsed, node, name, EntityType.EXPORT, metadata))
            except Exception as e:
                logger.debug(f"Error processing export in {parsed.file_path}: {e}")

        return entities
