"""Tree-sitter parsing and node queries for TypeScript and JavaScript."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import tree_sitter_javascript as tsjavascript
import tree_sitter_typescript as tstypescript
from tree_sitter import Language, Parser

from .errors import ValidationError

logger = logging.getLogger(__name__)

EXTENSION_LANGUAGES = {
    ".ts": "typescript",
    ".tsx": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
}

FUNCTION_NODE_TYPES = (
    "function_declaration",
    "generator_function_declaration",
    "function_expression",
    "function",
    "generator_function",
    "arrow_function",
    "method_definition",
)
CLASS_NODE_TYPES = ("class_declaration", "abstract_class_declaration", "class")
INTERFACE_NODE_TYPES = ("interface_declaration",)
TYPE_NODE_TYPES = ("type_alias_declaration",)
VARIABLE_NODE_TYPES = ("lexical_declaration", "variable_declaration")
FIELD_NODE_TYPES = ("public_field_definition", "field_definition")
IMPORT_NODE_TYPES = ("import_statement",)
EXPORT_NODE_TYPES = ("export_statement",)
CALL_NODE_TYPES = ("call_expression", "new_expression")

# Nodes that add a branch to the control flow graph
DECISION_NODE_TYPES = {
    "if_statement",
    "for_statement",
    "for_in_statement",
    "while_statement",
    "do_statement",
    "switch_case",
    "catch_clause",
    "ternary_expression",
}
LOGICAL_OPERATORS = {"&&", "||", "??"}


def node_text(node: Any) -> str:
    """Return the source text of a node as a string."""
    if node is None or node.text is None:
        return ""
    return node.text.decode("utf-8", errors="replace")


def node_line(node: Any) -> int:
    """1-based start line of a node."""
    return node.start_point[0] + 1


def node_end_line(node: Any) -> int:
    """1-based end line of a node."""
    return node.end_point[0] + 1


def node_column(node: Any) -> int:
    """1-based start column of a node."""
    return node.start_point[1] + 1


def strip_quotes(text: str) -> str:
    return text.strip().strip("'\"`")


@dataclass
class ParsedTree:
    """A parsed source file together with the text it was parsed from."""

    tree: Any
    file_path: str
    language: str
    source: bytes

    @property
    def root_node(self) -> Any:
        return self.tree.root_node

    @property
    def has_errors(self) -> bool:
        return self.tree.root_node.has_error

    @property
    def lines(self) -> List[str]:
        return self.source.decode("utf-8", errors="replace").splitlines()


class TypeScriptParser:
    """Parse TypeScript/JavaScript with tree-sitter and query the resulting trees."""

    def __init__(self):
        """Initialize the TypeScript, TSX and JavaScript grammars."""
        self.languages: Dict[str, Language] = {}
        self.parsers: Dict[str, Parser] = {}
        self._init_languages()

    def _init_languages(self) -> None:
        """Initialize tree-sitter languages."""
        grammars = {
            "typescript": tstypescript.language_typescript,
            "tsx": tstypescript.language_tsx,
            "javascript": tsjavascript.language,
        }

        for dialect, lang_func in grammars.items():
            try:
                language = Language(lang_func())
                self.languages[dialect] = language

                parser = Parser()
                parser.language = language
                self.parsers[dialect] = parser

                logger.debug(f"Initialized parser for {dialect}")
            except Exception as e:
                logger.error(f"Error initializing language {dialect}: {e}")

    @staticmethod
    def detect_language(file_path: str) -> Optional[str]:
        """Detect the source language from a file extension.

        Args:
            file_path: Path of the source file

        Returns:
            "typescript", "javascript" or None if unsupported
        """
        return EXTENSION_LANGUAGES.get(Path(file_path).suffix.lower())

    @staticmethod
    def is_supported_file(file_path: str) -> bool:
        return Path(file_path).suffix.lower() in EXTENSION_LANGUAGES

    def parse(self, content: str, file_path: str, language: Optional[str] = None) -> ParsedTree:
        """Parse source text into a syntax tree.

        Syntax errors do not abort parsing: tree-sitter produces a tree with
        error nodes and callers continue with whatever could be recognized.

        Args:
            content: Source text
            file_path: Path of the file the text came from
            language: Language override; detected from the extension if omitted

        Returns:
            ParsedTree for the content

        Raises:
            ValidationError: If the language is not supported
        """
        language = language or self.detect_language(file_path)
        if language not in ("typescript", "javascript"):
            raise ValidationError(
                f"Unsupported language for file: {file_path}",
                {"file_path": file_path, "language": language},
            )

        dialect = language
        if language == "typescript" and Path(file_path).suffix.lower() == ".tsx":
            dialect = "tsx"

        parser = self.parsers.get(dialect)
        if parser is None:
            raise ValidationError(f"Parser not available for {dialect}", {"file_path": file_path})

        source = content.encode("utf-8")
        tree = parser.parse(source)

        if tree.root_node.has_error:
            logger.warning(f"Parse errors in {file_path}, continuing with partial tree")

        return ParsedTree(tree=tree, file_path=file_path, language=language, source=source)

    # Node queries

    def find_nodes_by_type(self, node: Any, node_types: Tuple[str, ...]) -> List[Any]:
        """Find all named nodes of the given types in document order.

        Keyword tokens share type names with named nodes (``function``,
        ``class``) and are skipped.

        Args:
            node: Root node to search from
            node_types: Node types to collect

        Returns:
            List of matching nodes
        """
        matches = []
        stack = [node]

        while stack:
            current = stack.pop()
            if current.is_named and current.type in node_types:
                matches.append(current)
            stack.extend(reversed(current.children))

        return matches

    def find_functions(self, root: Any) -> List[Any]:
        return self.find_nodes_by_type(root, FUNCTION_NODE_TYPES)

    def find_classes(self, root: Any) -> List[Any]:
        return self.find_nodes_by_type(root, CLASS_NODE_TYPES)

    def find_interfaces(self, root: Any) -> List[Any]:
        return self.find_nodes_by_type(root, INTERFACE_NODE_TYPES)

    def find_types(self, root: Any) -> List[Any]:
        return self.find_nodes_by_type(root, TYPE_NODE_TYPES)

    def find_variables(self, root: Any) -> List[Any]:
        return self.find_nodes_by_type(root, VARIABLE_NODE_TYPES)

    def find_class_fields(self, root: Any) -> List[Any]:
        return self.find_nodes_by_type(root, FIELD_NODE_TYPES)

    def find_imports(self, root: Any) -> List[Any]:
        return self.find_nodes_by_type(root, IMPORT_NODE_TYPES)

    def find_exports(self, root: Any) -> List[Any]:
        return self.find_nodes_by_type(root, EXPORT_NODE_TYPES)

    def find_function_calls(self, root: Any) -> List[Any]:
        return self.find_nodes_by_type(root, CALL_NODE_TYPES)

    # Names

    def get_function_name(self, node: Any) -> Optional[str]:
        """Derive the name of a function-like node.

        Declarations and methods carry their own name. Anonymous functions
        take the name of the variable, assignment target, object key or class
        field they are bound to.

        Args:
            node: Function-like node

        Returns:
            Function name or None if no name can be derived
        """
        name_node = node.child_by_field_name("name")
        if name_node is not None:
            return node_text(name_node)

        parent = node.parent
        if parent is None:
            return None

        if parent.type == "variable_declarator":
            target = parent.child_by_field_name("name")
            if target is not None and target.type == "identifier":
                return node_text(target)
        elif parent.type == "assignment_expression":
            left = parent.child_by_field_name("left")
            if left is not None and left.type == "member_expression":
                left = left.child_by_field_name("property")
            if left is not None:
                return node_text(left)
        elif parent.type == "pair":
            key = parent.child_by_field_name("key")
            if key is not None:
                return strip_quotes(node_text(key))
        elif parent.type in FIELD_NODE_TYPES:
            field_name = parent.child_by_field_name("name") or parent.child_by_field_name(
                "property"
            )
            if field_name is not None:
                return node_text(field_name)

        return None

    def get_class_name(self, node: Any) -> Optional[str]:
        name_node = node.child_by_field_name("name")
        if name_node is not None:
            return node_text(name_node)
        # Class expressions bound to a variable
        if node.parent is not None and node.parent.type == "variable_declarator":
            target = node.parent.child_by_field_name("name")
            if target is not None:
                return node_text(target)
        return None

    def get_declared_name(self, node: Any) -> Optional[str]:
        """Name of an interface or type alias declaration."""
        name_node = node.child_by_field_name("name")
        return node_text(name_node) if name_node is not None else None

    def get_variable_declarators(self, declaration: Any) -> List[Tuple[str, Any]]:
        """List the names introduced by a variable declaration.

        Destructuring patterns contribute one name per bound identifier.

        Args:
            declaration: lexical_declaration or variable_declaration node

        Returns:
            List of (name, variable_declarator node) tuples
        """
        names = []
        for declarator in declaration.named_children:
            if declarator.type != "variable_declarator":
                continue
            name_node = declarator.child_by_field_name("name")
            if name_node is None:
                continue
            if name_node.type == "identifier":
                names.append((node_text(name_node), declarator))
            else:
                for identifier in self.find_nodes_by_type(
                    name_node, ("identifier", "shorthand_property_identifier_pattern")
                ):
                    names.append((node_text(identifier), declarator))
        return names

    def get_import_specifiers(self, node: Any) -> Dict[str, Any]:
        """Describe what an import statement brings into scope.

        Args:
            node: import_statement node

        Returns:
            Dictionary with source, default, namespace and named specifiers
        """
        source_node = node.child_by_field_name("source")
        info = {
            "source": strip_quotes(node_text(source_node)) if source_node is not None else "",
            "default": None,
            "namespace": None,
            "named": [],
        }

        for child in node.named_children:
            if child.type != "import_clause":
                continue
            for part in child.named_children:
                if part.type == "identifier":
                    info["default"] = node_text(part)
                elif part.type == "namespace_import":
                    identifiers = [c for c in part.named_children if c.type == "identifier"]
                    if identifiers:
                        info["namespace"] = node_text(identifiers[0])
                elif part.type == "named_imports":
                    for specifier in part.named_children:
                        if specifier.type != "import_specifier":
                            continue
                        name_node = specifier.child_by_field_name("name")
                        if name_node is not None:
                            info["named"].append(node_text(name_node))

        return info

    def get_called_function_name(self, call: Any) -> Optional[str]:
        """Name of the function invoked by a call or new expression."""
        callee = call.child_by_field_name("function")
        if callee is None:
            callee = call.child_by_field_name("constructor")
        if callee is None:
            return None

        if callee.type in ("identifier", "super", "this"):
            return node_text(callee)
        if callee.type == "member_expression":
            prop = callee.child_by_field_name("property")
            return node_text(prop) if prop is not None else None
        return None

    def get_call_receiver(self, call: Any) -> Optional[str]:
        """Object a method is invoked on, e.g. ``console`` for ``console.log()``."""
        callee = call.child_by_field_name("function")
        if callee is None or callee.type != "member_expression":
            return None
        obj = callee.child_by_field_name("object")
        return node_text(obj) if obj is not None else None

    # Declarations

    @staticmethod
    def _type_base_name(node: Any) -> str:
        """Strip type arguments from a heritage type, e.g. ``Base<T>`` -> ``Base``."""
        return node_text(node).split("<")[0].strip()

    def get_class_heritage(self, node: Any) -> Tuple[Optional[str], List[str]]:
        """Read the extends and implements clauses of a class.

        Args:
            node: Class node

        Returns:
            Tuple of (extended class name or None, implemented interface names)
        """
        extends = None
        implements = []

        heritage = next((c for c in node.children if c.type == "class_heritage"), None)
        if heritage is None:
            return extends, implements

        for child in heritage.named_children:
            if child.type == "extends_clause":
                value = child.child_by_field_name("value")
                if value is None and child.named_children:
                    value = child.named_children[0]
                if value is not None:
                    extends = self._type_base_name(value)
            elif child.type == "implements_clause":
                implements.extend(
                    self._type_base_name(t) for t in child.named_children if t.type != "comment"
                )
            elif extends is None and child.type != "comment":
                # JavaScript heritage holds the superclass expression directly
                extends = self._type_base_name(child)

        return extends, implements

    def get_interface_extends(self, node: Any) -> List[str]:
        clause = next(
            (c for c in node.children if c.type in ("extends_type_clause", "extends_clause")),
            None,
        )
        if clause is None:
            return []
        return [self._type_base_name(t) for t in clause.named_children if t.type != "comment"]

    def get_class_members(self, node: Any) -> Dict[str, List[str]]:
        """Method, property and constructor names declared in a class body."""
        members = {"methods": [], "properties": [], "constructors": []}
        body = node.child_by_field_name("body")
        if body is None:
            return members

        for member in body.named_children:
            if member.type == "method_definition":
                name = self.get_function_name(member)
                if name == "constructor":
                    members["constructors"].append(name)
                elif name:
                    members["methods"].append(name)
            elif member.type in FIELD_NODE_TYPES:
                name_node = member.child_by_field_name("name") or member.child_by_field_name(
                    "property"
                )
                if name_node is not None:
                    members["properties"].append(node_text(name_node))

        return members

    def get_interface_members(self, node: Any) -> Dict[str, List[str]]:
        members = {"methods": [], "properties": []}
        body = node.child_by_field_name("body")
        if body is None:
            return members

        for member in body.named_children:
            name_node = member.child_by_field_name("name")
            if name_node is None:
                continue
            if member.type == "method_signature":
                members["methods"].append(node_text(name_node))
            elif member.type == "property_signature":
                members["properties"].append(node_text(name_node))

        return members

    # Function details

    def get_parameters(self, node: Any) -> List[str]:
        """Source text of each declared parameter."""
        params = node.child_by_field_name("parameters")
        if params is None:
            single = node.child_by_field_name("parameter")
            return [node_text(single)] if single is not None else []
        return [node_text(p) for p in params.named_children if p.type != "comment"]

    def get_return_type(self, node: Any) -> Optional[str]:
        return_type = node.child_by_field_name("return_type")
        if return_type is None:
            return None
        return node_text(return_type).lstrip(":").strip() or None

    def get_function_signature(self, node: Any) -> str:
        """Declaration text up to the start of the body."""
        text = node_text(node)
        cut_points = [i for i in (text.find("{"), text.find("=>")) if i >= 0]
        if cut_points:
            return text[: min(cut_points)].strip()
        return text.splitlines()[0].strip() if text else ""

    def calculate_complexity(self, node: Any) -> int:
        """Cyclomatic complexity: one plus the number of decision points.

        Args:
            node: Function-like node

        Returns:
            Complexity score (at least 1)
        """
        complexity = 1
        stack = list(node.children)

        while stack:
            current = stack.pop()
            if current.type in DECISION_NODE_TYPES:
                complexity += 1
            elif current.type == "binary_expression":
                operator = current.child_by_field_name("operator")
                if operator is not None and operator.type in LOGICAL_OPERATORS:
                    complexity += 1
            stack.extend(current.children)

        return complexity

    @staticmethod
    def get_line_count(node: Any) -> int:
        return node.end_point[0] - node.start_point[0] + 1

    def get_documentation(self, node: Any, lines: List[str]) -> Optional[str]:
        """Find the JSDoc block that immediately precedes a node.

        Blank lines and ``//`` comments between the block and the node are
        skipped.

        Args:
            node: Documented node
            lines: Source lines of the file

        Returns:
            Documentation text or None
        """
        row = node.start_point[0] - 1

        while row >= 0:
            stripped = lines[row].strip()
            if not stripped or stripped.startswith("//"):
                row -= 1
                continue
            break

        if row < 0 or not lines[row].strip().endswith("*/"):
            return None

        doc_lines = []
        while row >= 0:
            stripped = lines[row].strip()
            doc_lines.append(stripped)
            if stripped.startswith("/**"):
                return "\n".join(reversed(doc_lines))
            if stripped.startswith("/*"):
                return None
            row -= 1

        return None

    # Ancestry

    @staticmethod
    def find_ancestor(node: Any, node_types: Tuple[str, ...]) -> Optional[Any]:
        current = node.parent
        while current is not None:
            if current.type in node_types:
                return current
            current = current.parent
        return None

    @staticmethod
    def has_modifier(node: Any, keyword: str) -> bool:
        """Check for a modifier token (static, async, readonly, abstract ...) on a node."""
        for child in node.children:
            if child.type == keyword:
                return True
            if child.type == "accessibility_modifier" and node_text(child) == keyword:
                return True
            if child.type in ("{", "statement_block", "class_body", "formal_parameters"):
                break
        return False
