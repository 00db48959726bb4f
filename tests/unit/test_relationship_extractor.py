"""Tests for relationship extraction."""

import os

import pytest

from codelens.analysis.entity_extractor import EntityExtractor, ExtractionOptions
from codelens.analysis.models import EntityType, RelationshipType
from codelens.analysis.relationship_extractor import (
    EntityIndex,
    RelationshipExtractor,
    RelationshipOptions,
    is_relative_specifier,
    resolve_module_path,
)


def analyze(parser, source, file_path="src/service.ts", index=None, **options):
    parsed = parser.parse(source, file_path)
    entities = EntityExtractor(parser).extract(parsed, ExtractionOptions(include_private=True))
    index = index if index is not None else EntityIndex()
    extractor = RelationshipExtractor(parser, index)
    relationships = extractor.extract(parsed, entities, RelationshipOptions(**options))
    return entities, relationships, index


def named(index, entity_id):
    return index.get(entity_id).name


def edges(relationships, index, rel_type):
    return {
        (named(index, r.source_id), named(index, r.target_id))
        for r in relationships
        if r.type == rel_type
    }


class TestCalls:
    """CALLS relationships."""

    def test_local_function_call(self, parser):
        source = "function helper() { return 1; }\nfunction main() { return helper(); }\n"
        _, relationships, index = analyze(parser, source)

        calls = [r for r in relationships if r.type == RelationshipType.CALLS]
        assert [(named(index, r.source_id), named(index, r.target_id)) for r in calls] == [
            ("main", "helper")
        ]
        assert calls[0].metadata["call_type"] == "function_call"

    def test_calls_inside_function_declaration_come_from_the_function(self, parser):
        source = "class User {}\nexport function createUser() { return new User(); }\n"
        _, relationships, index = analyze(parser, source, file_path="src/app.ts")

        calls = [
            (named(index, r.source_id), named(index, r.target_id), r.metadata.get("call_type"))
            for r in relationships
            if r.type == RelationshipType.CALLS
        ]
        assert calls == [("createUser", "User", "constructor_call")]

    def test_member_call_inside_function_declaration(self, parser):
        source = (
            "const store = { save() { return 1; } };\n"
            "function persist() { return store.save(); }\n"
        )
        _, relationships, index = analyze(parser, source)

        call = next(
            r
            for r in relationships
            if r.type == RelationshipType.CALLS and r.metadata.get("call_type") == "method_call"
        )
        assert named(index, call.source_id) == "persist"

    def test_callback_argument_is_a_call(self, parser):
        source = (
            "function helper(item) { return item; }\n"
            "export function run(items) { return items.map(helper); }\n"
        )
        _, relationships, index = analyze(parser, source)

        assert ("run", "helper") in edges(relationships, index, RelationshipType.CALLS)
        assert ("run", "helper") not in edges(relationships, index, RelationshipType.REFERENCES)

    def test_identifier_in_callback_body_is_not_attributed_to_outer_call(self, parser):
        source = (
            "let total = 0;\n"
            "function sum(items) {\n"
            "  items.forEach((item) => {\n"
            "    total = total + item;\n"
            "  });\n"
            "}\n"
        )
        _, relationships, index = analyze(parser, source)

        assert ("sum", "total") in edges(relationships, index, RelationshipType.MODIFIES)
        assert ("sum", "total") not in edges(relationships, index, RelationshipType.CALLS)

    @pytest.mark.parametrize(
        "body,expected",
        [
            ("await load();", True),
            ("await (load());", True),
            ("await (load() as Promise<number>);", True),
            ("load();", False),
        ],
    )
    def test_awaited_calls_are_async(self, parser, body, expected):
        source = f"async function load() {{ return 1; }}\nasync function main() {{ {body} }}\n"
        _, relationships, index = analyze(parser, source)

        call = next(
            r
            for r in relationships
            if r.type == RelationshipType.CALLS and "call_type" in r.metadata
        )
        assert call.metadata["is_async"] is expected

    def test_method_call_resolves_to_method(self, parser, service_source):
        _, relationships, index = analyze(parser, service_source)

        assert ("find", "load") in edges(relationships, index, RelationshipType.CALLS)
        assert ("load", "buildUser") in edges(relationships, index, RelationshipType.CALLS)

    def test_unresolved_call_targets_external_placeholder(self, parser):
        _, relationships, index = analyze(parser, "function main() { fetchRemote(); }\n")

        call = next(r for r in relationships if r.type == RelationshipType.CALLS)
        target = index.get(call.target_id)
        assert target.is_external
        assert target.file_path == "external"
        assert target.metadata["is_external"] is True

    def test_constructor_call(self, parser):
        source = "class Box {}\nfunction make() { return new Box(); }\n"
        _, relationships, index = analyze(parser, source)

        calls = [r for r in relationships if r.type == RelationshipType.CALLS]
        assert calls[0].metadata["call_type"] == "constructor_call"
        assert index.get(calls[0].target_id).type == EntityType.CLASS

    def test_runtime_calls_are_skipped_by_default(self, parser):
        source = "function main() { console.log(1); JSON.stringify({}); }\n"

        _, default_rels, _ = analyze(parser, source)
        _, all_rels, _ = analyze(parser, source, include_internal_calls=True)

        assert not [r for r in default_rels if r.type == RelationshipType.CALLS]
        assert [r for r in all_rels if r.type == RelationshipType.CALLS]

    def test_top_level_call_belongs_to_module(self, parser):
        source = "function boot() {}\nboot();\n"
        _, relationships, index = analyze(parser, source, file_path="src/main.ts")

        call = next(r for r in relationships if r.type == RelationshipType.CALLS)
        assert index.get(call.source_id).type == EntityType.MODULE


class TestImports:
    """IMPORTS relationships and module placeholders."""

    def test_relative_and_package_imports(self, parser, service_source):
        _, relationships, index = analyze(parser, service_source)
        imports = [r for r in relationships if r.type == RelationshipType.IMPORTS]

        by_source = {index.get(r.target_id).name: r for r in imports}
        relative = by_source["./logger"]
        package = by_source["path"]

        assert relative.metadata["import_type"] == "named"
        assert relative.metadata["specifiers"] == ["Logger"]
        assert relative.metadata["resolved_path"] == os.path.normpath("src/logger")
        assert relative.metadata["is_external"] is False

        assert package.metadata["import_type"] == "namespace"
        assert package.metadata["is_external"] is True
        assert index.get(package.target_id).is_external

    def test_named_import_uses_declaration_from_earlier_file(self, parser):
        index = EntityIndex()
        analyze(parser, "export function add(a, b) { return a + b; }\n", "src/math.ts", index)
        _, relationships, _ = analyze(
            parser, 'import { add } from "./math";\nadd(1, 2);\n', "src/main.ts", index
        )

        uses = [r for r in relationships if r.type == RelationshipType.USES]
        assert any(index.get(r.target_id).name == "add" for r in uses)

    def test_resolve_module_path(self):
        assert resolve_module_path("./util", "src/a/b.ts") == os.path.normpath("src/a/util")
        assert resolve_module_path("../lib", "src/a/b.ts") == os.path.normpath("src/lib")
        assert resolve_module_path("react", "src/a/b.ts") == "react"

    def test_is_relative_specifier(self):
        assert is_relative_specifier("./x")
        assert is_relative_specifier("..")
        assert not is_relative_specifier("lodash")
        assert not is_relative_specifier("@/utils")


class TestStructure:
    """Inheritance, definitions, exports and usage."""

    def test_inheritance_and_implementation(self, parser):
        source = (
            "interface Shape { area(): number; }\n"
            "class Base {}\n"
            "class Square extends Base implements Shape { area() { return 4; } }\n"
        )
        _, relationships, index = analyze(parser, source)

        assert ("Square", "Base") in edges(relationships, index, RelationshipType.INHERITS)
        assert ("Square", "Shape") in edges(relationships, index, RelationshipType.IMPLEMENTS)

    def test_class_defines_members(self, parser, service_source):
        _, relationships, index = analyze(parser, service_source)
        defines = edges(relationships, index, RelationshipType.DEFINES)

        assert ("UserService", "find") in defines
        assert ("UserService", "load") in defines
        assert ("UserService", "cache") in defines

    def test_module_exports_declarations(self, parser, service_source):
        _, relationships, index = analyze(parser, service_source)
        exported = {
            index.get(r.target_id).name
            for r in relationships
            if r.type == RelationshipType.EXPORTS
        }

        assert {"UserService", "buildUser", "Repository"} <= exported

    def test_assignment_is_modification(self, parser):
        source = "let total = 0;\nfunction bump() { total = total + 1; }\n"
        _, relationships, index = analyze(parser, source)

        assert ("bump", "total") in edges(relationships, index, RelationshipType.MODIFIES)

    def test_type_annotation_is_usage(self, parser):
        source = "interface User { id: string; }\nfunction show(user: User) { return user.id; }\n"
        _, relationships, index = analyze(parser, source)

        assert ("show", "User") in edges(relationships, index, RelationshipType.USES)

    def test_relationship_ids_are_deterministic(self, parser, service_source):
        _, first, _ = analyze(parser, service_source)
        _, second, _ = analyze(parser, service_source)

        assert [r.id for r in first] == [r.id for r in second]


class TestEntityIndex:
    """Session entity index."""

    def test_add_is_idempotent_by_id(self, parser):
        entities, _, index = analyze(parser, "function f() {}\n")
        size = len(index)

        index.add_all(entities)

        assert len(index) == size

    def test_entities_since_mark(self, parser):
        index = EntityIndex()
        analyze(parser, "function f() {}\n", "a.ts", index)
        mark = len(index)
        analyze(parser, "function g() {}\n", "b.ts", index)

        assert "g" in {e.name for e in index.entities_since(mark)}
        assert "f" not in {e.name for e in index.entities_since(mark)}
