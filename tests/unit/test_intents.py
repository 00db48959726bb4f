"""Tests for natural-language intent recognition."""

import pytest

from codelens.analysis.query.intents import QueryIntent, extract_basic_intent, lift_filters, parse_query


class TestParseQuery:
    @pytest.mark.parametrize(
        "text,query_type,target",
        [
            ("What are the most complex functions?", "find", "function"),
            ("Which classes have the most methods?", "find", "function"),
            ("List every class", "find", "class"),
            ("Show me the dependency graph", "find", "relationship"),
            ("What design patterns are used?", "find", "relationship"),
            ("Where is the technical debt?", "find", "pattern"),
            ("Explain the overall architecture", "analyze", "project"),
            ("How many files exist?", "count", "file"),
        ],
    )
    def test_first_matching_intent_wins(self, text, query_type, target):
        intent = parse_query(text)

        assert (intent.type, intent.target) == (query_type, target)

    @pytest.mark.parametrize("text", ["", "   "])
    def test_empty_text(self, text):
        assert parse_query(text) is None

    def test_matcher_modifiers_are_copied(self):
        first = parse_query("analyze complexity")
        first.modifiers["limit"] = 1

        second = parse_query("analyze complexity")

        assert second.modifiers == {"include_metrics": True}

    def test_context_holds_normalized_words(self):
        intent = parse_query("  Find Functions  ")

        assert intent.context == ["find", "functions"]


class TestFilters:
    def test_name_complexity_and_limit(self):
        intent = parse_query("top 3 functions named parseUser with complexity greater than 5")

        assert intent.filters["name"] == "parseuser"
        assert intent.filters["complexity"] == ("gt", 5)
        assert intent.modifiers["limit"] == 3

    def test_less_than_complexity(self):
        intent = parse_query("functions with complexity fewer than 4")

        assert intent.filters["complexity"] == ("lt", 4)

    def test_exact_complexity(self):
        intent = parse_query("functions with a complexity of 7")

        assert intent.filters["complexity"] == ("eq", 7)

    def test_no_filters(self):
        intent = lift_filters("find functions", QueryIntent(type="find", target="function"))

        assert intent.filters == {}
        assert intent.modifiers == {}


class TestFallback:
    def test_defaults(self):
        intent = extract_basic_intent("hello there")

        assert (intent.type, intent.target) == ("find", "function")

    def test_later_keywords_override(self):
        intent = extract_basic_intent("explain and list variables")

        assert intent.type == "list"
        assert intent.target == "variable"

    def test_how_many_means_count(self):
        assert extract_basic_intent("how many modules").type == "count"
