"""Tests for query tokenization and broader-search term combinations."""

from scholar_search.utils.text import normalize_query, term_combinations, tokenize_query


class TestTokenizeQuery:
    def test_stems_terms(self):
        assert tokenize_query("machine learning") == ["machin", "learn"]

    def test_splits_camel_case_and_hyphens(self):
        assert tokenize_query("Graph-based deepLearning networks") == [
            "graph", "base", "deep", "learn", "network",
        ]

    def test_underscores_become_spaces(self):
        assert tokenize_query("graph_neural") == ["graph", "neural"]

    def test_drops_short_numeric_and_stopword_tokens(self):
        assert tokenize_query("AI in 3D vision for the 2020 era") == ["vision", "era"]

    def test_removes_duplicate_stems(self):
        assert tokenize_query("network networks Network") == ["network"]

    def test_empty_query(self):
        assert tokenize_query("   ") == []


class TestTermCombinations:
    def test_caps_at_four_pairs(self):
        assert term_combinations(["a1", "b1", "c1", "d1"]) == [
            "a1 b1", "a1 c1", "a1 d1", "b1 c1",
        ]

    def test_three_terms_give_three_pairs(self):
        assert term_combinations(["a1", "b1", "c1"]) == ["a1 b1", "a1 c1", "b1 c1"]

    def test_two_terms_append_top_term(self):
        assert term_combinations(["machin", "learn"]) == ["machin learn", "machin"]

    def test_fewer_than_two_terms(self):
        assert term_combinations(["graph"]) == []
        assert term_combinations([]) == []


def test_normalize_query():
    assert normalize_query("  Graph   Neural\tNetworks ") == "graph neural networks"
