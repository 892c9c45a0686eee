"""
Unit tests for the embedding table: lookups, incremental updates, thresholds.
"""

import numpy as np
import pytest

from config import IndexingConfig
from encoder import generate_random_vector
from errors import MalformedContextError, UnknownTokenError
from retrieval import EmbeddingTable


def _v(cid, config):
    return generate_random_vector(cid, config.seed, config.dimension, config.nonzeros).to_dense()


class TestLookups:
    """get / find / membership semantics."""

    def test_unknown_token(self, small_config):
        table = EmbeddingTable(small_config)
        table.update(["the", "cat"])

        with pytest.raises(UnknownTokenError) as exc_info:
            table.get("dog")
        assert exc_info.value.token == "dog"
        assert table.find("dog") is None
        assert "dog" not in table

    def test_unknown_token_is_key_error(self, small_config):
        table = EmbeddingTable(small_config)
        with pytest.raises(KeyError):
            table["anything"]

    def test_zero_embedding_is_found(self, small_config):
        """A zero sum is a real embedding, distinct from absence."""
        n = small_config.dimension
        table = EmbeddingTable.from_sums(
            {"zero": np.zeros(n, dtype=np.int64)}, {"zero": 2}, context_count=2, config=small_config,
        )

        assert "zero" in table
        assert table.get("zero").tolist() == [0] * n
        assert table.find("zero") is not None
        assert table.find("never") is None

    def test_cancelling_contexts_give_found_zero(self):
        """With n = m = 2 every vector is +-[1, -1]; two opposite contexts sum to zero."""
        config = IndexingConfig(dimension=2, nonzeros=2, seed=0, min_count=0)
        first = _v(0, config)
        opposite = next(cid for cid in range(1, 64) if np.array_equal(_v(cid, config), -first))

        table = EmbeddingTable(config)
        table.update(["z"])
        while table.context_count < opposite:
            table.skip_context()
        table.update(["z"])

        assert table.frequency("z") == 2
        assert "z" in table
        assert table.get("z").tolist() == [0, 0]
        assert table.find("z") is not None
        assert table.find("never") is None

    def test_get_returns_copy(self, small_config):
        table = EmbeddingTable(small_config)
        table.update(["a"])
        r = table.get("a")
        r[:] = 99

        assert np.array_equal(table.get("a"), _v(0, small_config))

    def test_below_threshold_is_unknown(self):
        config = IndexingConfig(dimension=10, nonzeros=4, seed=42, min_count=1)
        table = EmbeddingTable(config)
        table.update(["a", "b", "a"])

        assert table.tokens() == frozenset({"a"})
        assert table.frequency("b") == 1
        assert table.observed_count == 2
        with pytest.raises(UnknownTokenError):
            table.get("b")

    def test_dimension_and_ordering(self, small_config):
        table = EmbeddingTable(small_config)
        table.update(["pear", "apple", "fig"])

        assert table.dimension() == 10
        assert list(table) == ["apple", "fig", "pear"]
        assert [t for t, _ in table.items()] == ["apple", "fig", "pear"]

    def test_as_matrix(self, small_config):
        table = EmbeddingTable(small_config)
        table.update(["b", "a"])
        table.update(["a"])
        tokens, M = table.as_matrix()

        assert tokens == ["a", "b"]
        assert M.shape == (2, 10)
        assert np.array_equal(M[0], _v(0, small_config) + _v(1, small_config))
        assert np.array_equal(M[1], _v(0, small_config))

    def test_as_matrix_empty(self, small_config):
        tokens, M = EmbeddingTable(small_config).as_matrix()

        assert tokens == []
        assert M.shape == (0, 10)


class TestUpdate:
    """Incremental extension one context at a time."""

    def test_update_assigns_ids_in_order(self, small_config):
        table = EmbeddingTable(small_config)

        assert table.update(["a"]) == 0
        assert table.update(["b"]) == 1
        assert table.context_count == 2

    def test_update_adds_weighted_vector(self, small_config):
        table = EmbeddingTable(small_config)
        table.update(["a", "a", "b"])
        table.update(["a"])

        assert np.array_equal(table.get("a"), 2 * _v(0, small_config) + _v(1, small_config))
        assert table.frequency("a") == 3

    def test_update_leaves_other_tokens_untouched(self, small_config):
        table = EmbeddingTable(small_config)
        table.update(["a", "b"])
        before = table.get("b")
        table.update(["a", "c"])

        assert np.array_equal(table.get("b"), before)

    def test_threshold_crossing(self):
        config = IndexingConfig(dimension=10, nonzeros=4, seed=42, min_count=2)
        table = EmbeddingTable(config)
        table.update(["x"])
        table.update(["x"])
        assert "x" not in table

        table.update(["x"])
        assert "x" in table
        expected = _v(0, config) + _v(1, config) + _v(2, config)
        assert np.array_equal(table.get("x"), expected)

    def test_malformed_update_changes_nothing(self, small_config):
        table = EmbeddingTable(small_config)
        table.update(["a"])
        with pytest.raises(MalformedContextError):
            table.update(["a", None])

        assert table.context_count == 1
        assert table.frequency("a") == 1

    def test_update_rejects_raw_string(self, small_config):
        """A plain string is text, not a token sequence."""
        table = EmbeddingTable(small_config)
        with pytest.raises(MalformedContextError) as exc_info:
            table.update("the cat")

        assert "update_text" in exc_info.value.reason
        assert table.context_count == 0
        assert table.observed_count == 0

    def test_update_text(self, small_config):
        table = EmbeddingTable(small_config)
        cid = table.update_text("Hello, world", tokenizer=lambda s: s.lower().replace(",", "").split())

        assert cid == 0
        assert table.tokens() == frozenset({"hello", "world"})


class TestExtend:

    def test_extend_skips_malformed_in_lenient_mode(self, small_config):
        table = EmbeddingTable(small_config)
        consumed = table.extend(["a b", None, "a"])

        assert consumed == 3
        assert table.context_count == 3
        # context 1 was skipped but still consumed its id
        assert np.array_equal(table.get("a"), _v(0, small_config) + _v(2, small_config))

    def test_extend_strict(self):
        config = IndexingConfig(dimension=10, nonzeros=4, seed=42, min_count=0, strict=True)
        table = EmbeddingTable(config)
        with pytest.raises(MalformedContextError):
            table.extend(["a", 5])

        assert table.context_count == 1

    def test_extend_should_stop(self, small_config, longer_corpus):
        table = EmbeddingTable(small_config)
        consumed = table.extend(longer_corpus, should_stop=lambda: table.context_count >= 3)

        assert consumed == 3
        assert table.context_count == 3


class TestSetMinCount:
    """Partial sums are kept for all observed tokens."""

    def test_lowering_threshold_exposes_kept_sums(self):
        config = IndexingConfig(dimension=10, nonzeros=4, seed=42, min_count=5)
        table = EmbeddingTable(config)
        table.update(["a", "b"])
        table.update(["a"])
        assert len(table) == 0

        table.set_min_count(0)

        assert table.tokens() == frozenset({"a", "b"})
        assert np.array_equal(table.get("a"), _v(0, config) + _v(1, config))
        assert table.min_count == 0

    def test_raising_threshold_shrinks(self, small_config):
        table = EmbeddingTable(small_config)
        table.update(["a", "b"])
        table.update(["a"])
        table.set_min_count(1)

        assert table.tokens() == frozenset({"a"})

    def test_from_sums_requires_all_observed_tokens(self, small_config):
        with pytest.raises(ValueError):
            EmbeddingTable.from_sums({}, {"a": 1}, context_count=1, config=small_config)
