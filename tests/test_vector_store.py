"""
Test cases for the per-database VectorStore.
"""

from unittest.mock import MagicMock

import numpy as np
import pytest

from vectorengine.core import config
from vectorengine.core.errors import (
    DimensionMismatchError,
    InvalidFilterError,
    InvalidMetadataError,
    InvalidOptionsError,
    InvalidVectorError,
    NotFoundError,
)
from vectorengine.vector.index import FlatIndex
from vectorengine.vector.store import VectorStore, similarity_to_score
from vectorengine.vector.types import RecordState


def create_test_vector(seed, dimension=16):
    """Deterministic, seed-dependent test vector."""
    return [float(np.sin(seed + i * 0.1) * 0.5 + 0.5) for i in range(dimension)]


@pytest.fixture
def store():
    return VectorStore("test-db", 16)


@pytest.fixture
def axis_store():
    """Four-dimensional store with one record per axis."""
    store = VectorStore("axes", 4)
    store.add("x", [1.0, 0.0, 0.0, 0.0], {"axis": "x"})
    store.add("y", [0.0, 1.0, 0.0, 0.0], {"axis": "y"})
    store.add("z", [0.0, 0.0, 1.0, 0.0], {"axis": "z"})
    store.add("neg-x", [-1.0, 0.0, 0.0, 0.0], {"axis": "x", "negative": True})
    return store


def test_similarity_to_score_range():
    """Test the cosine to score mapping."""
    assert similarity_to_score(1.0) == 1.0
    assert similarity_to_score(0.0) == 0.5
    assert similarity_to_score(-1.0) == 0.0
    assert similarity_to_score(1.0000001) == 1.0


def test_self_similarity(store):
    """Test that a stored vector is its own best match."""
    for i in range(20):
        store.add(f"vec-{i}", create_test_vector(i), {"index": i})

    for i in (0, 7, 19):
        results = store.search(create_test_vector(i), top_k=1, options={"threshold": 0})
        assert results[0].id == f"vec-{i}"
        assert results[0].score >= 0.999


def test_empty_store_returns_empty_list(store):
    """Test that searching an empty store is not an error."""
    assert store.search(create_test_vector(1), top_k=10) == []


def test_dimension_mismatch_on_insert(store):
    """Test that wrong-length vectors are rejected without mutation."""
    with pytest.raises(DimensionMismatchError) as exc_info:
        store.add("bad", [1.0, 2.0, 3.0])

    assert exc_info.value.expected == 16
    assert exc_info.value.actual == 3
    assert store.total_records == 0


def test_dimension_mismatch_on_query(store):
    """Test that wrong-length queries are rejected even on an empty store."""
    with pytest.raises(DimensionMismatchError):
        store.search([1.0, 0.0], top_k=5)


def test_invalid_records_rejected(store):
    """Test id, values and metadata validation."""
    with pytest.raises(InvalidVectorError, match="Vector ID is required"):
        store.add("", create_test_vector(1))
    with pytest.raises(InvalidVectorError, match="Vector values are required"):
        store.add("a", None)
    with pytest.raises(InvalidVectorError):
        store.add("a", ["x"] * 16)
    with pytest.raises(InvalidVectorError):
        store.add("a", [float("nan")] * 16)
    with pytest.raises(InvalidMetadataError, match="Reserved metadata field"):
        store.add("a", create_test_vector(1), {"id": "reserved-id", "text": "Normal field"})
    with pytest.raises(InvalidMetadataError):
        store.add("a", create_test_vector(1), ["not", "a", "mapping"])
    with pytest.raises(InvalidMetadataError):
        store.add("a", create_test_vector(1), {"blob": object()})

    assert store.total_records == 0


def test_metadata_size_limit(store, monkeypatch):
    """Test that oversized metadata is rejected."""
    monkeypatch.setattr(config, "METADATA_MAX_BYTES", 64)

    with pytest.raises(InvalidMetadataError, match="Metadata size exceeds limit"):
        store.add("huge", create_test_vector(1), {"text": "A" * 100})

    store.add("small", create_test_vector(1), {"text": "A"})
    assert store.vector_count == 1


def test_metadata_preserved_exactly(store):
    """Test that metadata of various types round-trips unchanged."""
    metadata = {
        "string": "value",
        "number": 42,
        "float": 3.14,
        "boolean": True,
        "none": None,
        "array": [1, 2, 3],
        "nested": {"foo": "bar"},
        "unicode": "héllo ✓",
    }
    store.add("doc", create_test_vector(1), metadata)

    results = store.search(create_test_vector(1), top_k=1)
    assert results[0].metadata == metadata


def test_returned_metadata_is_a_copy(store):
    """Test that callers cannot mutate stored metadata through results."""
    original = {"tags": ["a"]}
    store.add("doc", create_test_vector(1), original)
    original["tags"].append("mutated")

    result = store.search(create_test_vector(1), top_k=1)[0]
    result.metadata["tags"].append("changed")

    assert store.get_vector("doc").metadata == {"tags": ["a"]}


def test_upsert_overwrites(store):
    """Test that inserting an existing id replaces the record."""
    store.add("doc", create_test_vector(1), {"version": 1})
    store.add("doc", create_test_vector(2), {"version": 2})

    assert store.vector_count == 1
    assert store.total_records == 1
    record = store.get_vector("doc")
    assert record.metadata == {"version": 2}
    assert np.allclose(record.values, create_test_vector(2))


def test_upsert_revives_deleted_record(store):
    """Test that re-inserting a deleted id clears the tombstone."""
    store.add("doc", create_test_vector(1), {"status": "old"})
    store.soft_delete({"status": "old"})
    assert store.get_vector("doc") is None

    store.add("doc", create_test_vector(1), {"status": "new"})
    assert store.vector_count == 1
    assert store.get_vector("doc").state is RecordState.ACTIVE


def test_stored_values_are_immutable(store):
    """Test that record values cannot be changed after insert."""
    values = np.array(create_test_vector(1))
    store.add("doc", values)
    values[0] = 99.0

    record_values = store._records["doc"].values
    assert record_values[0] != 99.0
    with pytest.raises(ValueError):
        record_values[0] = 1.0


def test_add_batch(store):
    """Test adding several records at once."""
    records = [
        {"id": f"vec-{i}", "values": create_test_vector(i), "metadata": {"index": i}}
        for i in range(5)
    ]
    result = store.add_batch(records)

    assert result.added == 5
    assert result.skipped == 0
    assert result.ids == [f"vec-{i}" for i in range(5)]
    assert store.vector_count == 5


def test_add_batch_is_atomic_on_validation(store):
    """Test that one bad record aborts the whole batch before any write."""
    records = [
        {"id": "good-1", "values": create_test_vector(1)},
        {"id": "good-2", "values": create_test_vector(2)},
        {"id": "bad", "values": [1.0, 2.0, 3.0]},
    ]
    with pytest.raises(DimensionMismatchError):
        store.add_batch(records)

    assert store.total_records == 0
    assert store.vector_count == 0
    assert store.storage_size_bytes == 0


def test_add_batch_skip_duplicates(store):
    """Test that skip keeps the first occurrence of each id."""
    store.add("vec-0", create_test_vector(0), {"index": "existing"})
    records = [
        {"id": f"vec-{i % 5}", "values": create_test_vector(i), "metadata": {"index": i}}
        for i in range(10)
    ]
    result = store.add_batch(records, handle_duplicates="skip")

    assert result.added == 4
    assert result.skipped == 6
    assert store.get_vector("vec-0").metadata == {"index": "existing"}
    assert store.get_vector("vec-1").metadata == {"index": 1}


def test_add_batch_replace_duplicates(store):
    """Test that replace lets the last occurrence win."""
    records = [
        {"id": "dup", "values": create_test_vector(1), "metadata": {"v": 1}},
        {"id": "dup", "values": create_test_vector(2), "metadata": {"v": 2}},
    ]
    result = store.add_batch(records)

    assert result.added == 2
    assert store.vector_count == 1
    assert store.get_vector("dup").metadata == {"v": 2}


def test_add_batch_rejects_unknown_policy(store):
    """Test that handle_duplicates is validated."""
    with pytest.raises(InvalidOptionsError):
        store.add_batch([], handle_duplicates="merge")


def test_search_filter_scenario():
    """Test that a category filter returns only matching records."""
    store = VectorStore("filter-db", 16)
    store.add("a", create_test_vector(1), {"category": "tech"})
    store.add("b", create_test_vector(2), {"category": "science"})
    store.add("c", create_test_vector(3), {"category": "tech"})

    results = store.search(create_test_vector(5), 10, {"filter": {"category": "tech"}})

    assert len(results) == 2
    assert all(r.metadata["category"] == "tech" for r in results)


def test_search_scores_non_increasing(store):
    """Test that results are sorted by score descending."""
    for i in range(50):
        store.add(f"vec-{i}", create_test_vector(i * 0.37), {"index": i})

    results = store.search(create_test_vector(3.3), top_k=25)

    assert len(results) == 25
    for current, following in zip(results, results[1:]):
        assert current.score >= following.score


def test_search_top_k_bound(store):
    """Test that at most min(top_k, matching) results come back."""
    for i in range(5):
        store.add(f"vec-{i}", create_test_vector(i))

    assert len(store.search(create_test_vector(1), top_k=3)) == 3
    assert len(store.search(create_test_vector(1), top_k=10)) == 5
    assert store.search(create_test_vector(1), top_k=0) == []


@pytest.mark.parametrize("top_k", [2.5, -1, True, "3", None])
def test_search_rejects_invalid_top_k(axis_store, top_k):
    """Test that top_k must be a non-negative integer."""
    with pytest.raises(InvalidOptionsError):
        axis_store.search([1.0, 0.0, 0.0, 0.0], top_k)


def test_search_accepts_numpy_top_k(axis_store):
    """Test that numpy integers are accepted as top_k."""
    assert len(axis_store.search([1.0, 0.0, 0.0, 0.0], np.int64(2))) == 2


def test_threshold_is_inclusive(axis_store):
    """Test that a result exactly at the threshold is kept."""
    query = [1.0, 0.0, 0.0, 0.0]

    results = axis_store.search(query, 10, {"threshold": 0.5})
    assert [r.id for r in results] == ["x", "y", "z"]
    assert results[1].score == 0.5

    results = axis_store.search(query, 10, {"threshold": 0.5000001})
    assert [r.id for r in results] == ["x"]


def test_raising_threshold_never_adds_results(store):
    """Test that result counts shrink monotonically with the threshold."""
    for i in range(30):
        store.add(f"vec-{i}", create_test_vector(i * 0.5))

    counts = [
        len(store.search(create_test_vector(2), 30, {"threshold": t}))
        for t in (0.0, 0.5, 0.9, 0.95, 0.99, 1.0)
    ]
    assert counts == sorted(counts, reverse=True)
    for t in (0.9, 0.99):
        assert all(r.score >= t for r in store.search(create_test_vector(2), 30, {"threshold": t}))


def test_ties_keep_insertion_order(axis_store):
    """Test that equal scores are returned earliest insert first."""
    results = axis_store.search([1.0, 0.0, 0.0, 0.0], 10)
    assert [r.id for r in results] == ["x", "y", "z", "neg-x"]
    assert results[-1].score == 0.0


def test_include_vectors(store):
    """Test that vectors are returned only when requested."""
    store.add("doc", create_test_vector(1))

    without = store.search(create_test_vector(1), 1)
    with_vectors = store.search(create_test_vector(1), 1, {"include_vectors": True})

    assert without[0].vector is None
    assert with_vectors[0].vector == pytest.approx(create_test_vector(1))
    assert without[0].source_database_name is None


def test_invalid_filter_fails_before_scoring():
    """Test that an unknown operator raises even if no candidate exists."""
    index = MagicMock(wraps=FlatIndex(16))
    store = VectorStore("strict", 16, index=index)

    with pytest.raises(InvalidFilterError):
        store.search(create_test_vector(1), 5, {"filter": {"a": {"$like": "x"}}})

    store.add("doc", create_test_vector(1))
    index.search.reset_mock()
    with pytest.raises(InvalidFilterError):
        store.search(create_test_vector(1), 5, {"filter": {"a": {"$like": "x"}}})
    index.search.assert_not_called()


def test_invalid_search_options(store):
    """Test that malformed options raise InvalidOptionsError."""
    with pytest.raises(InvalidOptionsError):
        store.search(create_test_vector(1), 5, {"threshold": "high"})
    with pytest.raises(InvalidOptionsError):
        store.search(create_test_vector(1), 5, "threshold=0.5")


def test_soft_delete(store):
    """Test that soft-deleted records vanish from search and counts but stay stored."""
    for i in range(5):
        store.add(f"doc-{i}", create_test_vector(i), {"index": i, "status": "delete" if i < 2 else "keep"})

    result = store.soft_delete({"status": "delete"})

    assert result.deleted_count == 2
    assert sorted(result.deleted_ids) == ["doc-0", "doc-1"]
    assert store.vector_count == 3
    assert store.total_records == 5

    results = store.search(create_test_vector(0), 10)
    assert len(results) == 3
    assert all(r.metadata["status"] == "keep" for r in results)

    again = store.soft_delete({"status": "delete"})
    assert again.deleted_count == 0


def test_soft_delete_requires_filter(store):
    """Test that an empty filter is not a blanket delete."""
    store.add("doc", create_test_vector(1))
    with pytest.raises(InvalidFilterError):
        store.soft_delete(None)
    with pytest.raises(InvalidFilterError):
        store.soft_delete({})
    assert store.vector_count == 1


def test_delete_by_ids(store):
    """Test deleting an explicit id list."""
    for i in range(4):
        store.add(f"msg-{i}", create_test_vector(i))

    result = store.delete_by_ids(["msg-0", "msg-2", "missing"])

    assert result.deleted_ids == ["msg-0", "msg-2"]
    assert store.vector_count == 2
    assert store.get_vector("msg-0") is None


def test_update_metadata(store):
    """Test top-level metadata merge."""
    store.add("doc", create_test_vector(1), {"version": 1, "nested": {"a": 1, "b": 2}})

    store.update_metadata("doc", {"version": 2, "nested": {"a": 9}, "extra": True})

    assert store.get_vector("doc").metadata == {"version": 2, "nested": {"a": 9}, "extra": True}


def test_update_metadata_not_found(store):
    """Test that absent and deleted ids raise NotFoundError."""
    with pytest.raises(NotFoundError):
        store.update_metadata("missing", {"a": 1})

    store.add("doc", create_test_vector(1), {"status": "gone"})
    store.soft_delete({"status": "gone"})
    with pytest.raises(NotFoundError):
        store.update_metadata("doc", {"a": 1})


def test_update_metadata_rejects_reserved_field(store):
    """Test that a patch cannot introduce reserved keys."""
    store.add("doc", create_test_vector(1))
    with pytest.raises(InvalidMetadataError):
        store.update_metadata("doc", {"id": "other"})


def test_batch_update_metadata(store):
    """Test updating many records at once."""
    for i in range(5):
        store.add(f"vec-{i}", create_test_vector(i), {"version": 1})

    result = store.batch_update_metadata([(f"vec-{i}", {"version": 2}) for i in range(5)])

    assert result.updated == 5
    assert store.search(create_test_vector(0), 1)[0].metadata["version"] == 2


def test_batch_update_metadata_is_atomic(store):
    """Test that an unknown id aborts the whole update."""
    store.add("vec-0", create_test_vector(0), {"version": 1})

    with pytest.raises(NotFoundError):
        store.batch_update_metadata([("vec-0", {"version": 2}), ("missing", {"version": 2})])

    assert store.get_vector("vec-0").metadata == {"version": 1}


def test_storage_size_tracking():
    """Test the storage estimate across inserts, updates and deletes."""
    store = VectorStore("size", 4)
    store.add("a", [1.0, 0.0, 0.0, 0.0])
    assert store.storage_size_bytes == 8 * 4 + 1 + len("{}")

    store.update_metadata("a", {"k": 1})
    assert store.storage_size_bytes == 8 * 4 + 1 + len('{"k": 1}')

    store.delete_by_ids(["a"])
    assert store.storage_size_bytes == 8 * 4 + 1 + len('{"k": 1}')

    store.destroy()
    assert store.storage_size_bytes == 0
    assert store.total_records == 0


def test_on_access_called_for_reads_and_writes():
    """Test that every operation reports access."""
    on_access = MagicMock()
    store = VectorStore("touch", 4, on_access=on_access)

    store.add("a", [1.0, 0.0, 0.0, 0.0])
    store.search([1.0, 0.0, 0.0, 0.0], 1)
    store.get_vector("a")
    store.update_metadata("a", {"k": 1})
    store.delete_by_ids(["a"])

    assert on_access.call_count == 5


def test_large_collection_search():
    """Test top-k on a collection large enough to use clustering."""
    rng = np.random.default_rng(42)
    vectors = rng.random((2000, 32))
    store = VectorStore("large", 32)
    store.add_batch({"id": f"doc-{i}", "values": v, "metadata": {"index": i}} for i, v in enumerate(vectors))

    results = store.search(vectors[0], 100)

    assert len(results) == 100
    assert results[0].id == "doc-0"
