"""
Per-database vector store.

Holds records, metadata and tombstones for one database and answers
single-database similarity queries through its similarity index. Every
public operation runs under the store lock, so a query never observes a
half-applied write.
"""

import copy
import json
import threading
from collections.abc import Mapping
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np

from ..api.schemas import SearchOptions, VectorInput, coerce
from ..core import config
from ..core.errors import (
    DimensionMismatchError,
    InvalidFilterError,
    InvalidMetadataError,
    InvalidOptionsError,
    InvalidVectorError,
    NotFoundError,
)
from ..util.logging import logger
from .filters import matches, parse_filter
from .folders import folder_of, validate_folder_path
from .index import IVectorIndex
from .types import AddResult, DeleteResult, FolderStats, RecordState, SearchResult, UpdateResult, VectorRecord

DUPLICATE_POLICIES = ("replace", "skip")

# Threshold scores are compared after conversion; this only widens index pruning
_THRESHOLD_SLACK = 1e-9


def similarity_to_score(cosine: float) -> float:
    """Map cosine similarity [-1, 1] onto a [0, 1] score (1.0 = same direction)."""
    return min(1.0, max(0.0, (cosine + 1.0) / 2.0))


class VectorStore:
    """In-memory vector store for a single database."""

    def __init__(self, name: str, dimensions: int, index: Optional[IVectorIndex] = None,
                 on_access: Optional[Callable[[], None]] = None):
        """
        Initialize an empty store.

        Args:
            name: Database name, used in log lines
            dimensions: Fixed vector length for inserts and queries
            index: Similarity index (defaults to the configured implementation)
            on_access: Called after every read or write, e.g. to bump lastAccessedAt
        """
        self.name = name
        self.dimensions = dimensions
        self._index = index if index is not None else config.get_vector_index(dimensions)
        self._on_access = on_access
        self._lock = threading.RLock()
        self._records: Dict[str, VectorRecord] = {}
        self._sizes: Dict[str, int] = {}   # record_id -> estimated bytes
        self._storage_size_bytes = 0
        self._next_sequence = 0

    # Counters

    @property
    def vector_count(self) -> int:
        """Number of live (non-deleted) records."""
        with self._lock:
            return len(self._index)

    @property
    def total_records(self) -> int:
        """Number of stored records, tombstones included."""
        with self._lock:
            return len(self._records)

    @property
    def storage_size_bytes(self) -> int:
        with self._lock:
            return self._storage_size_bytes

    # Validation

    def _validate_values(self, values: Any, record_id: str = None) -> np.ndarray:
        if values is None:
            raise InvalidVectorError("Vector values are required")
        try:
            array = np.array(values, dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise InvalidVectorError(f"Vector values must be numeric: {e}") from e

        if array.ndim != 1:
            raise InvalidVectorError(f"Vector values must be one-dimensional, got shape {array.shape}")
        if len(array) != self.dimensions:
            raise DimensionMismatchError(self.dimensions, len(array), record_id)
        if not np.all(np.isfinite(array)):
            raise InvalidVectorError("Vector values must be finite numbers")
        return array

    def _validate_metadata(self, metadata: Any) -> Tuple[Dict[str, Any], int]:
        """Return a private copy of metadata and its serialized size."""
        if metadata is None:
            metadata = {}
        if not isinstance(metadata, Mapping):
            raise InvalidMetadataError(f"Metadata must be a mapping, got {type(metadata).__name__}")

        for key in metadata:
            if not isinstance(key, str):
                raise InvalidMetadataError(f"Metadata keys must be strings, got {key!r}")
            if key in config.RESERVED_METADATA_FIELDS:
                raise InvalidMetadataError(f"Reserved metadata field: {key}")
        if config.FOLDER_PATH_FIELD in metadata:
            validate_folder_path(metadata[config.FOLDER_PATH_FIELD])

        try:
            serialized = json.dumps(dict(metadata))
        except (TypeError, ValueError) as e:
            raise InvalidMetadataError(f"Metadata must be JSON-serializable: {e}") from e

        size = len(serialized.encode("utf-8"))
        if size > config.METADATA_MAX_BYTES:
            raise InvalidMetadataError(
                f"Metadata size exceeds limit: {size} > {config.METADATA_MAX_BYTES} bytes"
            )
        return json.loads(serialized), size

    def _validate_record(self, record_id: Any, values: Any, metadata: Any):
        if not isinstance(record_id, str) or not record_id.strip():
            raise InvalidVectorError("Vector ID is required")
        array = self._validate_values(values, record_id)
        clean_metadata, metadata_size = self._validate_metadata(metadata)
        return record_id, array, clean_metadata, metadata_size

    def _validate_query(self, query: Any) -> np.ndarray:
        return self._validate_values(query)

    @staticmethod
    def _validate_top_k(top_k: Any) -> int:
        if isinstance(top_k, bool) or not isinstance(top_k, (int, np.integer)) or top_k < 0:
            raise InvalidOptionsError(f"top_k must be a non-negative integer, got {top_k!r}")
        return int(top_k)

    # Writes

    def _record_size(self, record_id: str, metadata_size: int) -> int:
        return 8 * self.dimensions + len(record_id.encode("utf-8")) + metadata_size

    def _set_size(self, record_id: str, size: int) -> None:
        self._storage_size_bytes += size - self._sizes.get(record_id, 0)
        self._sizes[record_id] = size

    def _put(self, record_id: str, values: np.ndarray, metadata: Dict[str, Any], metadata_size: int) -> None:
        values.setflags(write=False)
        sequence = self._next_sequence
        self._next_sequence += 1

        self._records[record_id] = VectorRecord(
            id=record_id,
            values=values,
            metadata=metadata,
            sequence=sequence,
        )
        self._index.add(record_id, sequence, values)
        self._set_size(record_id, self._record_size(record_id, metadata_size))

    def _touch(self) -> None:
        if self._on_access is not None:
            self._on_access()

    def add(self, record_id: str, values: Any, metadata: Optional[Dict[str, Any]] = None) -> None:
        """Insert or overwrite a record; an overwrite revives a deleted id."""
        with self._lock:
            record_id, array, clean_metadata, metadata_size = self._validate_record(record_id, values, metadata)
            self._put(record_id, array, clean_metadata, metadata_size)
            self._touch()

        logger.log_vector_operation("add", self.name, {"record_id": record_id})

    def add_batch(self, records: Iterable[Any], handle_duplicates: str = "replace") -> AddResult:
        """
        Insert many records.

        Every record is validated before the first one is written, so a bad
        record leaves the store untouched.

        Args:
            records: Mappings or VectorInput objects with id, values, metadata
            handle_duplicates: "replace" upserts; "skip" keeps the first
                occurrence of an id and leaves live records alone

        Returns:
            AddResult with added and skipped counts
        """
        if handle_duplicates not in DUPLICATE_POLICIES:
            raise InvalidOptionsError(
                f"handle_duplicates must be one of {list(DUPLICATE_POLICIES)}, got {handle_duplicates!r}"
            )

        with self._lock:
            validated = []
            for item in records:
                record = coerce(VectorInput, item, InvalidVectorError)
                validated.append(self._validate_record(record.id, record.values, record.metadata))

            result = AddResult()
            seen = set()
            for record_id, array, clean_metadata, metadata_size in validated:
                if handle_duplicates == "skip":
                    live = record_id in self._records and not self._records[record_id].deleted
                    if record_id in seen or live:
                        result.skipped += 1
                        continue
                seen.add(record_id)
                self._put(record_id, array, clean_metadata, metadata_size)
                result.added += 1
                result.ids.append(record_id)

            self._touch()

        logger.log_vector_operation("add_batch", self.name, {
            "added": result.added,
            "skipped": result.skipped,
        })
        return result

    def _tombstone(self, record: VectorRecord) -> None:
        record.state = RecordState.DELETED
        self._index.remove(record.id)

    def soft_delete(self, filter: Any) -> DeleteResult:
        """Mark every live record matching filter as deleted; returns the affected ids."""
        predicate = parse_filter(filter)
        if predicate is None:
            raise InvalidFilterError("soft_delete requires a non-empty filter")

        with self._lock:
            result = DeleteResult()
            for record in self._records.values():
                if not record.deleted and matches(predicate, record.metadata):
                    self._tombstone(record)
                    result.deleted_ids.append(record.id)
            self._touch()

        logger.log_vector_operation("soft_delete", self.name, {"deleted_count": result.deleted_count})
        return result

    def delete_by_ids(self, record_ids: Iterable[str]) -> DeleteResult:
        """Soft-delete the named live records; unknown or deleted ids are ignored."""
        with self._lock:
            result = DeleteResult()
            for record_id in record_ids:
                record = self._records.get(record_id)
                if record is not None and not record.deleted:
                    self._tombstone(record)
                    result.deleted_ids.append(record_id)
            self._touch()

        logger.log_vector_operation("delete_by_ids", self.name, {"deleted_count": result.deleted_count})
        return result

    def _live_record(self, record_id: str) -> VectorRecord:
        record = self._records.get(record_id)
        if record is None or record.deleted:
            raise NotFoundError("vector", record_id)
        return record

    def _merge_metadata(self, record: VectorRecord, patch: Any):
        if not isinstance(patch, Mapping):
            raise InvalidMetadataError(f"Metadata patch must be a mapping, got {type(patch).__name__}")
        merged = dict(record.metadata)
        merged.update(patch)
        return self._validate_metadata(merged)

    def update_metadata(self, record_id: str, patch: Dict[str, Any]) -> None:
        """Replace top-level metadata keys of a live record."""
        with self._lock:
            record = self._live_record(record_id)
            merged, metadata_size = self._merge_metadata(record, patch)
            record.metadata = merged
            self._set_size(record_id, self._record_size(record_id, metadata_size))
            self._touch()

        logger.log_vector_operation("update_metadata", self.name, {
            "record_id": record_id,
            "keys": sorted(patch),
        })

    def batch_update_metadata(self, updates: Iterable[Tuple[str, Dict[str, Any]]]) -> UpdateResult:
        """Apply several metadata patches; all ids are checked before any is applied."""
        with self._lock:
            staged = []
            for record_id, patch in updates:
                record = self._live_record(record_id)
                staged.append((record, *self._merge_metadata(record, patch)))

            for record, merged, metadata_size in staged:
                record.metadata = merged
                self._set_size(record.id, self._record_size(record.id, metadata_size))
            self._touch()

        logger.log_vector_operation("batch_update_metadata", self.name, {"updated": len(staged)})
        return UpdateResult(updated=len(staged))

    # Reads

    def get_vector(self, record_id: str) -> Optional[VectorRecord]:
        """Return a copy of a live record, or None."""
        with self._lock:
            self._touch()
            record = self._records.get(record_id)
            if record is None or record.deleted:
                return None
            return copy.deepcopy(record)

    def search(self, query: Any, top_k: int = 10, options: Any = None) -> List[SearchResult]:
        """
        Rank live records by cosine similarity to query.

        Args:
            query: Query vector, same length as the database dimensionality
            top_k: Maximum number of results (non-negative integer)
            options: SearchOptions or mapping with filter, threshold, include_vectors

        Returns:
            Up to top_k results, score descending, earlier inserts first on ties,
            all with score >= threshold
        """
        return self._search(query, top_k, options)

    def _search(self, query: Any, top_k: Any, options: Any,
                scope: Optional[Callable[[Dict[str, Any]], bool]] = None) -> List[SearchResult]:
        top_k = self._validate_top_k(top_k)
        search_options = coerce(SearchOptions, options)

        with self._lock:
            query_vector = self._validate_query(query)
            predicate = parse_filter(search_options.filter)
            self._touch()

            if top_k == 0 or not len(self._index):
                return []

            accept = None
            if predicate is not None or scope is not None:
                def accept(record_id):
                    metadata = self._records[record_id].metadata
                    if scope is not None and not scope(metadata):
                        return False
                    return predicate is None or matches(predicate, metadata)

            min_similarity = 2.0 * search_options.threshold - 1.0 - _THRESHOLD_SLACK
            ranked = self._index.search(query_vector, top_k, accept, min_similarity)

            results = []
            for record_id, cosine in ranked:
                score = similarity_to_score(cosine)
                if score < search_options.threshold:
                    continue
                record = self._records[record_id]
                results.append(SearchResult(
                    id=record_id,
                    score=score,
                    metadata=copy.deepcopy(record.metadata),
                    vector=record.values.tolist() if search_options.include_vectors else None,
                ))
            return results

    # Folders

    def list_folders(self) -> List[str]:
        """Sorted folder paths holding at least one live record."""
        with self._lock:
            self._touch()
            return sorted({folder_of(r.metadata) for r in self._records.values() if not r.deleted})

    def get_folder_statistics(self, folder_path: str) -> FolderStats:
        folder_path = validate_folder_path(folder_path)
        with self._lock:
            self._touch()
            stats = FolderStats(folder_path=folder_path)
            for record in self._records.values():
                if not record.deleted and folder_of(record.metadata) == folder_path:
                    stats.vector_count += 1
                    stats.storage_size_bytes += self._sizes[record.id]
            return stats

    def _move(self, records: List[VectorRecord], folder_path: str) -> None:
        staged = [(record, *self._merge_metadata(record, {config.FOLDER_PATH_FIELD: folder_path}))
                  for record in records]
        for record, merged, metadata_size in staged:
            record.metadata = merged
            self._set_size(record.id, self._record_size(record.id, metadata_size))

    def move_to_folder(self, record_ids: Iterable[str], folder_path: str) -> UpdateResult:
        """Move live records to folder_path; every id is checked before any record moves."""
        folder_path = validate_folder_path(folder_path)
        with self._lock:
            records = [self._live_record(record_id) for record_id in record_ids]
            self._move(records, folder_path)
            self._touch()

        logger.log_vector_operation("move_to_folder", self.name, {
            "folder": folder_path,
            "moved": len(records),
        })
        return UpdateResult(updated=len(records))

    def move_folder_contents(self, source_path: str, target_path: str) -> UpdateResult:
        """Move every live record of source_path to target_path; an empty source is not an error."""
        source_path = validate_folder_path(source_path)
        target_path = validate_folder_path(target_path)
        with self._lock:
            records = [r for r in self._records.values()
                       if not r.deleted and folder_of(r.metadata) == source_path]
            self._move(records, target_path)
            self._touch()

        logger.log_vector_operation("move_folder_contents", self.name, {
            "source": source_path,
            "target": target_path,
            "moved": len(records),
        })
        return UpdateResult(updated=len(records))

    def search_in_folder(self, folder_path: str, query: Any, top_k: int = 10,
                         options: Any = None) -> List[SearchResult]:
        """search restricted to records directly in folder_path (not its subfolders)."""
        folder_path = validate_folder_path(folder_path)
        return self._search(query, top_k, options,
                            scope=lambda metadata: folder_of(metadata) == folder_path)

    # Lifecycle

    def destroy(self) -> None:
        """Purge every record and tombstone."""
        with self._lock:
            self._records.clear()
            self._sizes.clear()
            self._index.clear()
            self._storage_size_bytes = 0

        logger.log_vector_operation("destroy", self.name)
