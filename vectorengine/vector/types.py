"""
Record and result types for the per-database vector store.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np


class RecordState(str, Enum):
    """Lifecycle of a stored record: ACTIVE -> DELETED -> purged with its database."""

    ACTIVE = "active"
    DELETED = "deleted"


@dataclass
class VectorRecord:
    """Represents a stored vector record with metadata."""

    id: str
    """Unique identifier within a database"""

    values: np.ndarray
    """Vector as inserted (float64, read-only)"""

    metadata: Dict[str, Any]
    """Caller metadata; top-level keys are replaced by updates"""

    sequence: int
    """Insertion order, used to break score ties"""

    state: RecordState = RecordState.ACTIVE

    @property
    def deleted(self) -> bool:
        return self.state is RecordState.DELETED


@dataclass
class SearchResult:
    """Represents a search hit."""

    id: str
    """Identifier for the matching record"""

    score: float
    """Similarity score of the match (0-1)"""

    metadata: Dict[str, Any]
    """Metadata associated with the matched record"""

    vector: Optional[List[float]] = None
    """Stored values, only when requested"""

    source_database_name: Optional[str] = None
    """Database the hit came from, only for multi-database searches"""


@dataclass
class AddResult:
    added: int = 0
    skipped: int = 0
    ids: List[str] = field(default_factory=list)


@dataclass
class DeleteResult:
    deleted_ids: List[str] = field(default_factory=list)

    @property
    def deleted_count(self) -> int:
        return len(self.deleted_ids)


@dataclass
class UpdateResult:
    updated: int = 0


@dataclass
class FolderStats:
    folder_path: str
    vector_count: int = 0
    storage_size_bytes: int = 0
