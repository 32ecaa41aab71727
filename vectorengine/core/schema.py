"""
Registry records returned to callers. All are snapshots; mutating them has no effect.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class SessionStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass
class DatabaseMetadata:
    database_name: str
    owner: str
    dimensions: int
    created_at: datetime
    last_accessed_at: datetime
    vector_count: int = 0
    storage_size_bytes: int = 0
    description: Optional[str] = None
    is_public: bool = False
    custom: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SessionInfo:
    session_id: str
    database_name: str
    created_at: datetime
    status: SessionStatus = SessionStatus.ACTIVE


@dataclass
class DatabaseStats:
    database_name: str
    vector_count: int
    storage_size_bytes: int
    session_count: int


@dataclass
class SessionStats:
    session_id: str
    database_name: str
    total_vectors: int
    total_records: int
    memory_usage_mb: float
