"""
Embedded multi-tenant vector engine for retrieval-augmented generation.
"""

from .api.engine import VectorEngine
from .core.coordinator import MultiDatabaseSearch
from .core.errors import (
    DimensionMismatchError,
    EngineError,
    InvalidFilterError,
    InvalidFolderPathError,
    InvalidMetadataError,
    InvalidNameError,
    InvalidOptionsError,
    InvalidVectorError,
    NotFoundError,
    PermissionDeniedError,
)
from .core.permissions import AccessAction, PermissionManager, Role
from .core.registry import DatabaseRegistry
from .vector.store import VectorStore
from .vector.types import FolderStats, SearchResult

__all__ = [
    'VectorEngine',
    'DatabaseRegistry',
    'MultiDatabaseSearch',
    'VectorStore',
    'SearchResult',
    'FolderStats',
    'PermissionManager',
    'Role',
    'AccessAction',
    'EngineError',
    'DimensionMismatchError',
    'NotFoundError',
    'InvalidNameError',
    'InvalidFilterError',
    'InvalidFolderPathError',
    'InvalidMetadataError',
    'InvalidOptionsError',
    'InvalidVectorError',
    'PermissionDeniedError',
]
