"""
Per-database vector storage: records, similarity indexes and metadata filters.
"""

# Package initialization for vector module
from .index import IVectorIndex, FlatIndex, IVFIndex
from .store import VectorStore
from .types import VectorRecord, RecordState, SearchResult, AddResult, DeleteResult, UpdateResult, FolderStats
from .folders import validate_folder_path, folder_of
from .filters import FieldPredicate, LogicalPredicate, parse_filter, matches

__all__ = [
    'IVectorIndex',
    'FlatIndex',
    'IVFIndex',
    'VectorStore',
    'VectorRecord',
    'RecordState',
    'SearchResult',
    'AddResult',
    'DeleteResult',
    'UpdateResult',
    'FolderStats',
    'validate_folder_path',
    'folder_of',
    'FieldPredicate',
    'LogicalPredicate',
    'parse_filter',
    'matches'
]
