"""
VectorEngine - the in-process entry point used by document, memory and chat layers.

An engine acts for one user over a DatabaseRegistry. Several engines may
share a registry (and its PermissionManager), which is how a database owner
shares a database with other users. Vector calls resolve a database by name
(or by session) and check the user's role before delegating to its
VectorStore: reads need the reader role, writes the writer role, and
lifecycle and grant management the owner.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..core.coordinator import MultiDatabaseSearch
from ..core.permissions import AccessAction, Permission, Role
from ..core.registry import DatabaseRegistry
from ..core.schema import DatabaseMetadata, DatabaseStats, SessionInfo, SessionStats
from ..vector.store import VectorStore
from ..vector.types import AddResult, DeleteResult, FolderStats, SearchResult, UpdateResult, VectorRecord


class VectorEngine:
    """Multi-tenant vector engine acting on behalf of one user."""

    def __init__(self, user: Optional[str] = None, registry: Optional[DatabaseRegistry] = None,
                 max_workers: Optional[int] = None):
        """
        Args:
            user: Acting identity; defaults to the registry owner
            registry: Registry to share with other engines; a new one is made if omitted
            max_workers: Thread-pool width for multi-database search
        """
        self.registry = registry or DatabaseRegistry(user)
        self.user = user or self.registry.owner
        self.permissions = self.registry.permissions
        self.coordinator = MultiDatabaseSearch(self.registry, max_workers, user=self.user)

    def _store(self, database_name: str, action: AccessAction) -> VectorStore:
        return self.registry.authorize(database_name, self.user, action)

    def _session_store(self, session_id: str, action: AccessAction) -> VectorStore:
        return self.registry.authorize_session(session_id, self.user, action)

    # Databases and sessions

    def create_session(self, database_name: str, options: Any = None) -> str:
        return self.registry.create_session(database_name, options, user=self.user)

    def delete_database(self, database_name: str) -> None:
        self.registry.delete_database(database_name, user=self.user)

    def update_database_metadata(self, database_name: str, patch: Any) -> DatabaseMetadata:
        return self.registry.update_database_metadata(database_name, patch, user=self.user)

    def list_databases(self) -> List[DatabaseMetadata]:
        return self.registry.list_databases()

    def get_database_metadata(self, database_name: str) -> Optional[DatabaseMetadata]:
        return self.registry.get_database_metadata(database_name)

    def get_database_stats(self, database_name: str) -> Optional[DatabaseStats]:
        return self.registry.get_database_stats(database_name)

    def database_exists(self, database_name: str) -> bool:
        return self.registry.database_exists(database_name)

    def get_store(self, database_name: str) -> VectorStore:
        """Store of a database the user may read."""
        return self._store(database_name, AccessAction.READ)

    def get_session(self, session_id: str) -> Optional[SessionInfo]:
        return self.registry.get_session(session_id)

    def list_sessions(self, database_name: Optional[str] = None) -> List[SessionInfo]:
        return self.registry.list_sessions(database_name)

    def get_session_status(self, session_id: str) -> str:
        return self.registry.get_session_status(session_id)

    def get_session_stats(self, session_id: str) -> Optional[SessionStats]:
        return self.registry.get_session_stats(session_id)

    def close_session(self, session_id: str) -> None:
        self.registry.close_session(session_id)

    def destroy_session(self, session_id: str) -> None:
        self.registry.destroy_session(session_id)

    def destroy_sessions_by_database(self, database_name: str) -> int:
        return self.registry.destroy_sessions_by_database(database_name)

    def destroy_all_sessions(self) -> None:
        self.registry.destroy_all_sessions()

    # Vectors

    def add_vector(self, database_name: str, record_id: str, values: Sequence[float],
                   metadata: Optional[Dict[str, Any]] = None) -> None:
        self._store(database_name, AccessAction.WRITE).add(record_id, values, metadata)

    def add_vectors(self, database_name: str, records: Iterable[Any],
                    handle_duplicates: str = "replace") -> AddResult:
        return self._store(database_name, AccessAction.WRITE).add_batch(records, handle_duplicates)

    def get_vector(self, database_name: str, record_id: str) -> Optional[VectorRecord]:
        return self._store(database_name, AccessAction.READ).get_vector(record_id)

    def search(self, database_name: str, query: Sequence[float], top_k: int = 10,
               options: Any = None) -> List[SearchResult]:
        return self._store(database_name, AccessAction.READ).search(query, top_k, options)

    def search_vectors(self, session_id: str, query: Sequence[float], top_k: int = 10,
                       options: Any = None) -> List[SearchResult]:
        """Search the database bound to an active session."""
        return self._session_store(session_id, AccessAction.READ).search(query, top_k, options)

    def delete_by_metadata(self, database_name: str, filter: Any) -> DeleteResult:
        return self._store(database_name, AccessAction.WRITE).soft_delete(filter)

    def delete_vectors(self, database_name: str, record_ids: Iterable[str]) -> DeleteResult:
        return self._store(database_name, AccessAction.WRITE).delete_by_ids(record_ids)

    def update_metadata(self, database_name: str, record_id: str, patch: Dict[str, Any]) -> None:
        self._store(database_name, AccessAction.WRITE).update_metadata(record_id, patch)

    def batch_update_metadata(self, database_name: str,
                              updates: Iterable[Tuple[str, Dict[str, Any]]]) -> UpdateResult:
        return self._store(database_name, AccessAction.WRITE).batch_update_metadata(updates)

    def search_multiple_databases(self, names: Sequence[str], query: Sequence[float],
                                  options: Any = None) -> List[SearchResult]:
        """Databases the user may not read contribute no results."""
        return self.coordinator.search_multiple_databases(names, query, options)

    # Folders, addressed by session

    def list_folders(self, session_id: str) -> List[str]:
        return self._session_store(session_id, AccessAction.READ).list_folders()

    def get_folder_statistics(self, session_id: str, folder_path: str) -> FolderStats:
        return self._session_store(session_id, AccessAction.READ).get_folder_statistics(folder_path)

    def move_to_folder(self, session_id: str, record_ids: Iterable[str], folder_path: str) -> UpdateResult:
        return self._session_store(session_id, AccessAction.WRITE).move_to_folder(record_ids, folder_path)

    def move_folder_contents(self, session_id: str, source_path: str, target_path: str) -> UpdateResult:
        return self._session_store(session_id, AccessAction.WRITE).move_folder_contents(source_path, target_path)

    def search_in_folder(self, session_id: str, folder_path: str, query: Sequence[float],
                         top_k: int = 10, options: Any = None) -> List[SearchResult]:
        return self._session_store(session_id, AccessAction.READ).search_in_folder(
            folder_path, query, top_k, options)

    # Permissions

    def _require_admin(self, database_name: str) -> None:
        self._store(database_name, AccessAction.ADMIN)

    def grant(self, database_name: str, user: str, role: Any) -> Permission:
        """Give another user the writer or reader role; only the owner may grant."""
        self._require_admin(database_name)
        return self.permissions.grant(database_name, user, role)

    def revoke(self, database_name: str, user: str) -> bool:
        self._require_admin(database_name)
        return self.permissions.revoke(database_name, user)

    def list_permissions(self, database_name: str) -> List[Permission]:
        self._require_admin(database_name)
        return self.permissions.list_permissions(database_name)

    def get_role(self, database_name: str, user: Optional[str] = None) -> Optional[Role]:
        """Role held by user (default: the acting user); the owner is reported as OWNER."""
        user = user or self.user
        metadata = self.registry.get_database_metadata(database_name)
        if metadata is not None and metadata.owner == user:
            return Role.OWNER
        return self.permissions.get_role(database_name, user)

    def can_access(self, database_name: str, action: Any, user: Optional[str] = None) -> bool:
        metadata = self.registry.get_database_metadata(database_name)
        if metadata is None:
            return False
        return self.permissions.can_access(metadata, user or self.user, action)
