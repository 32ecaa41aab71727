"""
Database registry - owns the namespace of vector databases and their sessions.

Databases live in an arena keyed by an integer handle; names map to handles
and sessions bind to a handle. Deleting a database frees its arena slot, so
a later database with the same name gets a new handle and no stale session
can reach it.

Lifecycle calls take the acting user. Opening a session on an existing
database needs read access, while deleting it or changing its metadata needs
admin access (see PermissionManager).
"""

import copy
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ..api.schemas import CreateSessionOptions, DatabaseMetadataPatch, coerce
from ..util.logging import logger
from ..vector.store import VectorStore
from . import config
from .errors import InvalidNameError, NotFoundError
from .permissions import AccessAction, PermissionManager
from .schema import DatabaseMetadata, DatabaseStats, SessionInfo, SessionStats, SessionStatus

# Patch keys that never change after creation or are derived from the store
IMMUTABLE_METADATA_FIELDS = {
    "database_name", "databaseName", "name",
    "owner",
    "dimensions",
    "created_at", "createdAt",
    "last_accessed_at", "lastAccessedAt",
    "vector_count", "vectorCount",
    "storage_size_bytes", "storageSizeBytes",
}


@dataclass
class _DatabaseSlot:
    handle: int
    name: str
    owner: str
    store: VectorStore
    created_at: datetime
    last_accessed_at: datetime
    description: Optional[str] = None
    is_public: bool = False
    custom: Dict[str, Any] = field(default_factory=dict)


class DatabaseRegistry:
    """
    Registry of named vector databases.
    Handles database lifecycle, session binding, metadata and access control.
    """

    def __init__(self, owner: Optional[str] = None, permissions: Optional[PermissionManager] = None):
        """
        Args:
            owner: Default acting user, recorded as owner on databases it creates
            permissions: Shared PermissionManager; a new one is made if omitted
        """
        self.owner = owner or config.DEFAULT_OWNER
        self.permissions = permissions or PermissionManager()
        self._lock = threading.RLock()
        self._slots: Dict[int, _DatabaseSlot] = {}
        self._names: Dict[str, int] = {}
        self._sessions: Dict[str, SessionInfo] = {}
        self._session_handles: Dict[str, int] = {}
        self._next_handle = 1

        # Leaf lock: taken from store callbacks, never held while taking another lock
        self._clock_lock = threading.Lock()
        self._last_timestamp: Optional[datetime] = None

    def _tick(self) -> datetime:
        # caller holds _clock_lock
        now = datetime.now()
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now

    def _now(self) -> datetime:
        """Strictly increasing timestamp."""
        with self._clock_lock:
            return self._tick()

    def _touch(self, slot: _DatabaseSlot) -> None:
        with self._clock_lock:
            now = self._tick()
            if now > slot.last_accessed_at:
                slot.last_accessed_at = now

    # Lookup

    def _slot(self, name: str) -> Optional[_DatabaseSlot]:
        with self._lock:
            handle = self._names.get(name)
            return self._slots.get(handle) if handle is not None else None

    def _require_slot(self, name: str) -> _DatabaseSlot:
        slot = self._slot(name)
        if slot is None:
            raise NotFoundError("database", name)
        return slot

    def get_store(self, name: str) -> VectorStore:
        """Resolve a database name to its store, raising NotFoundError if absent."""
        return self._require_slot(name).store

    def get_store_for_session(self, session_id: str) -> VectorStore:
        """Resolve an active session to its database store."""
        return self._session_slot(session_id).store

    def _session_slot(self, session_id: str) -> _DatabaseSlot:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.status is not SessionStatus.ACTIVE:
                raise NotFoundError("session", session_id)
            return self._slots[self._session_handles[session_id]]

    def database_exists(self, name: str) -> bool:
        return self._slot(name) is not None

    # Access control

    def authorize(self, name: str, user: Optional[str], action: AccessAction) -> VectorStore:
        """
        Resolve a database name to its store on behalf of user.

        Raises:
            NotFoundError: database does not exist
            PermissionDeniedError: user lacks the role for action
        """
        slot = self._require_slot(name)
        self.permissions.require(self._access_view(slot), user or self.owner, action)
        return slot.store

    def authorize_session(self, session_id: str, user: Optional[str], action: AccessAction) -> VectorStore:
        """Resolve an active session to its store on behalf of user."""
        slot = self._session_slot(session_id)
        self.permissions.require(self._access_view(slot), user or self.owner, action)
        return slot.store

    def _access_view(self, slot: _DatabaseSlot) -> DatabaseMetadata:
        # only identity fields feed the permission check; counters are left at zero
        return DatabaseMetadata(
            database_name=slot.name,
            owner=slot.owner,
            dimensions=slot.store.dimensions,
            created_at=slot.created_at,
            last_accessed_at=slot.last_accessed_at,
            is_public=slot.is_public,
        )

    # Lifecycle

    def create_session(self, name: str, options: Any = None, user: Optional[str] = None) -> str:
        """
        Open a session on a database, creating the database on first use.

        Args:
            name: Database name; must contain a non-whitespace character
            options: CreateSessionOptions or mapping (dimensions, owner,
                description, is_public), applied only when the database is created
            user: Acting user; defaults to the registry owner

        Returns:
            New globally-unique session id

        Raises:
            PermissionDeniedError: database exists and user cannot read it
        """
        if not isinstance(name, str) or not name.strip():
            raise InvalidNameError("Database name cannot be empty")
        create_options = coerce(CreateSessionOptions, options)
        user = user or self.owner

        with self._lock:
            handle = self._names.get(name)
            if handle is None:
                handle = self._create_database(name, create_options, user)
            else:
                self.permissions.require(self._access_view(self._slots[handle]), user, AccessAction.READ)

            session_id = str(uuid.uuid4())
            self._sessions[session_id] = SessionInfo(
                session_id=session_id,
                database_name=name,
                created_at=self._now(),
            )
            self._session_handles[session_id] = handle

        logger.log_session_operation("created", session_id, name)
        return session_id

    def _create_database(self, name: str, options: CreateSessionOptions, user: str) -> int:
        handle = self._next_handle
        self._next_handle += 1

        dimensions = options.dimensions or config.get_default_dimensions()
        created_at = self._now()
        slot = _DatabaseSlot(
            handle=handle,
            name=name,
            owner=options.owner or user,
            store=None,
            created_at=created_at,
            last_accessed_at=created_at,
            description=options.description,
            is_public=options.is_public,
        )
        slot.store = VectorStore(name, dimensions, on_access=lambda: self._touch(slot))

        self._slots[handle] = slot
        self._names[name] = handle

        logger.log_database_operation("created", name, {
            "handle": handle,
            "dimensions": dimensions,
            "owner": slot.owner,
            "public": slot.is_public,
        })
        return handle

    def delete_database(self, name: str, user: Optional[str] = None) -> None:
        """Destroy a database, every session bound to it and every grant on it."""
        with self._lock:
            handle = self._names.get(name)
            if handle is None:
                raise NotFoundError("database", name)
            self.permissions.require(self._access_view(self._slots[handle]), user or self.owner, AccessAction.ADMIN)
            del self._names[name]
            slot = self._slots.pop(handle)
            removed = self._drop_sessions(handle)
            self.permissions.drop_database(name)

        slot.store.destroy()
        logger.log_database_operation("deleted", name, {"sessions_removed": removed})

    def _drop_sessions(self, handle: int) -> int:
        session_ids = [sid for sid, h in self._session_handles.items() if h == handle]
        for session_id in session_ids:
            del self._sessions[session_id]
            del self._session_handles[session_id]
        return len(session_ids)

    def destroy_all_sessions(self) -> None:
        """Tear down every database, session and grant."""
        with self._lock:
            slots = list(self._slots.values())
            self._slots.clear()
            self._names.clear()
            self._sessions.clear()
            self._session_handles.clear()
            self.permissions.clear()

        for slot in slots:
            slot.store.destroy()
        logger.log_operation("registry.destroy_all", "success", {"databases_removed": len(slots)})

    # Metadata

    def _snapshot(self, slot: _DatabaseSlot) -> DatabaseMetadata:
        return DatabaseMetadata(
            database_name=slot.name,
            owner=slot.owner,
            dimensions=slot.store.dimensions,
            created_at=slot.created_at,
            last_accessed_at=slot.last_accessed_at,
            vector_count=slot.store.vector_count,
            storage_size_bytes=slot.store.storage_size_bytes,
            description=slot.description,
            is_public=slot.is_public,
            custom=copy.deepcopy(slot.custom),
        )

    def list_databases(self) -> List[DatabaseMetadata]:
        """All live databases, newest first."""
        with self._lock:
            slots = list(self._slots.values())
        return sorted((self._snapshot(slot) for slot in slots),
                      key=lambda meta: meta.created_at, reverse=True)

    def get_database_metadata(self, name: str) -> Optional[DatabaseMetadata]:
        slot = self._slot(name)
        if slot is None:
            return None
        snapshot = self._snapshot(slot)
        self._touch(slot)
        return snapshot

    def update_database_metadata(self, name: str, patch: Any, user: Optional[str] = None) -> DatabaseMetadata:
        """
        Merge a top-level patch into a database's metadata.

        description and is_public are set directly; other keys are kept as
        custom metadata. Immutable and store-derived fields are ignored.
        Needs admin access.
        """
        slot = self._require_slot(name)
        metadata_patch = coerce(DatabaseMetadataPatch, patch)
        self.permissions.require(self._access_view(slot), user or self.owner, AccessAction.ADMIN)

        custom = metadata_patch.custom_fields()
        ignored = sorted(key for key in custom if key in IMMUTABLE_METADATA_FIELDS)
        for key in ignored:
            del custom[key]

        updated = set(custom)
        with self._lock:
            if "description" in metadata_patch.model_fields_set:
                slot.description = metadata_patch.description
                updated.add("description")
            if "is_public" in metadata_patch.model_fields_set and metadata_patch.is_public is not None:
                slot.is_public = metadata_patch.is_public
                updated.add("is_public")
            slot.custom.update(copy.deepcopy(custom))
        self._touch(slot)

        details = {"fields": sorted(updated)}
        if ignored:
            details["ignored"] = ignored
        logger.log_database_operation("metadata_updated", name, details)
        return self._snapshot(slot)

    def get_database_stats(self, name: str) -> Optional[DatabaseStats]:
        slot = self._slot(name)
        if slot is None:
            return None
        with self._lock:
            session_count = sum(1 for h in self._session_handles.values() if h == slot.handle)
        stats = DatabaseStats(
            database_name=slot.name,
            vector_count=slot.store.vector_count,
            storage_size_bytes=slot.store.storage_size_bytes,
            session_count=session_count,
        )
        self._touch(slot)
        return stats

    # Sessions

    def get_session(self, session_id: str) -> Optional[SessionInfo]:
        with self._lock:
            session = self._sessions.get(session_id)
            return copy.copy(session) if session is not None else None

    def list_sessions(self, database_name: Optional[str] = None) -> List[SessionInfo]:
        with self._lock:
            return [copy.copy(s) for s in self._sessions.values()
                    if database_name is None or s.database_name == database_name]

    def get_session_status(self, session_id: str) -> str:
        """Return "active", "closed" or "unknown"."""
        with self._lock:
            session = self._sessions.get(session_id)
            return session.status.value if session is not None else "unknown"

    def close_session(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise NotFoundError("session", session_id)
            session.status = SessionStatus.CLOSED
        logger.log_session_operation("closed", session_id, session.database_name)

    def destroy_session(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                raise NotFoundError("session", session_id)
            del self._session_handles[session_id]
        logger.log_session_operation("destroyed", session_id, session.database_name)

    def destroy_sessions_by_database(self, name: str) -> int:
        """Drop every session of a database, keeping the database itself."""
        with self._lock:
            handle = self._names.get(name)
            removed = self._drop_sessions(handle) if handle is not None else 0
        logger.log_database_operation("sessions_destroyed", name, {"sessions_removed": removed})
        return removed

    def get_session_stats(self, session_id: str) -> Optional[SessionStats]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            slot = self._slots[self._session_handles[session_id]]
        self._touch(slot)
        return SessionStats(
            session_id=session_id,
            database_name=slot.name,
            total_vectors=slot.store.vector_count,
            total_records=slot.store.total_records,
            memory_usage_mb=round(slot.store.storage_size_bytes / (1024 * 1024), 4),
        )
