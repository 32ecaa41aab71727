"""
Per-database access control.

The database owner may do anything. Other users get a role through grant():
a writer may read and write, a reader may only read. A public database is
readable by everyone. Grants, revokes and access checks are kept in an
audit trail and logged.
"""

import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from ..util.logging import logger
from .errors import InvalidOptionsError, PermissionDeniedError


class Role(str, Enum):
    OWNER = "owner"
    WRITER = "writer"
    READER = "reader"


class AccessAction(str, Enum):
    READ = "read"
    WRITE = "write"
    ADMIN = "admin"


# Actions each role allows; OWNER is implied by DatabaseMetadata.owner, never granted
ROLE_ACTIONS = {
    Role.OWNER: {AccessAction.READ, AccessAction.WRITE, AccessAction.ADMIN},
    Role.WRITER: {AccessAction.READ, AccessAction.WRITE},
    Role.READER: {AccessAction.READ},
}

GRANTABLE_ROLES = (Role.WRITER, Role.READER)


@dataclass
class Permission:
    database_name: str
    user: str
    role: Role
    granted_at: datetime


@dataclass
class AuditEntry:
    """Record of a grant, revoke or access check."""
    timestamp: datetime
    action: str  # grant, revoke, access
    database_name: str
    user: str
    role: Optional[Role] = None
    access_action: Optional[AccessAction] = None
    result: str = "success"  # success, denied


class PermissionManager:
    """Role grants per database, with an audit trail."""

    def __init__(self):
        self._lock = threading.Lock()
        self._grants: Dict[str, Dict[str, Permission]] = {}
        self._audit: List[AuditEntry] = []

    def _record(self, entry: AuditEntry) -> None:
        with self._lock:
            self._audit.append(entry)

        details = {}
        if entry.role is not None:
            details["role"] = entry.role.value
        if entry.access_action is not None:
            details["access"] = entry.access_action.value
        logger.log_permission_event(entry.action, entry.database_name, entry.user, details, status=entry.result)

    # Grants

    def grant(self, database_name: str, user: str, role) -> Permission:
        """Give user a role on a database, replacing any earlier grant."""
        if not isinstance(user, str) or not user.strip():
            raise InvalidOptionsError("User is required")
        try:
            role = Role(role)
        except ValueError as e:
            raise InvalidOptionsError(f"Invalid role: {role!r}") from e
        if role not in GRANTABLE_ROLES:
            raise InvalidOptionsError(f"Role cannot be granted: {role.value}")

        permission = Permission(database_name=database_name, user=user, role=role, granted_at=datetime.now())
        with self._lock:
            self._grants.setdefault(database_name, {})[user] = permission

        self._record(AuditEntry(permission.granted_at, "grant", database_name, user, role=role))
        return permission

    def revoke(self, database_name: str, user: str) -> bool:
        """Remove user's role on a database. Returns False if there was none."""
        with self._lock:
            removed = self._grants.get(database_name, {}).pop(user, None)
        if removed is None:
            return False

        self._record(AuditEntry(datetime.now(), "revoke", database_name, user, role=removed.role))
        return True

    def get_role(self, database_name: str, user: str) -> Optional[Role]:
        with self._lock:
            permission = self._grants.get(database_name, {}).get(user)
            return permission.role if permission is not None else None

    def list_permissions(self, database_name: str) -> List[Permission]:
        with self._lock:
            return list(self._grants.get(database_name, {}).values())

    def drop_database(self, database_name: str) -> None:
        """Forget every grant on a database."""
        with self._lock:
            self._grants.pop(database_name, None)

    def clear(self) -> None:
        with self._lock:
            self._grants.clear()

    # Checks

    def can_access(self, metadata, user: str, action) -> bool:
        """
        Decide whether user may perform action on a database.

        Args:
            metadata: DatabaseMetadata (owner, is_public and database_name are used)
            user: Acting identity
            action: AccessAction or its value ("read", "write", "admin")
        """
        action = AccessAction(action)
        if user == metadata.owner:
            return True
        if action is AccessAction.READ and metadata.is_public:
            return True
        role = self.get_role(metadata.database_name, user)
        return role is not None and action in ROLE_ACTIONS[role]

    def check_and_log(self, metadata, user: str, action) -> bool:
        """can_access, with the outcome added to the audit trail."""
        action = AccessAction(action)
        allowed = self.can_access(metadata, user, action)
        self._record(AuditEntry(
            datetime.now(), "access", metadata.database_name, user,
            access_action=action,
            result="success" if allowed else "denied",
        ))
        return allowed

    def require(self, metadata, user: str, action) -> None:
        """Raise PermissionDeniedError unless user may perform action; only denials are audited."""
        action = AccessAction(action)
        if self.can_access(metadata, user, action):
            return
        self._record(AuditEntry(
            datetime.now(), "access", metadata.database_name, user,
            access_action=action, result="denied",
        ))
        raise PermissionDeniedError(metadata.database_name, user, action.value)

    # Audit trail

    def audit_log(self, database_name: Optional[str] = None, user: Optional[str] = None) -> List[AuditEntry]:
        with self._lock:
            return [entry for entry in self._audit
                    if (database_name is None or entry.database_name == database_name)
                    and (user is None or entry.user == user)]
