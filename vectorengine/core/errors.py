"""
Exceptions raised by the vector engine.
"""


class EngineError(Exception):
    """Base exception for all engine errors."""
    pass


class DimensionMismatchError(EngineError, ValueError):
    """
    Vector length does not match the database dimensionality.

    Raised for both inserts and queries, before any state is touched.
    """

    def __init__(self, expected: int, actual: int, record_id: str = None):
        if record_id:
            message = f"Invalid vector dimensions for '{record_id}': expected {expected}, got {actual}"
        else:
            message = f"Invalid vector dimensions: expected {expected}, got {actual}"
        super().__init__(message)
        self.expected = expected
        self.actual = actual
        self.record_id = record_id


class NotFoundError(EngineError, LookupError):
    """
    Operation on an absent database, record or session.

    Only write paths raise this; read paths return None instead.
    """

    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind.capitalize()} not found: {key}")
        self.kind = kind
        self.key = key

    def __str__(self):
        # LookupError would otherwise repr() the message
        return self.args[0]


class InvalidNameError(EngineError, ValueError):
    """Database name is empty or whitespace-only."""
    pass


class InvalidFilterError(EngineError, ValueError):
    """Filter predicate uses an unknown operator or a malformed operand."""
    pass


class InvalidMetadataError(EngineError, ValueError):
    """
    Record metadata is not acceptable.

    Raised when:
    - metadata is not a mapping with string keys
    - a reserved field name is used
    - the serialized metadata exceeds the configured size limit
    """
    pass


class InvalidVectorError(EngineError, ValueError):
    """Record id or values are missing or malformed."""
    pass


class InvalidOptionsError(EngineError, ValueError):
    """Search, batch or session options failed validation."""
    pass


class InvalidFolderPathError(InvalidMetadataError):
    """Folder path is empty, relative, has a trailing slash or an empty segment."""
    pass


class PermissionDeniedError(EngineError, PermissionError):
    """Caller lacks the role needed for an operation on a database."""

    def __init__(self, database: str, user: str, action: str):
        super().__init__(f"Permission denied: {user} cannot {action} database {database}")
        self.database = database
        self.user = user
        self.action = action
