"""
Structured logging for engine operations.
Vector, database, session and search events share one line format.
"""

import logging
from typing import Any, Dict, List

# Metadata fields that carry document or message text
SENSITIVE_FIELDS = ['text', 'content', 'payload', 'secret', 'password']


class StructuredLogger:
    """Structured logger for vector engine operations."""

    def __init__(self, name: str = "vectorengine"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_vector_operation(self, operation: str, database: str, details: Dict[str, Any] = None, status: str = "success"):
        """Log a per-database vector operation (add, delete, update)."""
        log_details = {"database": database}
        if details:
            log_details.update(sanitize_payload(details))

        level = logging.INFO if status == "success" else logging.WARNING
        self.log_operation(f"vector.{operation}", status, log_details, level)

    def log_database_operation(self, operation: str, database: str, details: Dict[str, Any] = None, status: str = "success"):
        """Log a registry lifecycle event."""
        log_details = {"database": database}
        if details:
            log_details.update(details)

        self.log_operation(f"database.{operation}", status, log_details)

    def log_session_operation(self, operation: str, session_id: str, database: str = None, status: str = "success"):
        """Log a session binding change."""
        log_details = {"session_id": session_id}
        if database is not None:
            log_details["database"] = database

        self.log_operation(f"session.{operation}", status, log_details)

    def log_permission_event(self, action: str, database: str, user: str, details: Dict[str, Any] = None, status: str = "success"):
        """Log a grant, revoke or access check; denials are warnings."""
        log_details = {"database": database, "user": user}
        if details:
            log_details.update(details)

        level = logging.WARNING if status == "denied" else logging.INFO
        self.log_operation(f"permission.{action}", status, log_details, level)

    def log_search(self, databases: List[str], top_k: int, result_count: int, start_time: float, end_time: float,
                   details: Dict[str, Any] = None):
        """Log a completed search with its duration."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {
            "databases": databases,
            "top_k": top_k,
            "result_count": result_count,
            "duration_ms": duration_ms
        }
        if details:
            log_details.update(details)

        # Searches are frequent; keep them out of INFO output
        self.log_operation("search", "success", log_details, logging.DEBUG)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for logging."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        if len(payload) > 10:
            return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload[:10]] + ["..."]
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload
