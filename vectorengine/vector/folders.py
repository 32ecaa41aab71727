"""
Virtual folders - a slash-separated path kept in record metadata.

A record belongs to the folder named by its folderPath metadata value, or to
the root folder "/" when it has none. Folders are not stored separately: a
folder exists while at least one live record is in it.
"""

from typing import Any, Mapping

from ..core import config
from ..core.errors import InvalidFolderPathError


def validate_folder_path(path: Any) -> str:
    """Return path unchanged if it is an absolute folder path, else raise InvalidFolderPathError."""
    if not isinstance(path, str):
        raise InvalidFolderPathError(f"Folder path must be a string, got {type(path).__name__}")
    if not path.strip():
        raise InvalidFolderPathError("Folder path cannot be empty")
    if not path.startswith("/"):
        raise InvalidFolderPathError(f"Folder path must start with /: {path!r}")
    if path == config.ROOT_FOLDER:
        return path
    if path.endswith("/"):
        raise InvalidFolderPathError(f"Folder path cannot end with /: {path!r}")
    if "//" in path:
        raise InvalidFolderPathError(f"Folder path cannot contain double slashes: {path!r}")
    return path


def folder_of(metadata: Mapping[str, Any]) -> str:
    return metadata.get(config.FOLDER_PATH_FIELD, config.ROOT_FOLDER)
