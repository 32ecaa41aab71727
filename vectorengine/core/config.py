"""
Engine configuration - environment driven, read once at import.
Accessor functions re-read the environment where tests need dynamic values.
"""

import os

# Default dimensionality for databases created without explicit dimensions
VECTOR_DIMENSIONS = int(os.getenv("VECTOR_DIMENSIONS", "384"))

# Index implementation (ivf|flat)
VECTOR_INDEX = os.getenv("VECTOR_INDEX", "ivf")

# IVF tuning
IVF_MIN_RECORDS = int(os.getenv("IVF_MIN_RECORDS", "3"))
IVF_MAX_LISTS = int(os.getenv("IVF_MAX_LISTS", "64"))
IVF_RETRAIN_GROWTH = float(os.getenv("IVF_RETRAIN_GROWTH", "2.0"))
IVF_KMEANS_ITERATIONS = int(os.getenv("IVF_KMEANS_ITERATIONS", "10"))

# Record limits
METADATA_MAX_BYTES = int(os.getenv("METADATA_MAX_BYTES", str(1024 * 1024)))
RESERVED_METADATA_FIELDS = ("id",)

# Virtual folders: metadata key holding the path, and the folder of records without one
FOLDER_PATH_FIELD = "folderPath"
ROOT_FOLDER = "/"

# Registry defaults
DEFAULT_OWNER = os.getenv("DEFAULT_OWNER", "local")

# Multi-database fan-out
MULTI_SEARCH_MAX_WORKERS = int(os.getenv("MULTI_SEARCH_MAX_WORKERS", "8"))

VALID_INDEX_TYPES = ["ivf", "flat"]

# Version string
VERSION = "0.3.0"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def get_default_dimensions():
    """Get default dimensionality for new databases."""
    if VECTOR_DIMENSIONS < 1:
        return 384
    return VECTOR_DIMENSIONS


def get_index_type():
    """Get configured index type (ivf|flat)."""
    return os.getenv("VECTOR_INDEX", VECTOR_INDEX).lower()


def get_vector_index(dimensions: int):
    """Get configured similarity index for a database of the given dimensionality."""
    index_type = get_index_type()

    if index_type == "flat":
        from ..vector.index import FlatIndex
        return FlatIndex(dimensions)

    # ivf is the default; unknown values are reported by validate_engine_config
    from ..vector.index import IVFIndex
    return IVFIndex(
        dimensions,
        min_records=max(IVF_MIN_RECORDS, 1),
        max_lists=max(IVF_MAX_LISTS, 1),
        retrain_growth=IVF_RETRAIN_GROWTH if IVF_RETRAIN_GROWTH > 1.0 else 2.0,
        iterations=max(IVF_KMEANS_ITERATIONS, 1),
    )


def get_multi_search_workers():
    """Get thread-pool width for multi-database search."""
    return max(MULTI_SEARCH_MAX_WORKERS, 1)


def validate_engine_config():
    """Validate engine configuration and return any issues."""
    issues = []

    if VECTOR_DIMENSIONS < 1:
        issues.append("VECTOR_DIMENSIONS must be >= 1")

    if get_index_type() not in VALID_INDEX_TYPES:
        issues.append(f"Invalid VECTOR_INDEX: {get_index_type()}")

    if IVF_MIN_RECORDS < 1:
        issues.append("IVF_MIN_RECORDS must be >= 1")

    if IVF_MAX_LISTS < 1:
        issues.append("IVF_MAX_LISTS must be >= 1")

    if IVF_RETRAIN_GROWTH <= 1.0:
        issues.append("IVF_RETRAIN_GROWTH must be > 1.0")

    if IVF_KMEANS_ITERATIONS < 1:
        issues.append("IVF_KMEANS_ITERATIONS must be >= 1")

    if METADATA_MAX_BYTES < 1:
        issues.append("METADATA_MAX_BYTES must be >= 1")

    if MULTI_SEARCH_MAX_WORKERS < 1:
        issues.append("MULTI_SEARCH_MAX_WORKERS must be >= 1")

    return issues
