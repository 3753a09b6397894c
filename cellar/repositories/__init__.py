"""
Persistence adapters.

Datasets are JSON arrays stored either in a local file or in a GitHub
repository. Services talk to WineRecordStore and never touch the files or
the contents API directly.
"""

from cellar.repositories.errors import (
    LocalStorageError,
    MalformedDatasetError,
    MissingVersionTokenError,
    RemoteStorageError,
    StaleReadError,
    StoreError,
    WriteConflictError,
)
from cellar.repositories.wine_store import (
    Backend,
    LoadResult,
    SaveResult,
    StoreConfig,
    WineRecordStore,
    dataset_path,
)

__all__ = [
    "Backend",
    "LoadResult",
    "LocalStorageError",
    "MalformedDatasetError",
    "MissingVersionTokenError",
    "RemoteStorageError",
    "SaveResult",
    "StaleReadError",
    "StoreConfig",
    "StoreError",
    "WineRecordStore",
    "WriteConflictError",
    "dataset_path",
]
