"""Exceptions raised by the wine store and its backends."""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from cellar.repositories.wine_store import LoadResult


class StoreError(Exception):
    """Base class for persistence failures."""


class MalformedDatasetError(StoreError):
    """Stored content is not a JSON array of wine objects."""


class LocalStorageError(StoreError):
    """Reading or writing the local dataset file failed."""


class RemoteStorageError(StoreError):
    """The contents API was unreachable or answered with an error status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class MissingVersionTokenError(StoreError):
    """A remote save was attempted without the token from a prior load."""


class WriteConflictError(StoreError):
    """The remote file changed since the version token was issued."""

    def __init__(self, dataset_id: str, current: Optional["LoadResult"] = None):
        super().__init__(f"Dataset {dataset_id} changed since it was loaded")
        self.dataset_id = dataset_id
        self.current = current


class StaleReadError(StoreError):
    """GitHub is configured but the last read was served from the local copy."""
