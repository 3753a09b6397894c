"""
Wine record store: one entry point over the local and GitHub backends.

The backend is chosen from the remote credentials alone. Reads prefer GitHub
and degrade to the local file; writes are conditional on the version token
(the blob sha) returned by the read. The unit of persistence is the whole
dataset, so every single-record edit costs a full read and a full write.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

import httpx

from cellar.core.config import Settings
from cellar.repositories.errors import (
    MissingVersionTokenError,
    RemoteStorageError,
    WriteConflictError,
)
from cellar.repositories.github_storage import GitHubContentsBackend, RemoteConfig
from cellar.repositories.local_storage import LocalBackend

logger = logging.getLogger(__name__)

DEFAULT_DATASET_PATH = "data/wines.json"
DATASET_PATHS = {
    "2": "data/wines2.json",
}


def dataset_path(dataset_id: str | None) -> str:
    """Closed table: "2" is the second cellar, anything else the first."""
    return DATASET_PATHS.get(str(dataset_id or "").strip(), DEFAULT_DATASET_PATH)


class Backend(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


@dataclass(frozen=True)
class StoreConfig:
    data_dir: Path
    remote: Optional[RemoteConfig] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "StoreConfig":
        remote = RemoteConfig(
            owner=settings.github_owner,
            repo=settings.github_repo,
            token=settings.github_token,
            branch=settings.github_branch or "main",
            api_base=settings.github_api_base,
        )
        return cls(data_dir=Path(settings.data_dir), remote=remote if remote.is_complete() else None)


@dataclass
class LoadResult:
    records: list[dict] = field(default_factory=list)
    version_token: Optional[str] = None
    backend: Backend = Backend.LOCAL
    degraded: bool = False
    # false when GitHub answered 404: the next save creates the file without a sha
    exists: bool = True


@dataclass
class SaveResult:
    backend: Backend
    version_token: Optional[str] = None
    commit_sha: Optional[str] = None
    degraded: bool = False


class WineRecordStore:
    """Loads and persists whole datasets, choosing GitHub when credentials are complete."""

    def __init__(self, config: StoreConfig, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.config = config
        self.local = LocalBackend(config.data_dir)
        self.remote: GitHubContentsBackend | None = None
        if config.remote is not None and config.remote.is_complete():
            self.remote = GitHubContentsBackend(config.remote, transport=transport)

    @property
    def remote_enabled(self) -> bool:
        return self.remote is not None

    async def load(self, dataset_id: str) -> LoadResult:
        path = dataset_path(dataset_id)
        if self.remote is None:
            return LoadResult(records=await self.local.read(path), backend=Backend.LOCAL)
        try:
            records, sha = await self.remote.read(path)
        except RemoteStorageError as exc:
            logger.warning("Loading %s from GitHub failed, using local copy: %s", path, exc)
            return LoadResult(records=await self.local.read(path), backend=Backend.LOCAL, degraded=True)
        return LoadResult(records=records, version_token=sha, backend=Backend.REMOTE, exists=sha is not None)

    async def save(
        self,
        dataset_id: str,
        records: list[dict],
        version_token: Optional[str],
        commit_message: Optional[str] = None,
        *,
        create: bool = False,
    ) -> SaveResult:
        """Persist the whole dataset.

        With GitHub active the write is conditional on ``version_token``; pass
        ``create=True`` instead when ``load`` reported the file as missing.
        """
        path = dataset_path(dataset_id)
        records = list(records)
        if self.remote is None:
            await self.local.write(path, records)
            return SaveResult(backend=Backend.LOCAL)
        if not version_token and not create:
            raise MissingVersionTokenError(f"Saving {path} to GitHub requires the version token from load()")

        message = commit_message or f"Update wine data ({datetime.now(timezone.utc).isoformat()})"
        try:
            written = await self.remote.write(path, records, version_token, message)
        except WriteConflictError:
            raise WriteConflictError(dataset_id, current=await self._current_remote(path)) from None
        except RemoteStorageError as exc:
            logger.warning("Saving %s to GitHub failed, writing local copy: %s", path, exc)
            await self.local.write(path, records)
            return SaveResult(backend=Backend.LOCAL, degraded=True)
        return SaveResult(
            backend=Backend.REMOTE,
            version_token=written.content_sha,
            commit_sha=written.commit_sha,
        )

    async def _current_remote(self, path: str) -> Optional[LoadResult]:
        try:
            records, sha = await self.remote.read(path)
        except RemoteStorageError as exc:
            logger.warning("Could not fetch current %s after a conflict: %s", path, exc)
            return None
        return LoadResult(records=records, version_token=sha, backend=Backend.REMOTE, exists=sha is not None)
