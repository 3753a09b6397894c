"""
GitHub contents API adapter.

The dataset lives as a file in a repository branch. Reads return the decoded
array plus the blob sha; writes carry the sha from the read so GitHub rejects
them when the file changed in between.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass

import httpx

from cellar.repositories.errors import RemoteStorageError, WriteConflictError
from cellar.repositories.local_storage import decode_dataset, encode_dataset

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemoteConfig:
    owner: str
    repo: str
    token: str
    branch: str = "main"
    api_base: str = "https://api.github.com"
    timeout: float | None = 10.0

    def is_complete(self) -> bool:
        """Owner, repository and token must all be present to use GitHub."""
        return all((value or "").strip() for value in (self.owner, self.repo, self.token))


@dataclass(frozen=True)
class RemoteWrite:
    content_sha: str
    commit_sha: str | None


class GitHubContentsBackend:
    """Reads/writes a JSON file through ``/repos/{owner}/{repo}/contents``."""

    def __init__(self, config: RemoteConfig, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.config = config
        self._transport = transport

    def _url(self, rel_path: str) -> str:
        cfg = self.config
        return f"{cfg.api_base.rstrip('/')}/repos/{cfg.owner}/{cfg.repo}/contents/{rel_path}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers={
                "Authorization": f"token {self.config.token}",
                "Accept": "application/vnd.github.v3+json",
            },
            timeout=self.config.timeout,
            transport=self._transport,
        )

    async def read(self, rel_path: str) -> tuple[list[dict], str | None]:
        """Return the decoded dataset and its blob sha; ``([], None)`` when the file does not exist yet."""
        try:
            async with self._client() as client:
                resp = await client.get(self._url(rel_path), params={"ref": self.config.branch})
        except httpx.HTTPError as exc:
            raise RemoteStorageError(f"GET {rel_path} failed: {exc}") from exc
        if resp.status_code == 404:
            logger.info("%s does not exist on %s yet", rel_path, self.config.branch)
            return [], None
        if resp.status_code != 200:
            raise RemoteStorageError(
                f"GET {rel_path} answered {resp.status_code} {resp.reason_phrase}",
                status_code=resp.status_code,
            )
        try:
            payload = resp.json()
            sha = payload["sha"]
            encoding = payload.get("encoding")
            # files over 1 MB come back with encoding "none" and empty content
            if encoding != "base64":
                raise ValueError(f"content encoding is {encoding!r}")
            raw = base64.b64decode(payload["content"])
            text = raw.decode("utf-8")
        except (ValueError, KeyError, TypeError, AttributeError, binascii.Error, UnicodeDecodeError) as exc:
            raise RemoteStorageError(f"GET {rel_path} returned an unexpected payload: {exc}") from exc
        return decode_dataset(text, f"{self.config.repo}:{rel_path}"), sha

    async def write(self, rel_path: str, records: list[dict], sha: str | None, message: str) -> RemoteWrite:
        """PUT the dataset; without a sha GitHub only accepts it when the file does not exist."""
        content = base64.b64encode(encode_dataset(records).encode("utf-8")).decode("ascii")
        body = {
            "message": message,
            "content": content,
            "branch": self.config.branch,
        }
        if sha:
            body["sha"] = sha
        try:
            async with self._client() as client:
                resp = await client.put(self._url(rel_path), json=body)
        except httpx.HTTPError as exc:
            raise RemoteStorageError(f"PUT {rel_path} failed: {exc}") from exc
        if resp.status_code in (200, 201):
            try:
                payload = resp.json()
                return RemoteWrite(
                    content_sha=payload["content"]["sha"],
                    commit_sha=(payload.get("commit") or {}).get("sha"),
                )
            except (ValueError, KeyError, TypeError) as exc:
                raise RemoteStorageError(f"PUT {rel_path} returned an unexpected payload: {exc}") from exc
        if self._is_sha_rejection(resp):
            logger.warning("GitHub rejected write to %s: sha %s is stale", rel_path, sha)
            raise WriteConflictError(rel_path)
        raise RemoteStorageError(
            f"PUT {rel_path} answered {resp.status_code} {resp.reason_phrase}",
            status_code=resp.status_code,
        )

    @staticmethod
    def _is_sha_rejection(resp: httpx.Response) -> bool:
        if resp.status_code == 409:
            return True
        if resp.status_code != 422:
            return False
        try:
            message = str(resp.json().get("message", ""))
        except (ValueError, AttributeError):
            return False
        return "sha" in message.lower()
