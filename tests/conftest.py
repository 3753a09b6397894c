from __future__ import annotations

import base64
import hashlib
import json
import sys
from dataclasses import replace
from pathlib import Path

import httpx
import pytest

# Makes the cellar package importable when running tests from a checkout
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from cellar.core.config import Settings  # noqa: E402
from cellar.core.rate_limiter import reset_rate_limits  # noqa: E402
from cellar.repositories import StoreConfig, WineRecordStore  # noqa: E402
from cellar.repositories.github_storage import RemoteConfig  # noqa: E402

OWNER = "someone"
REPO = "cellar-data"


def git_blob_sha(content: bytes) -> str:
    return hashlib.sha1(b"blob %d\0" % len(content) + content).hexdigest()


class FakeGitHub:
    """In-memory stand-in for the GitHub contents API."""

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.requests: list[httpx.Request] = []
        self.commits = 0
        self.fail_reads = False
        self.fail_writes = False
        self.offline = False

    # helpers used by tests
    def put_json(self, path: str, records: list[dict]) -> str:
        content = json.dumps(records, indent=2).encode("utf-8")
        self.files[path] = content
        return git_blob_sha(content)

    def get_json(self, path: str) -> list[dict]:
        return json.loads(self.files[path].decode("utf-8"))

    def sha_of(self, path: str) -> str:
        return git_blob_sha(self.files[path])

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.offline:
            raise httpx.ConnectError("network unreachable", request=request)
        prefix = f"/repos/{OWNER}/{REPO}/contents/"
        if not request.url.path.startswith(prefix):
            return httpx.Response(404, json={"message": "Not Found"})
        path = request.url.path[len(prefix):]
        if request.method == "GET":
            return self._get(path)
        if request.method == "PUT":
            return self._put(path, json.loads(request.content))
        return httpx.Response(405, json={"message": "Method Not Allowed"})

    def _get(self, path: str) -> httpx.Response:
        if self.fail_reads:
            return httpx.Response(502, json={"message": "Bad Gateway"})
        if path not in self.files:
            return httpx.Response(404, json={"message": "Not Found"})
        content = self.files[path]
        encoded = base64.encodebytes(content).decode("ascii")  # GitHub wraps lines
        return httpx.Response(
            200,
            json={"path": path, "sha": git_blob_sha(content), "encoding": "base64", "content": encoded},
        )

    def _put(self, path: str, body: dict) -> httpx.Response:
        if self.fail_writes:
            return httpx.Response(500, json={"message": "Server Error"})
        current = self.files.get(path)
        if current is not None:
            if not body.get("sha"):
                return httpx.Response(422, json={"message": "Invalid request.\n\n\"sha\" wasn't supplied."})
            if body["sha"] != git_blob_sha(current):
                return httpx.Response(409, json={"message": f"{path} does not match {body['sha']}"})
        content = base64.b64decode(body["content"])
        self.files[path] = content
        self.commits += 1
        status = 200 if current is not None else 201
        return httpx.Response(
            status,
            json={
                "content": {"path": path, "sha": git_blob_sha(content)},
                "commit": {"sha": f"commit{self.commits:04d}", "message": body.get("message")},
            },
        )


class FakeOpenAI:
    """Answers chat completion calls with queued replies.

    A dict reply is sent back as JSON content, a str verbatim, an int as an
    error status.
    """

    def __init__(self) -> None:
        self.replies: list = []
        self.requests: list[httpx.Request] = []

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def sent(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        reply = self.replies.pop(0) if self.replies else {}
        if isinstance(reply, int):
            return httpx.Response(reply, json={"error": {"message": "upstream failure", "type": "invalid_request_error"}})
        content = reply if isinstance(reply, str) else json.dumps(reply)
        return httpx.Response(
            200,
            json={
                "id": "chatcmpl-test",
                "object": "chat.completion",
                "created": 0,
                "model": "gpt-4o-mini",
                "choices": [
                    {"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}
                ],
            },
        )


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def data_dir(tmp_path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def local_store(data_dir) -> WineRecordStore:
    return WineRecordStore(StoreConfig(data_dir=data_dir))


@pytest.fixture
def remote_store(data_dir, github) -> WineRecordStore:
    remote = RemoteConfig(owner=OWNER, repo=REPO, token="ghp_test", api_base="https://api.github.test")
    return WineRecordStore(StoreConfig(data_dir=data_dir, remote=remote), transport=github.transport)


@pytest.fixture
def settings(data_dir) -> Settings:
    reset_rate_limits()
    return Settings(
        app_env="test",
        data_dir=str(data_dir),
        github_owner="",
        github_repo="",
        github_branch="main",
        github_token="",
        github_api_base="https://api.github.test",
        site_pins=(),
        pin_salt="test-salt",
        pin_cookie_ttl_seconds=3600,
        log_level="INFO",
        openai_api_key="",
        openai_model="gpt-4o-mini",
        openai_base_url="",
    )


@pytest.fixture
def remote_settings(settings) -> Settings:
    return replace(settings, github_owner=OWNER, github_repo=REPO, github_token="ghp_test")


def write_local(data_dir: Path, name: str, records: list[dict]) -> None:
    (data_dir / name).write_text(json.dumps(records, indent=2), encoding="utf-8")


def read_local(data_dir: Path, name: str) -> list[dict]:
    return json.loads((data_dir / name).read_text(encoding="utf-8"))


@pytest.fixture
def openai_fake() -> FakeOpenAI:
    return FakeOpenAI()


@pytest.fixture
def ai_settings(settings) -> Settings:
    return replace(settings, openai_api_key="sk-test", openai_base_url="https://openai.test/v1")
