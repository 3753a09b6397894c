"""
JSON file persistence adapter.

Each dataset is a pretty-printed JSON array under the data directory. Writes
overwrite the file in place; there is no locking, so concurrent writers are
last-writer-wins.
"""

from __future__ import annotations

from pathlib import Path
import json

from starlette.concurrency import run_in_threadpool

from cellar.repositories.errors import LocalStorageError, MalformedDatasetError


def decode_dataset(text: str, source: str) -> list[dict]:
    """Parse a dataset document, rejecting anything but an array of objects."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedDatasetError(f"{source} is not valid JSON: {exc}") from exc
    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        raise MalformedDatasetError(f"{source} must hold a JSON array of objects")
    return data


def encode_dataset(records: list[dict]) -> str:
    return json.dumps(records, ensure_ascii=False, indent=2)


class LocalBackend:
    """Reads and writes dataset files below ``root``."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def file_for(self, rel_path: str) -> Path:
        return self.root / Path(rel_path).name

    def _read(self, rel_path: str) -> list[dict]:
        path = self.file_for(rel_path)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise LocalStorageError(f"Could not read {path}: {exc}") from exc
        return decode_dataset(text, str(path))

    def _write(self, rel_path: str, records: list[dict]) -> None:
        path = self.file_for(rel_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(encode_dataset(records), encoding="utf-8")
        except OSError as exc:
            raise LocalStorageError(f"Could not write {path}: {exc}") from exc

    async def read(self, rel_path: str) -> list[dict]:
        return await run_in_threadpool(self._read, rel_path)

    async def write(self, rel_path: str, records: list[dict]) -> None:
        await run_in_threadpool(self._write, rel_path, records)
