"""Wine inventory use cases (list/filter, create, update, delete, import)."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from cellar.domain.wines import (
    DATA_SOURCE_KEY,
    WineCreate,
    WineUpdate,
    apply_bottle_image,
    validation_errors,
)
from cellar.repositories import (
    LoadResult,
    SaveResult,
    StaleReadError,
    WineRecordStore,
    WriteConflictError,
)

logger = logging.getLogger(__name__)

SEARCH_FIELDS = (
    "bottle",
    "country",
    "region",
    "grapes",
    "foodPairingNotes",
    "mealToHaveWithThisWine",
    "notes",
)


class WineServiceError(Exception):
    """Base exception for wine workflows."""


class WineNotFoundError(WineServiceError):
    """Raised when the id is not present in the dataset."""


class WineValidationError(WineServiceError):
    def __init__(self, errors: list[dict[str, str]]):
        super().__init__("Invalid wine payload")
        self.errors = errors


@dataclass
class WineFilters:
    country: str = ""
    region: str = ""
    style: str = ""
    vintage: str = ""
    status: str = ""
    search: str = ""

    @staticmethod
    def _active(value: str | None) -> bool:
        return bool(value) and value != "all"

    def matches(self, wine: dict) -> bool:
        for key in ("country", "region", "style", "status"):
            wanted = getattr(self, key)
            if self._active(wanted) and wine.get(key) != wanted:
                return False
        if self._active(self.vintage) and str(wine.get("vintage")) != self.vintage:
            return False
        if self.search:
            needle = self.search.lower()
            haystack = (str(wine.get(key) or "").lower() for key in SEARCH_FIELDS)
            if not any(needle in value for value in haystack):
                return False
        return True


def next_timestamp_id(records: Iterable[dict], now_ms: int | None = None) -> str:
    """Epoch milliseconds, bumped past the largest numeric id when it would collide."""
    candidate = now_ms if now_ms is not None else int(time.time() * 1000)
    existing = {str(record.get("id")) for record in records}
    if str(candidate) not in existing:
        return str(candidate)
    return str(max(candidate, _max_numeric_id(existing)) + 1)


def next_sequential_id(records: Iterable[dict]) -> str:
    """Largest numeric id plus one ("1" for an empty dataset)."""
    return str(_max_numeric_id(str(record.get("id")) for record in records) + 1)


def _max_numeric_id(ids: Iterable[str]) -> int:
    highest = 0
    for value in ids:
        try:
            highest = max(highest, int(value))
        except (TypeError, ValueError):
            continue
    return highest


def _index_of(records: list[dict], wine_id: str) -> int:
    for index, record in enumerate(records):
        if str(record.get("id")) == str(wine_id):
            return index
    return -1


class WineService:
    """Read-modify-write operations over one dataset at a time."""

    def __init__(self, store: WineRecordStore) -> None:
        self.store = store

    # -------------------------------------- reads --------------------------------------
    async def list_wines(self, dataset_id: str, filters: WineFilters | None = None) -> tuple[list[dict], LoadResult]:
        loaded = await self.store.load(dataset_id)
        wines = loaded.records
        if filters is not None:
            wines = [wine for wine in wines if filters.matches(wine)]
        return wines, loaded

    async def get_wine(self, dataset_id: str, wine_id: str) -> dict:
        loaded = await self.store.load(dataset_id)
        index = _index_of(loaded.records, wine_id)
        if index == -1:
            raise WineNotFoundError(f"Wine {wine_id} not found")
        return loaded.records[index]

    # -------------------------------------- writes -------------------------------------
    async def _load_for_write(self, dataset_id: str, expected_version: Optional[str] = None) -> LoadResult:
        loaded = await self.store.load(dataset_id)
        if loaded.degraded:
            raise StaleReadError(f"Dataset {dataset_id} was served from the local copy; refusing to write")
        if expected_version and loaded.version_token and expected_version != loaded.version_token:
            logger.warning("Dataset %s is at %s, client expected %s", dataset_id, loaded.version_token, expected_version)
            raise WriteConflictError(dataset_id, current=loaded)
        return loaded

    async def _commit(self, dataset_id: str, records: list[dict], loaded: LoadResult, message: str) -> SaveResult:
        result = await self.store.save(
            dataset_id, records, loaded.version_token, message, create=not loaded.exists
        )
        if result.degraded:
            logger.warning("Dataset %s was written to the local copy only", dataset_id)
        return result

    @staticmethod
    def _validate_create(payload: dict[str, Any]) -> WineCreate:
        data = {key: value for key, value in payload.items() if key != DATA_SOURCE_KEY}
        try:
            return WineCreate.model_validate(data)
        except ValidationError as exc:
            raise WineValidationError(validation_errors(exc)) from exc

    async def create_wine(self, dataset_id: str, payload: dict[str, Any], *, id_strategy: str = "timestamp") -> dict:
        form = self._validate_create(payload)
        loaded = await self._load_for_write(dataset_id)
        records = list(loaded.records)
        if id_strategy == "sequential":
            wine_id = next_sequential_id(records)
        else:
            wine_id = next_timestamp_id(records)
        wine = form.to_record(wine_id)
        # ratings are given after tasting, never on creation
        wine["rating"] = None
        records.append(wine)
        await self._commit(dataset_id, records, loaded, f"Add wine {wine['bottle']}")
        return wine

    async def update_wine(
        self,
        dataset_id: str,
        wine_id: str,
        payload: dict[str, Any],
        *,
        expected_version: Optional[str] = None,
    ) -> dict:
        data = {key: value for key, value in payload.items() if key != DATA_SOURCE_KEY}
        try:
            changes = WineUpdate.model_validate(data).changes()
        except ValidationError as exc:
            raise WineValidationError(validation_errors(exc)) from exc
        loaded = await self._load_for_write(dataset_id, expected_version)
        records = list(loaded.records)
        index = _index_of(records, wine_id)
        if index == -1:
            raise WineNotFoundError(f"Wine {wine_id} not found")
        updated = apply_bottle_image({**records[index], **changes})
        records[index] = updated
        await self._commit(dataset_id, records, loaded, f"Update wine {updated.get('bottle', wine_id)}")
        return updated

    async def delete_wine(self, dataset_id: str, wine_id: str, *, expected_version: Optional[str] = None) -> dict:
        loaded = await self._load_for_write(dataset_id, expected_version)
        records = list(loaded.records)
        index = _index_of(records, wine_id)
        if index == -1:
            raise WineNotFoundError(f"Wine {wine_id} not found")
        removed = records.pop(index)
        await self._commit(dataset_id, records, loaded, f"Delete wine {removed.get('bottle', wine_id)}")
        return removed

    async def import_wines(self, dataset_id: str, payloads: Iterable[dict[str, Any]]) -> list[dict]:
        """Append several wines in a single write, numbering them sequentially."""
        forms = [self._validate_create(payload) for payload in payloads]
        if not forms:
            return []
        loaded = await self._load_for_write(dataset_id)
        records = list(loaded.records)
        added = []
        for form in forms:
            wine = form.to_record(next_sequential_id(records))
            records.append(wine)
            added.append(wine)
        await self._commit(dataset_id, records, loaded, f"Import {len(added)} wines")
        return added
