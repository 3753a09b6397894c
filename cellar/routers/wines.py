from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from cellar.repositories import (
    LoadResult,
    StaleReadError,
    StoreError,
    WineRecordStore,
    WriteConflictError,
)
from cellar.services.wine_service import (
    WineFilters,
    WineNotFoundError,
    WineService,
    WineValidationError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/wines", tags=["wines"])

VERSION_HEADER = "X-Data-Version"
BACKEND_HEADER = "X-Data-Backend"


def get_wine_service(request: Request) -> WineService:
    store = getattr(getattr(request.app, "state", None), "wine_store", None)
    if not isinstance(store, WineRecordStore):
        raise RuntimeError("WineRecordStore not configured")
    return WineService(store)


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse({"error": message, **extra}, status_code=status_code)


def store_failure(exc: StoreError, operation: str) -> JSONResponse:
    if isinstance(exc, WriteConflictError):
        headers = {}
        if exc.current is not None and exc.current.version_token:
            headers[VERSION_HEADER] = exc.current.version_token
        return JSONResponse({"error": "Wine data changed, reload and retry"}, status_code=409, headers=headers)
    if isinstance(exc, StaleReadError):
        logger.warning("Refusing %s: %s", operation, exc)
        return _error(503, "Wine storage is temporarily unavailable")
    logger.exception("Failed to %s", operation)
    return _error(500, f"Failed to {operation}")


def _version_headers(loaded: LoadResult) -> dict[str, str]:
    headers = {BACKEND_HEADER: loaded.backend.value}
    if loaded.version_token:
        headers[VERSION_HEADER] = loaded.version_token
    return headers


async def _json_body(request: Request) -> dict | None:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


@router.get("")
async def list_wines(
    dataSource: str = "1",
    country: str = "",
    region: str = "",
    style: str = "",
    vintage: str = "",
    status: str = "",
    search: str = "",
    svc: WineService = Depends(get_wine_service),
):
    filters = WineFilters(
        country=country, region=region, style=style, vintage=vintage, status=status, search=search
    )
    try:
        wines, loaded = await svc.list_wines(dataSource, filters)
    except StoreError as exc:
        return store_failure(exc, "fetch wines")
    return JSONResponse(wines, headers=_version_headers(loaded))


@router.post("")
async def create_wine(request: Request, svc: WineService = Depends(get_wine_service)):
    body = await _json_body(request)
    if body is None:
        return _error(400, "Invalid request body")
    data_source = str(body.get("dataSource") or "1")
    try:
        wine = await svc.create_wine(data_source, body)
    except WineValidationError as exc:
        return _error(400, "Invalid wine payload", details=exc.errors)
    except StoreError as exc:
        return store_failure(exc, "create wine")
    return JSONResponse(wine, status_code=201)


@router.get("/{wine_id}")
async def get_wine(wine_id: str, dataSource: str = "1", svc: WineService = Depends(get_wine_service)):
    try:
        return await svc.get_wine(dataSource, wine_id)
    except WineNotFoundError:
        return _error(404, "Wine not found")
    except StoreError as exc:
        return store_failure(exc, "fetch wine")


@router.put("/{wine_id}")
async def update_wine(
    wine_id: str,
    request: Request,
    if_match: str | None = Header(default=None),
    svc: WineService = Depends(get_wine_service),
):
    body = await _json_body(request)
    if body is None:
        return _error(400, "Invalid request body")
    data_source = str(body.get("dataSource") or "1")
    try:
        return await svc.update_wine(data_source, wine_id, body, expected_version=strip_etag(if_match))
    except WineValidationError as exc:
        return _error(400, "Invalid wine payload", details=exc.errors)
    except WineNotFoundError:
        return _error(404, "Wine not found")
    except StoreError as exc:
        return store_failure(exc, "update wine")


@router.delete("/{wine_id}")
async def delete_wine(
    wine_id: str,
    dataSource: str = "1",
    if_match: str | None = Header(default=None),
    svc: WineService = Depends(get_wine_service),
):
    try:
        await svc.delete_wine(dataSource, wine_id, expected_version=strip_etag(if_match))
    except WineNotFoundError:
        return _error(404, "Wine not found")
    except StoreError as exc:
        return store_failure(exc, "delete wine")
    return {"message": "Wine deleted successfully"}


def strip_etag(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = value.strip()
    if cleaned.startswith("W/"):
        cleaned = cleaned[2:]
    return cleaned.strip('"') or None
