from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from cellar.repositories import StoreError
from cellar.routers.wines import get_wine_service, store_failure, strip_etag
from cellar.services.ai_service import (
    AiNotConfiguredError,
    AiRequestError,
    AiService,
    AiServiceError,
    AiUpstreamError,
)
from cellar.services.wine_service import WineNotFoundError, WineService, WineValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ai", tags=["ai"])


def get_ai_service(request: Request) -> AiService:
    svc = getattr(getattr(request.app, "state", None), "ai_service", None)
    if not isinstance(svc, AiService):
        raise RuntimeError("AiService not configured")
    return svc


def _ai_failure(exc: AiServiceError) -> JSONResponse:
    if isinstance(exc, AiRequestError):
        return JSONResponse({"error": str(exc)}, status_code=400)
    if isinstance(exc, AiNotConfiguredError):
        return JSONResponse({"error": str(exc)}, status_code=500)
    if isinstance(exc, AiUpstreamError):
        return JSONResponse({"error": str(exc), "details": exc.details}, status_code=502)
    logger.exception("AI helper failed")
    return JSONResponse({"error": "AI request failed"}, status_code=500)


async def _json_object(request: Request) -> dict | None:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


@router.post("/extract-wine")
async def extract_wine(request: Request, ai: AiService = Depends(get_ai_service)):
    body = await _json_object(request)
    if body is None:
        return JSONResponse({"error": "Invalid request body"}, status_code=400)
    try:
        return await ai.extract_wine(body.get("image"), locale=body.get("locale"))
    except AiServiceError as exc:
        return _ai_failure(exc)


@router.post("/enrich-pairing")
async def enrich_pairing(
    request: Request,
    if_match: str | None = Header(default=None),
    ai: AiService = Depends(get_ai_service),
    wines: WineService = Depends(get_wine_service),
):
    """Suggest pairing notes; with ``wineId`` the suggestion is saved into that wine."""
    body = await _json_object(request)
    if body is None:
        return JSONResponse({"error": "Invalid request body"}, status_code=400)
    mode = body.get("mode") or "both"
    locale = body.get("locale")
    try:
        if body.get("wineId") is not None:
            data_source = str(body.get("dataSource") or "1")
            return await ai.enrich_wine(
                wines,
                data_source,
                str(body["wineId"]),
                mode=mode,
                locale=locale,
                expected_version=strip_etag(if_match),
            )
        return await ai.suggest_pairing(
            body.get("wine"),
            current_pairing=str(body.get("currentPairing") or ""),
            current_meal=str(body.get("currentMeal") or ""),
            mode=mode,
            locale=locale,
        )
    except AiServiceError as exc:
        return _ai_failure(exc)
    except WineNotFoundError:
        return JSONResponse({"error": "Wine not found"}, status_code=404)
    except WineValidationError as exc:
        return JSONResponse({"error": "OpenAI returned unusable fields", "details": exc.errors}, status_code=502)
    except StoreError as exc:
        return store_failure(exc, "enrich wine")


@router.post("/sommelier")
async def sommelier(
    request: Request,
    ai: AiService = Depends(get_ai_service),
    wines: WineService = Depends(get_wine_service),
):
    """Recommend a bottle; without ``wines`` in the body the stored dataset is used."""
    body = await _json_object(request)
    if body is None:
        return JSONResponse({"error": "Invalid request body"}, status_code=400)
    cellar = body.get("wines")
    try:
        if not isinstance(cellar, list):
            cellar, _ = await wines.list_wines(str(body.get("dataSource") or "1"))
        return await ai.recommend(cellar, body.get("messages"), locale=body.get("locale"))
    except AiServiceError as exc:
        return _ai_failure(exc)
    except StoreError as exc:
        return store_failure(exc, "fetch wines")
