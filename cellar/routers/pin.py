from __future__ import annotations

import logging
from urllib.parse import quote_plus

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from cellar.core.rate_limiter import rate_limit_ip
from cellar.services.pin_service import PinGate, safe_redirect_target

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["pin"])

PIN_ATTEMPT_LIMIT = 10
PIN_ATTEMPT_WINDOW = 300


def _pin_gate(request: Request) -> PinGate:
    gate = getattr(getattr(request.app, "state", None), "pin_gate", None)
    if not gate:
        raise RuntimeError("PinGate not configured")
    return gate


def _templates(request: Request):
    tpl = getattr(getattr(request.app, "state", None), "templates", None)
    if tpl:
        return tpl
    raise RuntimeError("Templates not configured")


@router.post("/api/pin")
async def submit_pin_json(request: Request):
    rate_limit_ip(request, "pin", limit=PIN_ATTEMPT_LIMIT, window_seconds=PIN_ATTEMPT_WINDOW)
    gate = _pin_gate(request)
    try:
        body = await request.json()
    except ValueError:
        body = None
    if not isinstance(body, dict) or "pin" not in body:
        return JSONResponse({"error": "Invalid request"}, status_code=400)
    pin = body["pin"]
    if not gate.enabled:
        return JSONResponse({"error": "PIN not configured"}, status_code=500)
    token = gate.token_for(pin)
    if not token:
        logger.warning("Rejected PIN attempt from %s", request.client.host if request.client else "unknown")
        return JSONResponse({"error": "Invalid PIN"}, status_code=401)
    response = JSONResponse({"ok": True})
    gate.set_cookie(response, token)
    return response


@router.get("/pin", response_class=HTMLResponse)
def pin_page(request: Request, redirect: str = "/", error: str = ""):
    templates = _templates(request)
    return templates.TemplateResponse(
        request,
        "pin.html",
        {"redirect": safe_redirect_target(redirect), "error": error},
    )


@router.post("/pin")
def submit_pin_form(request: Request, pin: str = Form(""), redirect: str = Form("/")):
    rate_limit_ip(request, "pin", limit=PIN_ATTEMPT_LIMIT, window_seconds=PIN_ATTEMPT_WINDOW)
    gate = _pin_gate(request)
    target = safe_redirect_target(redirect)
    token = gate.token_for(pin) if gate.enabled else None
    if not token:
        logger.warning("Rejected PIN attempt from %s", request.client.host if request.client else "unknown")
        dest = f"/pin?error={quote_plus('Invalid PIN')}&redirect={quote_plus(target)}"
        return RedirectResponse(dest, status_code=303)
    response = RedirectResponse(target, status_code=303)
    gate.set_cookie(response, token)
    return response
