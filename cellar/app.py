import logging
import os
from urllib.parse import quote_plus

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from starlette.middleware.base import BaseHTTPMiddleware

from cellar.core.config import Settings, get_settings
from cellar.repositories import StoreConfig, WineRecordStore
from cellar.routers import ai as ai_router
from cellar.routers import pin as pin_router
from cellar.routers import wines as wines_router
from cellar.services.ai_service import AiService
from cellar.services.pin_service import PinGate, is_public_path

logger = logging.getLogger(__name__)

BASE = os.path.dirname(__file__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Inject baseline security headers (anti clickjacking, referrer policy)."""

    def __init__(self, app, *, enforce_hsts: bool) -> None:
        super().__init__(app)
        self._enforce_hsts = enforce_hsts

    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "no-referrer-when-downgrade")
        if self._enforce_hsts:
            response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
        return response


class PinGateMiddleware(BaseHTTPMiddleware):
    """Require the pin_auth cookie on everything except the PIN page and assets."""

    def __init__(self, app, *, gate: PinGate) -> None:
        super().__init__(app)
        self._gate = gate

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not self._gate.enabled or is_public_path(path) or self._gate.is_authorized(request):
            return await call_next(request)
        if path.startswith("/api/"):
            return JSONResponse({"error": "PIN required"}, status_code=401)
        target = path + (f"?{request.url.query}" if request.url.query else "")
        return RedirectResponse(f"/pin?redirect={quote_plus(target)}", status_code=303)


def create_app(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    ai_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Factory compatible with uvicorn --factory; tests pass settings and fake transports."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = FastAPI(title="Cellar API")
    app.state.settings = settings
    app.state.templates = Jinja2Templates(directory=os.path.join(BASE, "templates"))
    app.state.wine_store = WineRecordStore(StoreConfig.from_settings(settings), transport=transport)
    app.state.pin_gate = PinGate(settings)
    app.state.ai_service = AiService(settings, transport=ai_transport)
    if app.state.wine_store.remote_enabled:
        logger.info("Wine data stored in GitHub %s/%s@%s", settings.github_owner, settings.github_repo, settings.github_branch)
    else:
        logger.info("GitHub credentials not configured, wine data stored under %s", settings.data_dir)
    if not app.state.ai_service.enabled:
        logger.info("OPENAI_API_KEY not set, /api/ai endpoints will answer 500")

    app.add_middleware(PinGateMiddleware, gate=app.state.pin_gate)
    app.add_middleware(SecurityHeadersMiddleware, enforce_hsts=settings.app_env == "prod")

    @app.get("/health")
    def health():
        backend = "remote" if app.state.wine_store.remote_enabled else "local"
        return {"ok": True, "backend": backend}

    app.include_router(pin_router.router)
    app.include_router(wines_router.router)
    app.include_router(ai_router.router)
    return app
