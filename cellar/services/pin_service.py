"""PIN gate: allowlist check, cookie issuing and request authorization."""
from __future__ import annotations

import re
import secrets
from urllib.parse import urlparse

from fastapi import Request, Response

from cellar.core.config import Settings, get_settings
from cellar.core.security import cookie_token, verify_pin

PIN_COOKIE_NAME = "pin_auth"

PUBLIC_PATHS = {"/pin", "/api/pin", "/favicon.ico", "/health"}
PUBLIC_PREFIXES = ("/static/",)
_ASSET_SUFFIX = re.compile(r"\.(?:png|jpg|jpeg|svg|webp|gif|ico|txt|json|map|css|js)$", re.IGNORECASE)


class PinGate:
    """Validates PIN submissions and the pin_auth cookie against SITE_PIN."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    @property
    def enabled(self) -> bool:
        return bool(self.settings.site_pins)

    def _tokens(self) -> list[str]:
        return [cookie_token(entry, self.settings.pin_salt) for entry in self.settings.site_pins]

    def token_for(self, pin: str | None) -> str | None:
        """Return the cookie token when the PIN matches an allowlist entry."""
        candidate = str(pin or "").strip()
        if not candidate:
            return None
        for entry in self.settings.site_pins:
            if verify_pin(candidate, entry):
                return cookie_token(entry, self.settings.pin_salt)
        return None

    def is_authorized(self, request: Request) -> bool:
        if not self.enabled:
            return True
        supplied = request.cookies.get(PIN_COOKIE_NAME) or ""
        if not supplied:
            return False
        return any(secrets.compare_digest(supplied, token) for token in self._tokens())

    def set_cookie(self, response: Response, token: str) -> None:
        response.set_cookie(
            PIN_COOKIE_NAME,
            token,
            httponly=True,
            secure=self.settings.app_env == "prod",
            samesite="lax",
            max_age=self.settings.pin_cookie_ttl_seconds,
            path="/",
        )


def is_public_path(path: str) -> bool:
    if path in PUBLIC_PATHS:
        return True
    if path.startswith(PUBLIC_PREFIXES):
        return True
    return bool(_ASSET_SUFFIX.search(path))


def safe_redirect_target(target: str | None) -> str:
    """Only same-site absolute paths are allowed as post-login destinations."""
    value = (target or "").strip()
    if not value.startswith("/") or value.startswith("//"):
        return "/"
    parsed = urlparse(value)
    if parsed.scheme or parsed.netloc:
        return "/"
    return value
