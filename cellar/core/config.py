"""
Configuration helpers for the cellar backend.

Settings is the only place that reads os.environ; routers, services and the
wine store receive the values they need from it.
"""

from dataclasses import dataclass
from functools import lru_cache
import os


@dataclass(frozen=True)
class Settings:
    """Typed view of environment variables."""

    app_env: str
    data_dir: str
    github_owner: str
    github_repo: str
    github_branch: str
    github_token: str
    github_api_base: str
    site_pins: tuple[str, ...]
    pin_salt: str
    pin_cookie_ttl_seconds: int
    log_level: str
    openai_api_key: str
    openai_model: str
    openai_base_url: str


@lru_cache
def get_settings() -> Settings:
    """Read the current environment and build a Settings instance."""
    def _int(value: str, default: int = 0) -> int:
        try:
            return int(value)
        except (TypeError, ValueError):
            return default

    def _list(value: str | None) -> tuple[str, ...]:
        if not value:
            return ()
        return tuple(item.strip() for item in value.split(",") if item.strip())

    return Settings(
        app_env=(os.getenv("APP_ENV") or "dev").lower(),
        data_dir=os.getenv("CELLAR_DATA_DIR", "data"),
        github_owner=os.getenv("GITHUB_OWNER", "").strip(),
        github_repo=os.getenv("GITHUB_REPO", "").strip(),
        github_branch=(os.getenv("GITHUB_BRANCH") or "main").strip(),
        github_token=os.getenv("GITHUB_TOKEN", "").strip(),
        github_api_base=os.getenv("GITHUB_API_BASE", "https://api.github.com").rstrip("/"),
        site_pins=_list(os.getenv("SITE_PIN")),
        pin_salt=os.getenv("PIN_SALT") or "flint-static-salt",
        pin_cookie_ttl_seconds=_int(os.getenv("PIN_COOKIE_TTL_SECONDS", "2592000"), 2592000),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        openai_api_key=os.getenv("OPENAI_API_KEY", "").strip(),
        openai_model=os.getenv("OPENAI_MODEL") or "gpt-4o-mini",
        openai_base_url=os.getenv("OPENAI_BASE_URL", "").strip(),
    )
