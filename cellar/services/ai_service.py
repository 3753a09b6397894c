"""
OpenAI-backed helpers: label extraction, pairing enrichment and the sommelier chat.

The model only ever sees a short summary of the wines and must answer with a
JSON object. Whatever it returns is normalised here; merging a suggestion into
a stored wine goes through WineService like any other edit, so it gets the
same validation and version checks.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import date
from typing import Any, Iterable, Optional

import httpx
from openai import APIError, AsyncOpenAI

from cellar.core.config import Settings
from cellar.domain.wines import sanitize_bottle_image
from cellar.services.wine_service import WineService

logger = logging.getLogger(__name__)

PAIRING_FIELDS = {
    "pairing": ("foodPairingNotes",),
    "meal": ("mealToHaveWithThisWine",),
    "both": ("foodPairingNotes", "mealToHaveWithThisWine"),
}
CHAT_ROLES = ("user", "assistant", "system")
_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)

EXTRACT_PROMPT = """You read wine labels. Identify the wine and its typical profile, estimate a
realistic drinking window and peak year, and suggest food pairings plus ONE specific dish.
Return ONLY a JSON object with the keys: bottle, country, region, vintage (number), style
(Red, White, Rosé, Sparkling, Sweet or Fortified), grapes, drinkingWindow, peakYear (number),
foodPairingNotes, mealToHaveWithThisWine."""

PAIRING_PROMPT = """You are a sommelier. Given the wine below, write concise food pairing notes and
ONE specific main dish (protein, method, sides or sauce).
Return ONLY a JSON object with the keys foodPairingNotes and mealToHaveWithThisWine."""

SOMMELIER_PROMPT = """You are a warm, conversational sommelier. The current year is {year}.
Recommend EXACTLY ONE wine from the list when asked for a suggestion, preferring wines whose
maturityStatus is PAST PEAK or AT PEAK, then NEAR PEAK. Never contradict maturityStatus.
Answer follow-up questions with data from the list only. Include serving temperature and
decanting guidance, and up to 2 alternative ids. Respond in {language}."""

SOMMELIER_FORMATS = """Return ONLY JSON in one of these shapes:
{"type": "question", "question": string}
{"type": "recommendation", "wineId": string, "bottle": string, "reason": string,
 "servingTemperature": string, "decanting": string, "alternatives": string[]}
{"type": "answer", "answer": string}"""


class AiServiceError(Exception):
    """Base exception for AI helpers."""


class AiNotConfiguredError(AiServiceError):
    """Raised when no OpenAI API key is configured."""


class AiRequestError(AiServiceError):
    """Raised when the caller's input cannot be sent to the model."""


class AiUpstreamError(AiServiceError):
    """Raised when the completion API fails or answers without usable JSON."""

    def __init__(self, message: str, details: str = ""):
        super().__init__(message)
        self.details = details


def language_for(locale: str | None) -> str:
    return "pt-BR" if locale == "pt" else "en"


def normalize_style(value: str | None) -> str:
    """Map free text such as "dry red wine" onto the cellar's style names."""
    text = (value or "").lower()
    if "spark" in text:
        return "Sparkling"
    if "rosé" in text or "rose" in text:
        return "Rosé"
    if "sweet" in text or "dessert" in text:
        return "Sweet"
    if "fortified" in text or "port" in text or "sherry" in text:
        return "Fortified"
    if "white" in text:
        return "White"
    if "red" in text:
        return "Red"
    return value or ""


def coerce_year(value: Any, fallback: int) -> int:
    if isinstance(value, bool):
        return fallback
    try:
        return int(str(value).strip()[:4]) if isinstance(value, str) else int(value)
    except (TypeError, ValueError):
        return fallback


def maturity_status(peak_year: Any, current_year: int) -> str:
    """Describe how close a wine is to its peak; empty when the peak is unknown."""
    try:
        peak = int(peak_year or 0)
    except (TypeError, ValueError):
        return ""
    if peak <= 0:
        return ""
    diff = peak - current_year
    if diff < -2:
        return "PAST PEAK, drink urgently"
    if diff < 0:
        return "PAST PEAK, drink soon"
    if diff == 0:
        return "AT PEAK, ideal to drink now"
    if diff <= 2:
        return "NEAR PEAK, good to drink"
    return f"{diff} years until peak, consider waiting"


def cellar_brief(wines: Iterable[dict], current_year: int) -> list[dict]:
    """Flatten the bottles still in the cellar into what the model needs to choose one."""
    brief = []
    for wine in wines:
        if (wine.get("status") or "in_cellar") != "in_cellar":
            continue
        brief.append(
            {
                "id": str(wine.get("id")),
                "bottle": wine.get("bottle"),
                "country": wine.get("country"),
                "region": wine.get("region"),
                "vintage": wine.get("vintage"),
                "style": wine.get("style"),
                "grapes": wine.get("grapes"),
                "foodPairingNotes": wine.get("foodPairingNotes"),
                "mealToHaveWithThisWine": wine.get("mealToHaveWithThisWine"),
                "drinkingWindow": wine.get("drinkingWindow"),
                "peakYear": wine.get("peakYear"),
                "maturityStatus": maturity_status(wine.get("peakYear"), current_year),
                "notes": wine.get("notes"),
            }
        )
    return brief


def wine_summary(wine: dict) -> str:
    lines = [
        ("Bottle", wine.get("bottle")),
        ("Country", wine.get("country")),
        ("Region", wine.get("region")),
        ("Vintage", wine.get("vintage")),
        ("Style", wine.get("style")),
        ("Grapes", wine.get("grapes")),
    ]
    return "\n".join(f"{label}: {value}" for label, value in lines if value)


def parse_json_content(content: str) -> dict:
    """Parse the model's answer, tolerating prose around a single JSON object."""
    try:
        parsed = json.loads(content)
    except ValueError:
        match = _JSON_BLOCK.search(content)
        if not match:
            raise AiUpstreamError("Failed to parse JSON from OpenAI", details=content[:200])
        try:
            parsed = json.loads(match.group(0))
        except ValueError as exc:
            raise AiUpstreamError("Failed to parse JSON from OpenAI", details=content[:200]) from exc
    if not isinstance(parsed, dict):
        raise AiUpstreamError("OpenAI answered with JSON that is not an object")
    return parsed


class AiService:
    """Thin wrapper over the chat completions API; one instance per app."""

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        max_retries: int = 2,
    ) -> None:
        self.model = settings.openai_model
        self._client: Optional[AsyncOpenAI] = None
        if settings.openai_api_key:
            http_client = httpx.AsyncClient(transport=transport) if transport is not None else None
            self._client = AsyncOpenAI(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url or None,
                http_client=http_client,
                max_retries=max_retries,
            )

    @property
    def enabled(self) -> bool:
        return self._client is not None

    async def _complete_json(self, messages: list[dict], temperature: float) -> dict:
        if self._client is None:
            raise AiNotConfiguredError("Missing OPENAI_API_KEY")
        try:
            completion = await self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                response_format={"type": "json_object"},
            )
        except APIError as exc:
            logger.warning("OpenAI request failed: %s", exc)
            raise AiUpstreamError("OpenAI request failed", details=str(exc)) from exc
        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            raise AiUpstreamError("No content returned from OpenAI")
        return parse_json_content(content)

    # ------------------------------------ label photo ------------------------------------
    async def extract_wine(self, image: str, locale: str | None = None) -> dict:
        """Read a label photo (data URL or https URL) into wine fields."""
        if not image or not isinstance(image, str):
            raise AiRequestError("Missing image")
        instruction = (
            "Extraia as informações do rótulo do vinho nesta imagem e retorne apenas JSON."
            if locale == "pt"
            else "Extract wine label information from this image and return JSON only."
        )
        parsed = await self._complete_json(
            [
                {"role": "system", "content": EXTRACT_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": instruction},
                        {"type": "image_url", "image_url": {"url": image}},
                    ],
                },
            ],
            temperature=0.2,
        )
        year = date.today().year
        extracted = {
            "bottle": str(parsed.get("bottle") or ""),
            "country": str(parsed.get("country") or ""),
            "region": str(parsed.get("region") or ""),
            "vintage": coerce_year(parsed.get("vintage"), year),
            "style": normalize_style(parsed.get("style")),
            "grapes": str(parsed.get("grapes") or ""),
            "drinkingWindow": str(parsed.get("drinkingWindow") or ""),
            "peakYear": coerce_year(parsed.get("peakYear"), year + 2),
            "foodPairingNotes": str(parsed.get("foodPairingNotes") or ""),
            "mealToHaveWithThisWine": str(parsed.get("mealToHaveWithThisWine") or ""),
            "notes": str(parsed.get("notes") or ""),
        }
        try:
            if parsed.get("price") is not None:
                extracted["price"] = float(parsed["price"])
        except (TypeError, ValueError):
            pass
        image_url = sanitize_bottle_image(parsed.get("bottle_image"))
        if image_url:
            extracted["bottle_image"] = image_url
        if isinstance(parsed.get("technical_sheet"), str) and parsed["technical_sheet"]:
            extracted["technical_sheet"] = parsed["technical_sheet"]
        return extracted

    # -------------------------------------- pairing --------------------------------------
    async def suggest_pairing(
        self,
        wine: dict,
        *,
        current_pairing: str = "",
        current_meal: str = "",
        mode: str = "both",
        locale: str | None = None,
    ) -> dict[str, str]:
        if not isinstance(wine, dict) or not wine:
            raise AiRequestError("Missing wine data")
        if mode not in PAIRING_FIELDS:
            raise AiRequestError(f"Unknown mode {mode!r}")
        constraints = []
        if mode != "meal" and current_pairing:
            constraints.append(f"Refine these pairing notes and add 1-2 concrete dishes: {current_pairing}")
        if mode != "pairing" and current_meal:
            constraints.append(f"Propose a different main dish than: {current_meal}")
        user = "\n\n".join(
            part
            for part in (
                "Wine info:\n" + wine_summary(wine),
                "\n".join(constraints),
                f"Respond in {language_for(locale)}.",
            )
            if part
        )
        parsed = await self._complete_json(
            [{"role": "system", "content": PAIRING_PROMPT}, {"role": "user", "content": user}],
            temperature=0.5,
        )
        return {
            "foodPairingNotes": str(parsed.get("foodPairingNotes") or "").strip(),
            "mealToHaveWithThisWine": str(parsed.get("mealToHaveWithThisWine") or "").strip(),
        }

    async def enrich_wine(
        self,
        wines: WineService,
        dataset_id: str,
        wine_id: str,
        *,
        mode: str = "both",
        locale: str | None = None,
        expected_version: Optional[str] = None,
    ) -> dict:
        """Ask for pairing notes for a stored wine and merge them into the record."""
        wine = await wines.get_wine(dataset_id, wine_id)
        suggestion = await self.suggest_pairing(
            wine,
            current_pairing=str(wine.get("foodPairingNotes") or ""),
            current_meal=str(wine.get("mealToHaveWithThisWine") or ""),
            mode=mode,
            locale=locale,
        )
        changes = {key: suggestion[key] for key in PAIRING_FIELDS[mode] if suggestion.get(key)}
        if not changes:
            logger.info("No pairing suggestion for wine %s, record left unchanged", wine_id)
            return wine
        return await wines.update_wine(dataset_id, wine_id, changes, expected_version=expected_version)

    # ------------------------------------- sommelier -------------------------------------
    async def recommend(self, wines: list[dict], messages: list[dict], locale: str | None = None) -> dict:
        """Pick a bottle from the cellar for the conversation so far."""
        conversation = [
            {"role": m["role"], "content": m["content"]}
            for m in messages or []
            if isinstance(m, dict) and m.get("role") in CHAT_ROLES and isinstance(m.get("content"), str)
        ]
        if not wines or not conversation:
            raise AiRequestError("Missing wines or messages")
        year = date.today().year
        brief = cellar_brief(wines, year)
        if not brief:
            raise AiRequestError("No available wines to recommend")
        language = language_for(locale)
        parsed = await self._complete_json(
            [
                {"role": "system", "content": SOMMELIER_PROMPT.format(year=year, language=language)},
                {"role": "system", "content": "Wine list (JSON):\n" + json.dumps(brief, ensure_ascii=False)},
                {"role": "system", "content": SOMMELIER_FORMATS},
                *conversation,
            ],
            temperature=0.4,
        )
        return {**parsed, "language": language}
