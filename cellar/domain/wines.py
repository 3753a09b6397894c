"""Wine record schema, defaults and boundary validation."""
from __future__ import annotations

import re
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

WineStatus = Literal["in_cellar", "consumed", "sold", "gifted"]
WINE_STATUSES = ("in_cellar", "consumed", "sold", "gifted")

MAX_BOTTLE_IMAGE_URL_LENGTH = 2048
_HTTP_URL = re.compile(r"^https?://", re.IGNORECASE)

# Routing hint sent by clients; never part of a stored record.
DATA_SOURCE_KEY = "dataSource"


class WineCreate(BaseModel):
    """Payload accepted when a wine is added to a dataset."""

    model_config = ConfigDict(extra="allow")

    bottle: str = Field(..., min_length=1, description="Bottle name")
    country: str = Field(..., min_length=1)
    region: str = ""
    vintage: int = Field(..., gt=0, description="Vintage year")
    grapes: str = ""
    style: str = Field(..., min_length=1)
    drinkingWindow: str = ""
    peakYear: Optional[int] = None
    foodPairingNotes: str = ""
    mealToHaveWithThisWine: str = ""
    status: WineStatus = "in_cellar"
    consumedDate: Optional[str] = None
    location: str = ""
    quantity: int = Field(1, ge=1)
    price: Optional[float] = None
    rating: Optional[float] = None
    notes: str = ""
    fromCellar: bool = True
    technical_sheet: Optional[str] = None
    bottle_image: Optional[str] = None
    decanting: Optional[str] = None
    criticScore: Optional[float] = None
    criticCode: Optional[str] = None

    def to_record(self, wine_id: str) -> dict[str, Any]:
        """Build the stored record: id first, then the payload fields with defaults applied."""
        fields = self.model_dump()
        fields.pop("id", None)
        fields.pop(DATA_SOURCE_KEY, None)
        for optional_key in ("technical_sheet", "bottle_image", "decanting", "criticScore", "criticCode"):
            if fields.get(optional_key) in (None, ""):
                fields.pop(optional_key, None)
        record = {"id": wine_id, **fields}
        return apply_bottle_image(record)


class WineUpdate(BaseModel):
    """Partial payload merged over a stored record. Omitted keys stay untouched."""

    model_config = ConfigDict(extra="allow")

    # Non-nullable fields: omitted is fine, explicit null is rejected.
    bottle: str = Field(None, min_length=1)
    country: str = Field(None, min_length=1)
    region: str = None
    vintage: int = Field(None, gt=0)
    grapes: str = None
    style: str = Field(None, min_length=1)
    drinkingWindow: str = None
    peakYear: Optional[int] = None
    foodPairingNotes: str = None
    mealToHaveWithThisWine: str = None
    status: WineStatus = None
    consumedDate: Optional[str] = None
    location: str = None
    quantity: int = Field(None, ge=1)
    price: Optional[float] = None
    rating: Optional[float] = None
    notes: str = None
    fromCellar: bool = None
    technical_sheet: Optional[str] = None
    bottle_image: Optional[str] = None
    decanting: Optional[str] = None
    criticScore: Optional[float] = None
    criticCode: Optional[str] = None

    def changes(self) -> dict[str, Any]:
        fields = self.model_dump(exclude_unset=True)
        fields.pop("id", None)
        fields.pop(DATA_SOURCE_KEY, None)
        return fields


def sanitize_bottle_image(value: Any) -> str | None:
    """Return a trimmed http(s) URL, or None when the value should be discarded."""
    if not value or not isinstance(value, str):
        return None
    trimmed = value.strip()
    if not trimmed or not _HTTP_URL.match(trimmed):
        return None
    if len(trimmed) > MAX_BOTTLE_IMAGE_URL_LENGTH:
        return None
    return trimmed


def apply_bottle_image(record: dict[str, Any]) -> dict[str, Any]:
    """Keep bottle_image only when it is a safe URL; drop the key otherwise."""
    safe = sanitize_bottle_image(record.get("bottle_image"))
    if safe:
        record["bottle_image"] = safe
    else:
        record.pop("bottle_image", None)
    return record


def validation_errors(exc: ValidationError) -> list[dict[str, str]]:
    """Flatten pydantic errors into [{"field": ..., "message": ...}]."""
    errors = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ())) or "__root__"
        errors.append({"field": field, "message": err.get("msg", "invalid value")})
    return errors
