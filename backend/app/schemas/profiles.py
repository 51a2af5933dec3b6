"""Profile schemas."""

import re
from datetime import datetime
from uuid import UUID

from pydantic import Field, field_validator

from app.config import get_settings
from app.schemas.base import BaseSchema

_NON_DIGITS = re.compile(r"\D")


def normalize_whatsapp(value: str) -> str:
    """
    Normalize a WhatsApp number to the configured country code.

    Accepts any formatting ("98765 43210", "(987) 654-3210") as long as ten
    digits remain once separators are dropped. A leading country code that
    matches the configured one is tolerated.
    """
    country_code = get_settings().phone_country_code
    digits = _NON_DIGITS.sub("", value)
    cc_digits = _NON_DIGITS.sub("", country_code)
    if len(digits) == 10 + len(cc_digits) and digits.startswith(cc_digits):
        digits = digits[len(cc_digits):]
    if len(digits) != 10:
        raise ValueError("Please enter a valid 10-digit WhatsApp number.")
    return f"{country_code}{digits}"


class ProfileCreate(BaseSchema):
    """Onboarding form. Upserted into the caller's profile row."""

    name: str = Field(..., min_length=1, max_length=255)
    age: int = Field(..., ge=18, le=99)
    school: str = Field(..., min_length=1, max_length=255)
    department: str = Field(..., min_length=1, max_length=255)
    branch: str = Field(..., min_length=1, max_length=255)
    whatsapp: str = Field(..., min_length=1, max_length=32)

    @field_validator("whatsapp")
    @classmethod
    def _normalize_whatsapp(cls, v: str) -> str:
        return normalize_whatsapp(v)


class ProfileUpdate(BaseSchema):
    """Partial profile update."""

    name: str | None = Field(None, min_length=1, max_length=255)
    age: int | None = Field(None, ge=18, le=99)
    school: str | None = Field(None, min_length=1, max_length=255)
    department: str | None = Field(None, min_length=1, max_length=255)
    branch: str | None = Field(None, min_length=1, max_length=255)
    whatsapp: str | None = Field(None, min_length=1, max_length=32)

    @field_validator("whatsapp")
    @classmethod
    def _normalize_whatsapp(cls, v: str | None) -> str | None:
        return normalize_whatsapp(v) if v is not None else None


class ProfileRead(BaseSchema):
    """The owner's full view of their profile."""

    id: UUID
    name: str
    age: int
    school: str
    department: str
    branch: str
    whatsapp: str
    avatar_url: str | None
    is_online: bool
    is_searching: bool
    created_at: datetime
    updated_at: datetime


class PartnerRead(BaseSchema):
    """
    The other participant as seen from inside a chat.

    Fields the current stage has not unlocked yet are None.
    """

    id: UUID
    name: str
    age: int
    avatar_url: str | None
    is_online: bool
    school: str | None = None
    department: str | None = None
    branch: str | None = None
    whatsapp: str | None = None
