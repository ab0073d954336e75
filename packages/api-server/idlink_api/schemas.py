"""Request and response shapes for the identify endpoint."""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Email validation pattern
# Matches: local-part@domain.tld
# - Local part: alphanumeric, dots, underscores, percent, plus, hyphen
# - Domain: alphanumeric and dots, must end with TLD of at least 2 chars
EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


class IdentifyRequest(BaseModel):
    """Body of ``POST /identify``.

    Clients post phone numbers as strings or bare numbers; both are accepted
    and stored as strings.

    Example:
        >>> IdentifyRequest.model_validate({"phoneNumber": 123456}).phone_number
        '123456'
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    email: str | None = None
    phone_number: str | None = Field(default=None, alias="phoneNumber")

    @field_validator("email", mode="before")
    @classmethod
    def validate_email(cls, value: Any) -> str | None:
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError("email must be a string")
        value = value.strip()
        if not value:
            return None
        if not EMAIL_PATTERN.match(value):
            raise ValueError("email must be a valid email address")
        return value

    @field_validator("phone_number", mode="before")
    @classmethod
    def validate_phone_number(cls, value: Any) -> str | None:
        if value is None:
            return None
        # bool is an int subclass
        if isinstance(value, bool) or not isinstance(value, str | int):
            raise ValueError("phoneNumber must be a string or a number")
        value = str(value).strip()
        return value or None

    @model_validator(mode="after")
    def require_identity_field(self) -> IdentifyRequest:
        if self.email is None and self.phone_number is None:
            raise ValueError("At least email or phoneNumber is required")
        return self
