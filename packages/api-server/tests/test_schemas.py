"""Tests for identify request validation."""

from __future__ import annotations

import pytest
from idlink_api.schemas import EMAIL_PATTERN, IdentifyRequest
from pydantic import ValidationError


class TestIdentifyRequest:
    """Tests for IdentifyRequest."""

    def test_accepts_camel_case_alias(self) -> None:
        """Test the wire name phoneNumber is accepted."""
        request = IdentifyRequest.model_validate({"email": "doc@hillvalley.edu", "phoneNumber": "123"})

        assert request.email == "doc@hillvalley.edu"
        assert request.phone_number == "123"

    def test_accepts_field_name(self) -> None:
        """Test the Python field name is accepted too."""
        assert IdentifyRequest(phone_number="123").phone_number == "123"

    def test_numeric_phone_number_coerced(self) -> None:
        """Test numeric phone numbers become their decimal string."""
        assert IdentifyRequest.model_validate({"phoneNumber": 717171}).phone_number == "717171"

    def test_whitespace_stripped(self) -> None:
        """Test surrounding whitespace is removed."""
        request = IdentifyRequest.model_validate({"email": "  doc@hillvalley.edu ", "phoneNumber": " 12 "})

        assert request.email == "doc@hillvalley.edu"
        assert request.phone_number == "12"

    def test_blank_field_treated_as_absent(self) -> None:
        """Test an empty string counts as not supplied."""
        request = IdentifyRequest.model_validate({"email": "", "phoneNumber": "12"})

        assert request.email is None

    def test_unknown_fields_ignored(self) -> None:
        """Test extra keys are dropped."""
        request = IdentifyRequest.model_validate({"email": "doc@hillvalley.edu", "name": "Doc"})

        assert not hasattr(request, "name")

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"email": None, "phoneNumber": None},
            {"email": " ", "phoneNumber": ""},
        ],
    )
    def test_requires_email_or_phone(self, payload) -> None:
        """Test at least one identifying field is required."""
        with pytest.raises(ValidationError, match="At least email or phoneNumber is required"):
            IdentifyRequest.model_validate(payload)

    @pytest.mark.parametrize(
        "payload",
        [
            {"email": "doc"},
            {"email": "doc@hillvalley"},
            {"email": 5},
            {"phoneNumber": False},
            {"phoneNumber": 1.5},
            {"phoneNumber": {"number": "1"}},
        ],
    )
    def test_rejects_malformed_fields(self, payload) -> None:
        """Test malformed values are rejected."""
        with pytest.raises(ValidationError):
            IdentifyRequest.model_validate(payload)


def test_email_pattern():
    """Test the email pattern on common addresses."""
    assert EMAIL_PATTERN.match("marty.mcfly+1985@hill-valley.edu")
    assert not EMAIL_PATTERN.match("marty@")
    assert not EMAIL_PATTERN.match("@hillvalley.edu")
