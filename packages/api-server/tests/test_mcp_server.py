"""Tests for IDLink MCP tools."""

from __future__ import annotations

from unittest.mock import Mock, patch

import pytest
from fastmcp.exceptions import ToolError
from idlink.contacts import (
    ConflictError,
    ConsistencyViolationError,
    ContactNotFoundError,
    IdentityResolver,
    InMemoryContactRepository,
)


@pytest.fixture
def resolver():
    """Resolver over a fresh in-memory repository, patched into the server."""
    resolver = IdentityResolver(InMemoryContactRepository())
    with patch("idlink_api.mcp_server.get_resolver", return_value=resolver):
        yield resolver


# =============================================================================
# identify_contact
# =============================================================================


def test_identify_contact_creates_primary(resolver):
    """Test the first sighting returns a new primary."""
    from idlink_api.mcp_server import mcp

    identify_contact = mcp._tool_manager._tools["identify_contact"].fn

    result = identify_contact(email="doc@hillvalley.edu", phone_number="88")

    assert result == {
        "contact": {
            "primaryContactId": 1,
            "emails": ["doc@hillvalley.edu"],
            "phoneNumbers": ["88"],
            "secondaryContactIds": [],
        }
    }


def test_identify_contact_links_secondary(resolver):
    """Test a new email on a known phone adds a secondary."""
    from idlink_api.mcp_server import mcp

    identify_contact = mcp._tool_manager._tools["identify_contact"].fn

    identify_contact(email="doc@hillvalley.edu", phone_number="88")
    result = identify_contact(email="emmett@hillvalley.edu", phone_number="88")

    assert result["contact"]["emails"] == ["doc@hillvalley.edu", "emmett@hillvalley.edu"]
    assert result["contact"]["secondaryContactIds"] == [2]


def test_identify_contact_requires_a_field(resolver):
    """Test missing email and phone raises ToolError before touching the store."""
    from idlink_api.mcp_server import mcp

    identify_contact = mcp._tool_manager._tools["identify_contact"].fn

    with pytest.raises(ToolError, match="At least email or phoneNumber is required"):
        identify_contact()

    assert resolver.repository.all() == []


def test_identify_contact_rejects_bad_email(resolver):
    """Test malformed emails raise ToolError."""
    from idlink_api.mcp_server import mcp

    identify_contact = mcp._tool_manager._tools["identify_contact"].fn

    with pytest.raises(ToolError, match="Invalid input"):
        identify_contact(email="not-an-email")


def test_identify_contact_conflict():
    """Test concurrent modification is reported as retryable."""
    from idlink_api.mcp_server import mcp

    identify_contact = mcp._tool_manager._tools["identify_contact"].fn
    mock_resolver = Mock()
    mock_resolver.resolve.side_effect = ConflictError("stale link on contact 4")

    with patch("idlink_api.mcp_server.get_resolver", return_value=mock_resolver):
        with pytest.raises(ToolError, match="please retry"):
            identify_contact(email="doc@hillvalley.edu")


def test_identify_contact_hides_internal_errors():
    """Test consistency violations do not leak contact ids."""
    from idlink_api.mcp_server import mcp

    identify_contact = mcp._tool_manager._tools["identify_contact"].fn
    mock_resolver = Mock()
    mock_resolver.resolve.side_effect = ConsistencyViolationError(
        "Contact 2 links to missing contact 99", [2, 99]
    )

    with patch("idlink_api.mcp_server.get_resolver", return_value=mock_resolver):
        with pytest.raises(ToolError) as exc_info:
            identify_contact(email="doc@hillvalley.edu")

    assert "99" not in str(exc_info.value)


# =============================================================================
# get_contact_identity
# =============================================================================


def test_get_contact_identity(resolver):
    """Test lookup by a secondary returns the whole cluster."""
    from idlink_api.mcp_server import mcp

    identify_contact = mcp._tool_manager._tools["identify_contact"].fn
    get_contact_identity = mcp._tool_manager._tools["get_contact_identity"].fn

    identify_contact(email="doc@hillvalley.edu", phone_number="88")
    identify_contact(email="emmett@hillvalley.edu", phone_number="88")

    result = get_contact_identity(contact_id=2)

    assert result["contact"]["primaryContactId"] == 1
    assert result["contact"]["secondaryContactIds"] == [2]


def test_get_contact_identity_not_found(resolver):
    """Test unknown ids raise ToolError with the lookup message."""
    from idlink_api.mcp_server import mcp

    get_contact_identity = mcp._tool_manager._tools["get_contact_identity"].fn

    with pytest.raises(ToolError, match="Contact 7 not found"):
        get_contact_identity(contact_id=7)


def test_get_contact_identity_propagates_not_found_cause():
    """Test the original error is chained."""
    from idlink_api.mcp_server import mcp

    get_contact_identity = mcp._tool_manager._tools["get_contact_identity"].fn
    mock_resolver = Mock()
    error = ContactNotFoundError(3)
    mock_resolver.get_identity.side_effect = error

    with patch("idlink_api.mcp_server.get_resolver", return_value=mock_resolver):
        with pytest.raises(ToolError) as exc_info:
            get_contact_identity(contact_id=3)

    assert exc_info.value.__cause__ is error


# =============================================================================
# Resolver lifecycle
# =============================================================================


@patch("idlink_api.mcp_server.create_repository")
def test_get_resolver_opens_repository_once(mock_create_repository):
    """Test the repository is created and opened lazily, once."""
    from idlink_api import mcp_server

    repository = InMemoryContactRepository()
    mock_create_repository.return_value = repository

    try:
        first = mcp_server.get_resolver()
        second = mcp_server.get_resolver()

        assert first is second
        assert first.repository is repository
        assert repository.is_open
        mock_create_repository.assert_called_once_with()
    finally:
        mcp_server.shutdown()

    assert not repository.is_open
    assert mcp_server._resolver is None


def test_shutdown_without_resolver_is_noop():
    """Test shutdown before first use does nothing."""
    from idlink_api import mcp_server

    mcp_server.shutdown()

    assert mcp_server._repository is None
