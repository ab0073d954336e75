"""
IDLink MCP Server.

Exposes contact identity resolution as MCP tools so agents can look up
and consolidate customer contacts.
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from pydantic import ValidationError

from idlink.contacts import (
    ConflictError,
    ContactNotFoundError,
    ContactRepository,
    ContactResolutionError,
    IdentityResolver,
    InvalidInputError,
    create_repository,
)
from idlink_api.schemas import IdentifyRequest

logger = logging.getLogger(__name__)

# Initialize server
mcp = FastMCP("IDLink Identity Resolution")

_repository: ContactRepository | None = None
_resolver: IdentityResolver | None = None


def get_resolver() -> IdentityResolver:
    """Lazily open the configured repository and build a resolver."""
    global _repository, _resolver
    if _resolver is None:
        _repository = create_repository()
        _repository.open()
        _resolver = IdentityResolver(_repository)
    return _resolver


def shutdown() -> None:
    """Close the repository opened by get_resolver()."""
    global _repository, _resolver
    if _repository is not None:
        _repository.close()
    _repository = None
    _resolver = None


def _tool_error(exc: ContactResolutionError) -> ToolError:
    if isinstance(exc, InvalidInputError | ContactNotFoundError):
        return ToolError(str(exc))
    if isinstance(exc, ConflictError):
        return ToolError("Contact was modified concurrently, please retry")
    logger.error(f"Identity resolution failed: {exc}")
    return ToolError("Identity resolution failed; see server logs")


# =============================================================================
# Identity Tools
# =============================================================================


@mcp.tool()
def identify_contact(
    email: str | None = None,
    phone_number: str | None = None,
) -> dict:
    """
    Resolve an email and/or phone number into a consolidated contact identity.

    Links the observation to any known contacts sharing the email or phone
    number, merging clusters when the observation bridges two of them.

    Args:
        email: Email address (optional)
        phone_number: Phone number (optional)

    Returns:
        {"contact": {primaryContactId, emails, phoneNumbers, secondaryContactIds}}
    """
    try:
        request = IdentifyRequest(email=email, phone_number=phone_number)
    except ValidationError as e:
        raise ToolError(f"Invalid input: {e.errors()[0]['msg']}") from e

    try:
        identity = get_resolver().resolve(
            email=request.email,
            phone_number=request.phone_number,
        )
    except ContactResolutionError as e:
        raise _tool_error(e) from e
    return {"contact": identity.to_dict()}


@mcp.tool()
def get_contact_identity(contact_id: int) -> dict:
    """
    Get the consolidated identity of the cluster containing a contact.

    Args:
        contact_id: Id of any contact in the cluster

    Returns:
        {"contact": {primaryContactId, emails, phoneNumbers, secondaryContactIds}}
    """
    try:
        identity = get_resolver().get_identity(contact_id)
    except ContactResolutionError as e:
        raise _tool_error(e) from e
    return {"contact": identity.to_dict()}


# =============================================================================
# Entry Point
# =============================================================================


def main():
    """Run the MCP server."""
    try:
        mcp.run()
    finally:
        shutdown()


if __name__ == "__main__":
    main()
