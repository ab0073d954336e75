"""
IDLink API - transport for contact identity resolution.

Exposes the identity resolver over:
- HTTP (FastAPI): POST /identify, GET /contacts/{id}, GET /health
- MCP (FastMCP): identify_contact and get_contact_identity tools

Usage:
    # Via CLI
    idlink-api
    idlink-mcp

    # Via Python
    from idlink_api.app import create_app
    app = create_app()
"""

__version__ = "0.1.0"
