"""
IDLink API - FastAPI application.

Routes:
- POST /identify: resolve an email/phone observation into a consolidated identity
- GET /contacts/{contact_id}: consolidated identity of a stored contact
- GET /health: liveness probe

The application owns the repository lifecycle: it is opened on startup and
closed on shutdown. Internal repository errors are logged, never returned.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from idlink.contacts import (
    ConflictError,
    ConsistencyViolationError,
    ContactNotFoundError,
    ContactRepository,
    ContactResolutionError,
    IdentityResolver,
    InvalidInputError,
    RepositoryUnavailableError,
    create_repository,
)
from idlink_api import __version__
from idlink_api.schemas import IdentifyRequest
from idlink_api.settings import ApiSettings

logger = logging.getLogger(__name__)


def get_resolver(request: Request) -> IdentityResolver:
    """Return the resolver bound to the running application."""
    return request.app.state.resolver


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def register_exception_handlers(app: FastAPI) -> None:
    """Map resolution errors to HTTP responses."""

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [
            {
                "field": ".".join(str(part) for part in err["loc"][1:]) or None,
                "message": err["msg"],
            }
            for err in exc.errors()
        ]
        return _error(400, "Invalid request body", details=details)

    @app.exception_handler(InvalidInputError)
    async def handle_invalid_input(request: Request, exc: InvalidInputError) -> JSONResponse:
        return _error(400, str(exc))

    @app.exception_handler(ContactNotFoundError)
    async def handle_not_found(request: Request, exc: ContactNotFoundError) -> JSONResponse:
        return _error(404, str(exc))

    @app.exception_handler(ConflictError)
    async def handle_conflict(request: Request, exc: ConflictError) -> JSONResponse:
        logger.warning(f"Resolution conflict on {request.url.path}: {exc}")
        return _error(409, "Contact was modified concurrently, please retry")

    @app.exception_handler(ConsistencyViolationError)
    async def handle_consistency_violation(
        request: Request, exc: ConsistencyViolationError
    ) -> JSONResponse:
        logger.error(f"Inconsistent contact links {exc.contact_ids}: {exc}")
        return _error(500, "Stored contact data is inconsistent and needs repair")

    @app.exception_handler(RepositoryUnavailableError)
    async def handle_unavailable(request: Request, exc: RepositoryUnavailableError) -> JSONResponse:
        logger.error(f"Contact repository unavailable: {exc}")
        return _error(500, "Contact store is temporarily unavailable")

    @app.exception_handler(ContactResolutionError)
    async def handle_resolution_error(request: Request, exc: ContactResolutionError) -> JSONResponse:
        logger.exception(f"Identity resolution failed on {request.url.path}")
        return _error(500, "Internal server error")

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.url.path}")
        return _error(500, "Internal server error")


def create_app(
    repository: ContactRepository | None = None,
    settings: ApiSettings | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        repository: Contact repository to serve. Built from settings if None.
        settings: API settings. Loaded from the environment if None.

    Returns:
        Configured FastAPI application.
    """
    settings = settings or ApiSettings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        repo = repository if repository is not None else create_repository(settings.repository)
        repo.open()
        app.state.repository = repo
        app.state.resolver = IdentityResolver(repo)
        logger.info(f"IDLink API started with {type(repo).__name__}")
        try:
            yield
        finally:
            logger.info("Shutting down IDLink API")
            repo.close()

    app = FastAPI(
        title="IDLink API",
        description="Contact identity resolution across emails and phone numbers",
        version=__version__,
        lifespan=lifespan,
    )
    register_exception_handlers(app)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.post("/identify")
    def identify(
        body: IdentifyRequest,
        resolver: IdentityResolver = Depends(get_resolver),
    ) -> dict:
        identity = resolver.resolve(email=body.email, phone_number=body.phone_number)
        return {"contact": identity.to_dict()}

    @app.get("/contacts/{contact_id}")
    def get_contact(
        contact_id: int,
        resolver: IdentityResolver = Depends(get_resolver),
    ) -> dict:
        identity = resolver.get_identity(contact_id)
        return {"contact": identity.to_dict()}

    return app


def main() -> None:
    """Run the API server with uvicorn."""
    import uvicorn

    settings = ApiSettings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(settings=settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
