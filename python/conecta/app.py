"""FastAPI application creation and configuration.

Registers exception handlers, auth middleware, request-id middleware, and
routes.

Middleware Ordering:
- Middleware runs in reverse order of registration
- RequestIDMiddleware is added LAST (add_request_id_middleware) so it runs
  FIRST and every response, auth failures included, gets X-Request-ID

Execution order per request:
1. RequestIDMiddleware (sets request_id, starts timer)
2. AuthMiddleware (verifies token, bootstraps user, sets viewer)
3. Route handler
4. RequestIDMiddleware (logs http_request, sets response header)
"""

from uuid import UUID

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from conecta.api.routes import create_api_router
from conecta.auth.middleware import AuthMiddleware
from conecta.auth.verifier import JwksTokenVerifier, TokenVerifier
from conecta.config import get_settings
from conecta.db.session import get_session_factory
from conecta.errors import ApiError, ApiErrorCode
from conecta.logging import configure_logging, get_logger
from conecta.middleware.request_id import RequestIDMiddleware
from conecta.responses import (
    api_error_handler,
    error_response,
    http_exception_handler,
    unhandled_exception_handler,
)
from conecta.services.bootstrap import ensure_user

logger = get_logger(__name__)


def create_bootstrap_callback():
    """Create the auth bootstrap callback.

    Each call opens its own session, ensures the users row, and closes it.
    """
    session_factory = get_session_factory()

    def bootstrap(user_id: UUID) -> None:
        db = session_factory()
        try:
            ensure_user(db, user_id)
        finally:
            db.close()

    return bootstrap


def create_token_verifier() -> JwksTokenVerifier:
    """Create the JWKS-backed verifier from settings."""
    settings = get_settings()

    return JwksTokenVerifier(
        jwks_url=settings.auth_jwks_url,  # type: ignore[arg-type]
        issuer=settings.normalized_issuer,  # type: ignore[arg-type]
        audiences=settings.audience_list,
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Request validation errors (including malformed JSON) become 400 E_INVALID_REQUEST."""
    return JSONResponse(
        status_code=400,
        content=error_response(ApiErrorCode.E_INVALID_REQUEST, "Invalid request"),
    )


def create_app(
    skip_auth_middleware: bool = False,
    token_verifier: TokenVerifier | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        skip_auth_middleware: If True, skip adding auth middleware (for testing).
        token_verifier: Optional custom token verifier (for testing).
    """
    settings = get_settings()
    configure_logging(json_format=settings.log_json)

    app = FastAPI(
        title="Conecta API",
        description="Connections and direct messaging for the Conecta entrepreneur network",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(create_api_router())

    if not skip_auth_middleware:
        app.add_middleware(
            AuthMiddleware,
            verifier=token_verifier or create_token_verifier(),
            requires_internal_header=settings.requires_internal_header,
            internal_secret=settings.conecta_internal_secret,
            bootstrap_callback=create_bootstrap_callback(),
        )

        logger.info(
            "auth_middleware_enabled",
            env=settings.conecta_env.value,
            internal_header_required=settings.requires_internal_header,
        )

    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Add request-id middleware. Call after all other middleware so it runs first."""
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
    logger.info("request_id_middleware_enabled")
