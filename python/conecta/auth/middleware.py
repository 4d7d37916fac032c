"""Authentication middleware and viewer dependency.

AuthMiddleware runs on every non-public path. It checks the internal
header (staging/prod), verifies the bearer token, makes sure the viewer
has a users row, and attaches a Viewer to request.state.
"""

import hmac
from collections.abc import Callable
from dataclasses import dataclass
from uuid import UUID

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from conecta.auth.verifier import TokenVerifier, validate_subject
from conecta.errors import ApiError, ApiErrorCode
from conecta.logging import get_logger, set_user_id
from conecta.responses import error_response

logger = get_logger(__name__)

AUTHORIZATION_HEADER = "authorization"
INTERNAL_HEADER = "x-conecta-internal"

PUBLIC_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}


@dataclass(frozen=True)
class Viewer:
    """The authenticated user on whose behalf a request runs."""

    user_id: UUID


def _json_error(code: ApiErrorCode, message: str, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error_response(code, message))


class AuthMiddleware(BaseHTTPMiddleware):
    """Bearer token authentication for all non-public paths.

    Order of checks:
    1. Skip public paths
    2. Internal header (when required)
    3. Bearer token extraction
    4. Token verification
    5. User bootstrap callback
    6. Attach Viewer to request state
    """

    def __init__(
        self,
        app: ASGIApp,
        verifier: TokenVerifier,
        requires_internal_header: bool = False,
        internal_secret: str | None = None,
        bootstrap_callback: Callable[[UUID], None] | None = None,
    ):
        super().__init__(app)
        self.verifier = verifier
        self.requires_internal_header = requires_internal_header
        self.internal_secret = internal_secret
        self.bootstrap_callback = bootstrap_callback

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        if self.requires_internal_header:
            rejection = self._check_internal_header(request)
            if rejection is not None:
                return rejection

        token = self._extract_bearer_token(request)
        if token is None:
            return _json_error(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required", 401)

        try:
            payload = self.verifier.verify(token)
            user_id = validate_subject(payload)
        except ApiError as e:
            return _json_error(e.code, e.message, e.status_code)

        if self.bootstrap_callback is not None:
            try:
                self.bootstrap_callback(user_id)
            except Exception:
                logger.exception("user_bootstrap_failed", user_id=str(user_id))
                return _json_error(ApiErrorCode.E_INTERNAL, "Internal server error", 500)

        request.state.viewer = Viewer(user_id=user_id)
        set_user_id(str(user_id))

        return await call_next(request)

    def _check_internal_header(self, request: Request) -> JSONResponse | None:
        header_value = request.headers.get(INTERNAL_HEADER)
        if header_value is None:
            logger.warning("auth_failure", reason="internal_header_missing")
            return _json_error(ApiErrorCode.E_INTERNAL_ONLY, "Internal API access required", 403)

        if not self.internal_secret:
            logger.error("internal_secret_not_configured")
            return _json_error(ApiErrorCode.E_INTERNAL, "Internal server error", 500)

        if not hmac.compare_digest(header_value.encode(), self.internal_secret.encode()):
            logger.warning("auth_failure", reason="internal_header_mismatch")
            return _json_error(ApiErrorCode.E_INTERNAL_ONLY, "Internal API access required", 403)

        return None

    def _extract_bearer_token(self, request: Request) -> str | None:
        auth_header = request.headers.get(AUTHORIZATION_HEADER)
        if not auth_header:
            logger.warning("auth_failure", reason="missing_header")
            return None

        scheme, _, token = auth_header.partition(" ")
        token = token.strip()
        if scheme.lower() != "bearer" or not token:
            logger.warning("auth_failure", reason="invalid_header_format")
            return None

        return token


def get_viewer(request: Request) -> Viewer:
    """FastAPI dependency returning the authenticated viewer.

    Raises:
        ApiError(E_UNAUTHENTICATED): The middleware did not attach a viewer.
    """
    viewer = getattr(request.state, "viewer", None)
    if viewer is None:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required")
    return viewer
