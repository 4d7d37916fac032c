"""Bearer token verification.

The identity provider issues the JWTs; this service only verifies them
against the provider's published JWKS. Test-only verifiers live in
tests/support/test_verifier.py.
"""

import threading
from typing import Any, Protocol
from uuid import UUID

import jwt
from jwt import PyJWKClient
from jwt.exceptions import (
    DecodeError,
    ExpiredSignatureError,
    InvalidAudienceError,
    InvalidIssuerError,
    InvalidSignatureError,
    InvalidTokenError,
    PyJWKClientError,
)

from conecta.errors import ApiError, ApiErrorCode
from conecta.logging import get_logger

logger = get_logger(__name__)

CLOCK_SKEW_SECONDS = 60
ALLOWED_ALGORITHMS = ["RS256", "ES256"]


class TokenVerifier(Protocol):
    """Verifies a bearer token and returns its claims.

    Raises ApiError(E_UNAUTHENTICATED) for bad tokens and
    ApiError(E_AUTH_UNAVAILABLE) when the key source cannot be reached.
    """

    def verify(self, token: str) -> dict[str, Any]: ...


def _unauthenticated(reason: str, message: str) -> ApiError:
    logger.warning("auth_failure", reason=reason)
    return ApiError(ApiErrorCode.E_UNAUTHENTICATED, message)


class JwksTokenVerifier:
    """Token verifier backed by the identity provider's JWKS endpoint.

    Checks the signature (RS256 or ES256), exp with a 60s skew allowance,
    the issuer, the audience list, and that sub is a UUID.
    """

    def __init__(
        self,
        jwks_url: str,
        issuer: str,
        audiences: list[str],
        cache_ttl: int = 3600,
    ):
        self.jwks_url = jwks_url
        self.issuer = issuer.rstrip("/")
        self.audiences = audiences
        self.cache_ttl = cache_ttl

        self._jwks_client: PyJWKClient | None = None
        self._jwks_lock = threading.Lock()

    def _new_client(self) -> PyJWKClient:
        return PyJWKClient(self.jwks_url, cache_keys=True, lifespan=self.cache_ttl)

    def _get_jwks_client(self, refresh: bool = False) -> PyJWKClient:
        with self._jwks_lock:
            if self._jwks_client is None or refresh:
                self._jwks_client = self._new_client()
            return self._jwks_client

    def _get_signing_key(self, token: str) -> Any:
        """Resolve the signing key, refreshing the key set once on a kid miss."""
        try:
            return self._get_jwks_client().get_signing_key_from_jwt(token)
        except PyJWKClientError as e:
            if "Unable to find" not in str(e) and "kid" not in str(e).lower():
                raise
            logger.info("jwks_refresh", reason="kid_miss")

        try:
            return self._get_jwks_client(refresh=True).get_signing_key_from_jwt(token)
        except PyJWKClientError as e:
            raise _unauthenticated("kid_not_found", "Invalid token: signing key not found") from e

    def verify(self, token: str) -> dict[str, Any]:
        try:
            signing_key = self._get_signing_key(token)
        except PyJWKClientError as e:
            logger.warning("auth_failure", reason="jwks_unavailable", error=str(e))
            raise ApiError(
                ApiErrorCode.E_AUTH_UNAVAILABLE,
                "Authentication service unavailable",
            ) from e

        try:
            payload = jwt.decode(
                token,
                signing_key.key,
                algorithms=ALLOWED_ALGORITHMS,
                audience=self.audiences,
                issuer=self.issuer,
                leeway=CLOCK_SKEW_SECONDS,
                options={"require": ["exp", "iss", "sub"], "verify_aud": True},
            )
        except ExpiredSignatureError as e:
            raise _unauthenticated("expired_token", "Token expired") from e
        except InvalidSignatureError as e:
            raise _unauthenticated("invalid_signature", "Invalid token signature") from e
        except InvalidIssuerError as e:
            raise _unauthenticated("invalid_issuer", "Invalid token issuer") from e
        except InvalidAudienceError as e:
            raise _unauthenticated("invalid_audience", "Invalid token audience") from e
        except DecodeError as e:
            raise _unauthenticated("decode_error", "Invalid token format") from e
        except InvalidTokenError as e:
            raise _unauthenticated("invalid_token", "Invalid token") from e

        validate_subject(payload)
        return payload


def validate_subject(payload: dict[str, Any]) -> UUID:
    """Return the sub claim as a UUID, or raise E_UNAUTHENTICATED."""
    sub = payload.get("sub")
    if not sub:
        raise _unauthenticated("missing_sub", "Invalid token: missing sub")
    try:
        return UUID(str(sub))
    except ValueError as e:
        raise _unauthenticated("invalid_sub", "Invalid token: sub is not a valid UUID") from e
