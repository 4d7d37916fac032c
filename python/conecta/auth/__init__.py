"""Authentication: bearer token verification and the request viewer.

Test-only verifiers are in tests/support/test_verifier.py.
"""

from conecta.auth.middleware import AuthMiddleware, Viewer, get_viewer
from conecta.auth.verifier import JwksTokenVerifier, TokenVerifier

__all__ = [
    "AuthMiddleware",
    "JwksTokenVerifier",
    "TokenVerifier",
    "Viewer",
    "get_viewer",
]
