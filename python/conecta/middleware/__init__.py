"""HTTP middleware."""

from conecta.middleware.request_id import RequestIDMiddleware

__all__ = ["RequestIDMiddleware"]
