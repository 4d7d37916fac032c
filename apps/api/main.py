"""Thin API launcher.

This is the uvicorn entrypoint. All application logic lives in the conecta package.
Run with: uvicorn main:app --reload

The app instance is created here (not in conecta.app) so tests can import
create_app without every environment variable configured.
"""

from conecta.app import add_request_id_middleware, create_app

app = create_app()
# Added last so it runs first (outermost)
add_request_id_middleware(app)

__all__ = ["app"]
