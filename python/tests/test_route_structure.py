"""Structural tests for route modules.

Routes are transport-only: they parse the request, call one service
function and wrap the result. These checks keep SQL and session handling
out of conecta/api/routes.
"""

import ast
from pathlib import Path

import pytest

ROUTES_DIR = Path(__file__).parent.parent / "conecta" / "api" / "routes"

ALLOWED_IMPORT_PREFIXES = (
    "fastapi",
    "typing",
    "uuid",
    "sqlalchemy.orm",
    "conecta.api.deps",
    "conecta.auth.middleware",
    "conecta.responses",
    "conecta.errors",
    "conecta.schemas",
    "conecta.services",
)

DB_METHODS = {"execute", "scalar", "scalars", "query", "commit", "rollback", "add"}


def _route_files() -> list[Path]:
    return sorted(p for p in ROUTES_DIR.glob("*.py") if p.name != "__init__.py")


def _parse(path: Path) -> ast.Module:
    return ast.parse(path.read_text(), filename=str(path))


@pytest.fixture(params=_route_files(), ids=lambda p: p.name)
def route_file(request) -> Path:
    return request.param


def test_route_modules_exist():
    names = {p.name for p in _route_files()}
    assert {"connections.py", "messages.py", "notifications.py"} <= names


def test_imports_are_allowed(route_file: Path):
    for node in ast.walk(_parse(route_file)):
        if isinstance(node, ast.Import):
            modules = [alias.name for alias in node.names]
        elif isinstance(node, ast.ImportFrom) and node.module:
            modules = [node.module]
        else:
            continue

        for module in modules:
            assert module.startswith(ALLOWED_IMPORT_PREFIXES), (
                f"{route_file.name}: import of '{module}' is not allowed in a route module"
            )


def test_only_session_from_sqlalchemy(route_file: Path):
    for node in ast.walk(_parse(route_file)):
        if isinstance(node, ast.ImportFrom) and node.module == "sqlalchemy.orm":
            assert [alias.name for alias in node.names] == ["Session"], route_file.name


def test_no_database_calls(route_file: Path):
    for node in ast.walk(_parse(route_file)):
        if (
            isinstance(node, ast.Call)
            and isinstance(node.func, ast.Attribute)
            and isinstance(node.func.value, ast.Name)
            and node.func.value.id in ("db", "session")
        ):
            assert node.func.attr not in DB_METHODS, (
                f"{route_file.name}: '{node.func.value.id}.{node.func.attr}()' belongs in a service"
            )


def test_defines_router(route_file: Path):
    targets = [
        target.id
        for node in ast.walk(_parse(route_file))
        if isinstance(node, ast.Assign)
        for target in node.targets
        if isinstance(target, ast.Name)
    ]
    assert "router" in targets, f"{route_file.name} must define 'router'"
