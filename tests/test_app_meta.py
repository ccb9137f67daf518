import sys

from fastapi.middleware.cors import CORSMiddleware
from fastapi.testclient import TestClient

from autoyield.main import app
from autoyield.routes.rpc import RelayAwareCORSMiddleware


def test_openapi_metadata() -> None:
    client = TestClient(app)
    response = client.get("/openapi.json")
    assert response.status_code == 200
    payload = response.json()
    assert payload["info"]["title"] == "AutoYield Vault API"
    assert payload["info"]["version"] == "0.1.0"
    assert "/api/vault/deposit" in payload["paths"]
    assert "/api/rpc" in payload["paths"]
    assert "/api/vault/overview/latest" in payload["paths"]


def test_cors_middleware_configured() -> None:
    middleware_classes = [m.cls for m in app.user_middleware]
    assert RelayAwareCORSMiddleware in middleware_classes
    assert issubclass(RelayAwareCORSMiddleware, CORSMiddleware)


def test_lifespan_attaches_poller() -> None:
    with TestClient(app) as client:
        assert client.get("/health/live").status_code == 200
        poller = app.state.overview_poller
        assert poller.enabled is False


def test_plain_subpackages_have_no_init() -> None:
    import autoyield.models.schemas  # noqa: F401
    import autoyield.routes.vault  # noqa: F401
    import autoyield.services.overview_poller  # noqa: F401

    for name in ("autoyield.models", "autoyield.routes", "autoyield.services"):
        assert getattr(sys.modules[name], "__file__", None) is None
