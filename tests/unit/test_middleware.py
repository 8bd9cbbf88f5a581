"""Tests for CORS and request logging middleware."""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from location_api.api.middleware import RequestLoggingMiddleware, setup_cors
from location_api.core.config import Settings


def _create_test_app() -> FastAPI:
    """Create a minimal FastAPI app for middleware testing."""
    app = FastAPI()

    @app.get("/test")
    async def test_route() -> dict:
        return {"ok": True}

    return app


class TestRequestLoggingMiddleware:
    def test_response_time_header(self) -> None:
        app = _create_test_app()
        app.add_middleware(RequestLoggingMiddleware)

        response = TestClient(app).get("/test")

        assert response.status_code == 200
        assert float(response.headers["X-Response-Time-Ms"]) >= 0

    def test_header_on_404(self) -> None:
        app = _create_test_app()
        app.add_middleware(RequestLoggingMiddleware)

        response = TestClient(app).get("/missing")

        assert response.status_code == 404
        assert "X-Response-Time-Ms" in response.headers


class TestCors:
    def _client(self, settings: Settings) -> TestClient:
        app = _create_test_app()
        setup_cors(app, settings)
        return TestClient(app)

    def test_configured_origin_allowed(self, settings: Settings) -> None:
        client = self._client(settings.model_copy(update={"cors_origins": "https://maps.example.com"}))

        response = client.get("/test", headers={"Origin": "https://maps.example.com"})

        assert response.headers["access-control-allow-origin"] == "https://maps.example.com"

    def test_unlisted_origin_not_echoed(self, settings: Settings) -> None:
        client = self._client(settings.model_copy(update={"cors_origins": "https://maps.example.com"}))

        response = client.get("/test", headers={"Origin": "https://evil.example.org"})

        assert "access-control-allow-origin" not in response.headers

    def test_origin_regex(self, settings: Settings) -> None:
        client = self._client(settings.model_copy(update={"cors_origin_regex": r"https://.*\.example\.com"}))

        response = client.get("/test", headers={"Origin": "https://staging.example.com"})

        assert response.headers["access-control-allow-origin"] == "https://staging.example.com"

    def test_preflight(self, settings: Settings) -> None:
        client = self._client(settings.model_copy(update={"cors_origins": "https://maps.example.com"}))

        response = client.options(
            "/test",
            headers={"Origin": "https://maps.example.com", "Access-Control-Request-Method": "PATCH"},
        )

        assert response.status_code == 200
        assert "PATCH" in response.headers["access-control-allow-methods"]
