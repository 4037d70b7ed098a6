"""Unit tests for gatehouse.api.app application factory.

Usage
-----
Run with pytest::

    pytest tests/unit/test_api_app.py

"""

from __future__ import annotations

from unittest import mock

import falcon.asgi
import falcon.testing
import pytest

from gatehouse.api.app import AppDependencies, create_app


@pytest.fixture
def deps() -> AppDependencies:
    """Build AppDependencies around a mock pipeline."""
    return AppDependencies(pipeline=mock.MagicMock())


@pytest.fixture
def health_client() -> falcon.testing.TestClient:
    """Build a test client for health-only mode."""
    return falcon.testing.TestClient(create_app())


@pytest.fixture
def full_client(deps: AppDependencies) -> falcon.testing.TestClient:
    """Build a test client with the pipeline routes registered."""
    return falcon.testing.TestClient(create_app(deps))


class TestCreateAppHealthOnly:
    """Tests for create_app() without a pipeline."""

    def test_returns_falcon_app(self) -> None:
        """Create_app() returns a Falcon ASGI App."""
        app = create_app()
        assert isinstance(app, falcon.asgi.App), "expected Falcon ASGI App"

    def test_has_health_route(self, health_client: falcon.testing.TestClient) -> None:
        """Health-only app responds to /health."""
        result = health_client.simulate_get("/health")
        assert result.status == falcon.HTTP_200, "expected HTTP 200 from /health"
        assert result.json == {"status": "ok"}, "wrong /health body"

    def test_has_ready_route(self, health_client: falcon.testing.TestClient) -> None:
        """Health-only app responds to /ready."""
        result = health_client.simulate_get("/ready")
        assert result.status == falcon.HTTP_200, "expected HTTP 200 from /ready"
        assert result.json == {"status": "ready"}, "wrong /ready body"

    @pytest.mark.parametrize("path", ["/v1/events", "/v1/dead-letters"])
    def test_pipeline_routes_not_registered(
        self, health_client: falcon.testing.TestClient, path: str
    ) -> None:
        """Without a pipeline, ingestion and admin routes return 404."""
        result = health_client.simulate_get(path)
        assert result.status == falcon.HTTP_404, "expected HTTP 404"


class TestCreateAppWithPipeline:
    """Tests for create_app() with a pipeline."""

    def test_has_health_route(self, full_client: falcon.testing.TestClient) -> None:
        """Full app still responds to /health."""
        result = full_client.simulate_get("/health")
        assert result.status == falcon.HTTP_200, "expected HTTP 200 from /health"

    @pytest.mark.parametrize(
        "path",
        [
            "/v1/events",
            "/v1/events/batch",
            "/v1/dead-letters/abc/retry",
        ],
    )
    def test_post_only_routes_registered(
        self, full_client: falcon.testing.TestClient, path: str
    ) -> None:
        """POST-only routes answer GET with 405 rather than 404."""
        result = full_client.simulate_get(path)
        assert result.status == falcon.HTTP_405, "route should be registered"


class TestReadiness:
    """Tests for the readiness probe."""

    def test_ready_is_503_while_probe_fails(self) -> None:
        """/ready withholds traffic until dependencies are up."""
        state = {"up": False}
        client = falcon.testing.TestClient(
            create_app(AppDependencies(readiness_probe=lambda: state["up"]))
        )

        starting = client.simulate_get("/ready")
        state["up"] = True
        ready = client.simulate_get("/ready")

        assert starting.status == falcon.HTTP_503, "expected HTTP 503 while starting"
        assert starting.json == {"status": "starting"}, "wrong starting body"
        assert ready.status == falcon.HTTP_200, "expected HTTP 200 once ready"

    def test_health_ignores_probe(self) -> None:
        """Liveness never depends on the readiness probe."""
        client = falcon.testing.TestClient(
            create_app(AppDependencies(readiness_probe=lambda: False))
        )

        result = client.simulate_get("/health")

        assert result.status == falcon.HTTP_200, "expected HTTP 200 from /health"
