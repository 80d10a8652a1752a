"""
Career Sewa API — HTTP Endpoint Tests
=======================================

What:  End-to-end tests through the FastAPI app: health endpoints, user
       routes, the error envelope, middleware and the lifespan.
How:   HTTPX AsyncClient over ASGITransport against an app wired to a real
       SQLite-backed DatabaseConnection.
"""

import uuid
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from career_sewa import config
from career_sewa.database import ConnectionState, DatabaseConnection
from career_sewa.main import create_app

ENVELOPE_KEYS = {"success", "statusCode", "message", "data", "timestamp"}

VALID_USER = {
    "fullname": "Sita Sharma",
    "email": "sita@example.com",
    "password": "namaste-123",
}


def client_for(app, raise_app_exceptions: bool = True) -> AsyncClient:
    transport = ASGITransport(app=app, raise_app_exceptions=raise_app_exceptions)
    return AsyncClient(transport=transport, base_url="http://test")


# ══════════════════════════════════════════════════════════════════════════
# Health endpoints
# ══════════════════════════════════════════════════════════════════════════


class TestHealthEndpoints:

    @pytest.mark.asyncio
    async def test_basic_health(self, test_client):
        response = await test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert set(body) == ENVELOPE_KEYS
        assert body["success"] is True
        assert body["statusCode"] == 200
        assert body["data"]["status"] == "OK"
        assert body["data"]["service"] == "career-sewa-api"
        assert body["data"]["environment"] == "test"

    @pytest.mark.asyncio
    async def test_detailed_health_turns_207_when_ping_fails(self, test_client, connected_database):
        healthy = await test_client.get("/health/detailed")

        assert healthy.status_code == 200
        data = healthy.json()["data"]
        assert data["status"] == "healthy"
        memory_status = data["checks"]["memory"]["status"]

        with patch.object(connected_database, "is_healthy", AsyncMock(return_value=False)):
            degraded = await test_client.get("/health/detailed")

        assert degraded.status_code == 207
        data = degraded.json()["data"]
        assert data["status"] == "unhealthy"
        assert data["checks"]["connection"]["status"] == "unhealthy"
        assert data["checks"]["memory"]["status"] == memory_status

    @pytest.mark.asyncio
    async def test_detailed_health_failure_is_500(self, app, test_client):
        with patch.object(
            app.state.health_service,
            "detailed_health",
            AsyncMock(side_effect=RuntimeError("classifier broke")),
        ):
            response = await test_client.get("/health/detailed")

        assert response.status_code == 500
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_liveness(self, test_client):
        response = await test_client.get("/health/liveness")

        assert response.status_code == 200
        assert response.json()["data"]["alive"] is True

    @pytest.mark.asyncio
    async def test_readiness_when_connected(self, test_client):
        response = await test_client.get("/health/readiness")

        assert response.status_code == 200
        assert response.json()["data"]["ready"] is True

    @pytest.mark.asyncio
    async def test_readiness_when_disconnected(self, test_settings, database):
        assert database.state is ConnectionState.DISCONNECTED
        app = create_app(test_settings, database)

        async with client_for(app) as client:
            response = await client.get("/health/readiness")

        assert response.status_code == 503
        body = response.json()
        assert body["success"] is False
        assert body["data"]["ready"] is False

    @pytest.mark.asyncio
    async def test_metrics(self, test_client):
        response = await test_client.get("/health/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "career_sewa_database_status 1" in response.text
        assert "career_sewa_database_ready_state 1" in response.text


# ══════════════════════════════════════════════════════════════════════════
# User routes
# ══════════════════════════════════════════════════════════════════════════


class TestUserRoutes:

    @pytest.mark.asyncio
    async def test_create_user(self, test_client):
        response = await test_client.post("/api/users", json=VALID_USER)

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["statusCode"] == 201
        assert body["data"]["email"] == "sita@example.com"
        assert "password" not in body["data"]
        assert "password_hash" not in body["data"]

    @pytest.mark.asyncio
    async def test_duplicate_email_is_409(self, test_client):
        await test_client.post("/api/users", json=VALID_USER)
        response = await test_client.post("/api/users", json=VALID_USER)

        assert response.status_code == 409
        body = response.json()
        assert body["success"] is False
        assert body["message"] == "Duplicate email: sita@example.com already exists"
        assert body["data"] is None

    @pytest.mark.asyncio
    async def test_invalid_body_is_422_with_all_messages(self, test_client):
        response = await test_client.post(
            "/api/users",
            json={"fullname": "S", "email": "sita@example.com", "password": "short"},
        )

        assert response.status_code == 422
        assert response.json()["message"] == (
            "Validation failed: Full name must be at least 2 characters long, "
            "Password must be at least 8 characters long"
        )

    @pytest.mark.asyncio
    async def test_missing_fields_are_named(self, test_client):
        response = await test_client.post(
            "/api/users", json={"email": "sita@example.com", "password": "namaste-123"}
        )
        assert response.status_code == 422
        assert response.json()["message"] == "Validation failed: Full name is required"

        response = await test_client.post("/api/users", json={})
        assert response.json()["message"] == (
            "Validation failed: Full name is required, Email is required, Password is required"
        )

    @pytest.mark.asyncio
    async def test_malformed_json_is_400(self, test_client):
        response = await test_client.post(
            "/api/users",
            content=b'{"fullname": ',
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid JSON payload"

    @pytest.mark.asyncio
    async def test_get_user_roundtrip(self, test_client):
        created = (await test_client.post("/api/users", json=VALID_USER)).json()["data"]

        response = await test_client.get(f"/api/users/{created['id']}")

        assert response.status_code == 200
        assert response.json()["data"]["fullname"] == "Sita Sharma"

    @pytest.mark.asyncio
    async def test_malformed_id_is_400(self, test_client):
        response = await test_client.get("/api/users/not-a-uuid")

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid id: not-a-uuid"

    @pytest.mark.asyncio
    async def test_unknown_id_is_404(self, test_client):
        response = await test_client.get(f"/api/users/{uuid.uuid4()}")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_list_users(self, test_client):
        await test_client.post("/api/users", json=VALID_USER)

        response = await test_client.get("/api/users")

        assert response.status_code == 200
        assert response.headers["X-Total-Count"] == "1"
        assert response.json()["data"]["total_count"] == 1

    @pytest.mark.asyncio
    async def test_store_down_is_503(self, test_settings, database):
        app = create_app(test_settings, database)

        async with client_for(app) as client:
            response = await client.get("/api/users")

        assert response.status_code == 503
        body = response.json()
        assert body["success"] is False
        assert body["message"] == "Internal server error"


# ══════════════════════════════════════════════════════════════════════════
# Error envelope and middleware
# ══════════════════════════════════════════════════════════════════════════


class TestErrorRendering:

    @pytest.mark.asyncio
    async def test_unknown_route(self, test_client):
        response = await test_client.get("/api/nowhere")

        assert response.status_code == 404
        body = response.json()
        assert set(body) == ENVELOPE_KEYS
        assert body["message"] == "Route /api/nowhere not found"

    @pytest.mark.asyncio
    async def test_method_not_allowed(self, test_client):
        response = await test_client.delete("/api/users")

        assert response.status_code == 405
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_unexpected_error_is_flattened_outside_development(self, app):
        async def explode():
            raise RuntimeError("kaboom")

        app.add_api_route("/explode", explode)

        async with client_for(app, raise_app_exceptions=False) as client:
            response = await client.get("/explode")

        assert response.status_code == 500
        body = response.json()
        assert body["message"] == "Internal server error"
        assert body["data"] is None

    @pytest.mark.asyncio
    async def test_development_includes_stack(self, test_settings, connected_database):
        settings = test_settings.model_copy(update={"environment": "development"})
        app = create_app(settings, connected_database)

        async def explode():
            raise RuntimeError("kaboom")

        app.add_api_route("/explode", explode)

        async with client_for(app, raise_app_exceptions=False) as client:
            response = await client.get("/explode")

        body = response.json()
        assert response.status_code == 500
        assert body["message"] == "kaboom"
        assert body["data"]["statusCode"] == 500
        assert body["data"]["isOperational"] is False
        assert "RuntimeError: kaboom" in body["data"]["stack"]


class TestMiddleware:

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, test_client):
        response = await test_client.get("/api/users", headers={"X-Request-ID": "abc12345"})
        assert response.headers["X-Request-ID"] == "abc12345"

    @pytest.mark.asyncio
    async def test_request_id_is_generated(self, test_client):
        response = await test_client.get("/health")
        assert len(response.headers["X-Request-ID"]) == 8

    @pytest.mark.asyncio
    async def test_rate_limit(self, test_settings, connected_database):
        settings = test_settings.model_copy(update={"rate_limit_requests": 2})
        app = create_app(settings, connected_database)

        async with client_for(app) as client:
            statuses = [(await client.get("/api/users")).status_code for _ in range(3)]
            limited = await client.get("/api/users")
            health = await client.get("/health")

        assert statuses == [200, 200, 429]
        assert limited.status_code == 429
        assert int(limited.headers["Retry-After"]) > 0
        assert limited.json()["statusCode"] == 429
        assert health.status_code == 200


class TestLifespan:

    @pytest.mark.asyncio
    async def test_connects_on_startup_and_disconnects_on_shutdown(self, test_settings):
        database = DatabaseConnection(test_settings)
        app = create_app(test_settings, database)

        async with app.router.lifespan_context(app):
            assert database.state is ConnectionState.CONNECTED
            async with client_for(app) as client:
                response = await client.get("/health/readiness")
            assert response.status_code == 200

        assert database.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_production_rejects_development_secrets(self, test_settings):
        settings = test_settings.model_copy(update={"environment": "production"})
        database = DatabaseConnection(settings)
        app = create_app(settings, database)

        with pytest.raises(ValueError, match="JWT_SECRET"):
            async with app.router.lifespan_context(app):
                pass

        assert database.state is ConnectionState.DISCONNECTED

    def test_defaults_to_process_settings(self):
        app = create_app()
        assert app.state.settings is config.settings
