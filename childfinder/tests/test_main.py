"""
Application Tests

Tests the app factory wiring: public routes, lifespan cleanup, CORS and the
exception handlers.
"""

from fastapi import status
from fastapi.testclient import TestClient

from childfinder import __version__
from childfinder.errors import DirectoryError
from support import PROFILE_SERVICE_URL, FakeUpstream, build_app, build_settings, sign_in


class FailingDirectory:
    async def find_by_subject_id(self, subject_id):
        raise DirectoryError("directory offline")

    async def find_or_register(self, profile):
        raise DirectoryError("directory offline")


class TestPublicRoutes:
    """Tests for / and /health"""

    def test_health_check(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "service": "childfinder",
            "version": __version__,
            "session_store": "transient",
        }

    def test_index_anonymous(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json() == {"authenticated": False, "user": None}

    def test_index_authenticated_lists_profiles(self, client, upstream):
        upstream.json("GET", f"{PROFILE_SERVICE_URL}/api/profiles", [{"id": "7"}])
        sign_in(client, oid="abc123", email="ada@example.com")

        body = client.get("/").json()

        assert body["authenticated"] is True
        assert body["user"]["subject_id"] == "abc123"
        assert body["user"]["email"] == "ada@example.com"
        assert body["profiles"] == [{"id": "7"}]


class TestApplicationWiring:
    """Tests for create_app"""

    def test_collaborators_on_app_state(self, client):
        state = client.app.state

        for name in ("settings", "http_client", "directory", "session_store",
                     "identity_provider", "token_verifier", "profile_client"):
            assert getattr(state, name, None) is not None

    def test_shutdown_closes_http_client(self):
        app = build_app(build_settings(), FakeUpstream())

        with TestClient(app):
            assert not app.state.http_client.is_closed

        assert app.state.http_client.is_closed

    def test_cors_enabled_for_configured_origins(self, make_client):
        client = make_client(ALLOWED_ORIGINS="https://frontend.test")

        response = client.options(
            "/health",
            headers={"Origin": "https://frontend.test", "Access-Control-Request-Method": "GET"},
        )

        assert response.headers["access-control-allow-origin"] == "https://frontend.test"

    def test_cors_disabled_by_default(self, client):
        response = client.get("/health", headers={"Origin": "https://frontend.test"})

        assert "access-control-allow-origin" not in response.headers


class TestExceptionHandlers:
    """Tests for storage failure handling"""

    def test_directory_failure_during_access_check_is_503(self, client):
        sign_in(client)
        client.app.state.directory = FailingDirectory()

        response = client.get("/api/profiles")

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.json()["error"] == "directory_unavailable"

    def test_directory_failure_during_callback_redirects_to_failure(self, client):
        client.app.state.directory = FailingDirectory()

        response = sign_in(client)

        assert response.status_code == status.HTTP_302_FOUND
        assert response.headers["location"] == client.app.state.settings.FAILURE_REDIRECT_URL
