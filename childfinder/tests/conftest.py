import pytest
from fastapi.testclient import TestClient

from support import FakeUpstream, build_app, build_settings


@pytest.fixture
def upstream():
    """Fake identity provider, token service and profile service"""
    return FakeUpstream()


@pytest.fixture
def make_client(upstream):
    """
    Factory for started TestClients over freshly built apps.

    Keyword arguments override the default test settings. Redirects are not
    followed so tests can inspect Location headers.
    """
    opened = []

    def factory(**overrides) -> TestClient:
        app = build_app(build_settings(**overrides), upstream)
        client = TestClient(app, follow_redirects=False)
        client.__enter__()
        opened.append(client)
        return client

    yield factory

    for client in opened:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()
