import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from app.deps.registry import get_registry_relay
from app.main import app
from app.packages.registry_proxy import RegistryRelay, RelayConfig, UpstreamClient
from app.packages.registry_proxy.tests.registry_test_utils import (
    AUTH_URL,
    PROXY_URL,
    REGISTRY_URL,
    SERVICE,
    RecordingUpstream,
)


@pytest.fixture
def upstream() -> RecordingUpstream:
    return RecordingUpstream()


@pytest.fixture
def relay_config() -> RelayConfig:
    return RelayConfig(
        registry_url=REGISTRY_URL,
        auth_url=AUTH_URL,
        service=SERVICE,
    )


@pytest.fixture
def relay(relay_config: RelayConfig, upstream: RecordingUpstream) -> RegistryRelay:
    return RegistryRelay(
        config=relay_config,
        upstream=UpstreamClient(transport=httpx.MockTransport(upstream)),
    )


@pytest.fixture
async def client(relay: RegistryRelay):
    """Client for the app with the relay pointed at the fake upstream."""
    app.dependency_overrides[get_registry_relay] = lambda: relay

    async with AsyncClient(transport=ASGITransport(app=app), base_url=PROXY_URL) as ac:
        yield ac

    app.dependency_overrides.clear()
