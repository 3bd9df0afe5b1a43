import pytest
from httpx import ASGITransport, AsyncClient

from gatekeeper.api.main import create_app
from gatekeeper.config import Settings
from gatekeeper.services.metrics import metrics
from gatekeeper.services.rate_limiter import DualWindowRateLimiter
from gatekeeper.services.window_store import LimiterConfig

T0 = 1_700_000_000_000


class FakeClock:
    """Millisecond clock the tests move by hand."""

    def __init__(self, start: int = T0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return DualWindowRateLimiter(LimiterConfig(), clock=clock)


@pytest.fixture
def app_settings():
    return Settings(_env_file=None)


@pytest.fixture
def app(app_settings, limiter):
    return create_app(app_settings, limiter)


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()
