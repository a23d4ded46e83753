import pytest
from httpx import ASGITransport, AsyncClient

from prospec.api.routes.pricing import _pricing_runs, _run_tasks
from prospec.main import app


@pytest.fixture(autouse=True)
def reset_server_state():
    """Fresh rate-limit store and no pricing runs for every test."""
    app.state.rate_limiter.store.clear()
    _pricing_runs.clear()
    _run_tasks.clear()
    yield
    app.state.rate_limiter.store.clear()
    _pricing_runs.clear()
    _run_tasks.clear()


@pytest.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
