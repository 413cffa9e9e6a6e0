# tests/conftest.py
import httpx
import pytest
from asgi_lifespan import LifespanManager

from fake_backend import TOKEN, InMemoryStore, create_app
from ordertrack.services.api_client import ApiClient

@pytest.fixture
def anyio_backend():
    # the tracker schedules through asyncio directly
    return "asyncio"

@pytest.fixture
def store():
    return InMemoryStore()

@pytest.fixture
async def backend(store):
    app = create_app(store)
    async with LifespanManager(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac

@pytest.fixture
def api(backend):
    return ApiClient("http://test", token=TOKEN, client=backend, retry_delay=0)
