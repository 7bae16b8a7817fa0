import os

import pytest
from httpx import ASGITransport, AsyncClient

os.environ["TESTING"] = "1"

from jobstatus import redis_helper
from jobstatus.main import app as fastapi_app


@pytest.fixture
def redis_client():
    """Fresh in-memory store installed as the default provider."""
    client = redis_helper.AsyncInMemoryRedis()
    redis_helper.set_provider(redis_helper.SingletonConnectionProvider(client))
    yield client
    redis_helper.set_provider(None)


@pytest.fixture
async def client(redis_client):
    async with AsyncClient(transport=ASGITransport(app=fastapi_app), base_url="http://testserver") as ac:
        yield ac
