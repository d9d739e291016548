import asyncio

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from chirp.core.config import settings
from chirp.main import create_app
from chirp.utils.security import create_access_token


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def mongo_client():
    return AsyncMongoMockClient(tz_aware=True)


@pytest.fixture
def db(mongo_client):
    return mongo_client[settings.MONGODB_DB]


@pytest.fixture
def users(db):
    """alice, bob and carol seeded in the users collection, name -> id."""

    async def insert(username, email, full_name=None):
        result = await db.users.insert_one({"username": username, "email": email, "full_name": full_name})
        return str(result.inserted_id)

    async def seed():
        return {
            "alice": await insert("alice", "alice@example.com", "Alice A."),
            "bob": await insert("bob", "bob@example.com"),
            "carol": await insert("carol", "carol@example.com"),
        }

    return asyncio.run(seed())


@pytest.fixture
def app(mongo_client):
    return create_app(client_factory=lambda uri, **kwargs: mongo_client)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def auth(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}
