"""Pytest configuration for integration tests.

Integration tests run against a real MongoDB replica set (change streams
need one) and are skipped unless MONGO_URL_SIGNAL is set.
"""

import os
import warnings
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from motor.motor_asyncio import AsyncIOMotorClient

from livesignal.domain.utils.idgen import new_ulid
from livesignal.services.store.mongo_store import MongoDocumentStore

warnings.filterwarnings("ignore", category=DeprecationWarning, module="aioice.*")


@pytest.fixture(scope="session")
def mongo_url() -> str:
    url = os.environ.get("MONGO_URL_SIGNAL")
    if not url:
        pytest.skip("MONGO_URL_SIGNAL environment variable required (replica set)")
    return url


@pytest_asyncio.fixture
async def mongo_client(mongo_url: str) -> AsyncGenerator[AsyncIOMotorClient]:
    """Function-scoped to stay on the test's event loop."""
    client: AsyncIOMotorClient = AsyncIOMotorClient(mongo_url)
    yield client
    client.close()


@pytest_asyncio.fixture
async def mongo_store(mongo_client: AsyncIOMotorClient) -> AsyncGenerator[MongoDocumentStore]:
    """A store on a throwaway database, dropped after the test."""
    database = f"livesignal_test_{new_ulid()}"
    store = MongoDocumentStore(mongo_client, database)
    yield store
    await store.close()
    await mongo_client.drop_database(database)
