"""Store, config and peer fixtures shared by the unit tests."""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from livesignal.app_config import AppEnvironConfig
from livesignal.schemas import StreamRole
from livesignal.services.store import InMemoryDocumentStore

from .fakes import ConnectionRecorder, FakeSink


@pytest.fixture
def cfg() -> AppEnvironConfig:
    """Config with a short offer poll so missing-offer paths finish quickly."""
    return AppEnvironConfig(OFFER_POLL_INTERVAL_MS=1, OFFER_POLL_MAX_ATTEMPTS=3)


@pytest_asyncio.fixture
async def store() -> AsyncGenerator[InMemoryDocumentStore]:
    store = InMemoryDocumentStore()
    yield store
    await store.close()


@pytest.fixture
def connections() -> ConnectionRecorder:
    return ConnectionRecorder()


@pytest.fixture
def make_peer(store, cfg, connections):
    """Build PeerSessions wired to fake connections and sinks."""
    from livesignal.domain.live.stream.peer_session import PeerSession

    def factory(user_id: str, role: StreamRole, **kwargs) -> PeerSession:
        kwargs.setdefault("remote_sink", FakeSink())
        kwargs.setdefault("connection_factory", connections)
        return PeerSession(store, user_id, role, cfg=cfg, **kwargs)

    return factory
