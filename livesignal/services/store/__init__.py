"""Document store backends for the signaling channel."""

from loguru import logger

from livesignal.app_config import get_app_environ_config

from .base import (
    SERVER_TIMESTAMP,
    ChangeType,
    CollectionRef,
    DocumentChange,
    DocumentRef,
    DocumentSnapshot,
    DocumentStore,
    SignalTarget,
    Subscription,
    target_for_path,
)
from .memory import InMemoryDocumentStore

__all__ = [
    "SERVER_TIMESTAMP",
    "ChangeType",
    "CollectionRef",
    "DocumentChange",
    "DocumentRef",
    "DocumentSnapshot",
    "DocumentStore",
    "InMemoryDocumentStore",
    "SignalTarget",
    "Subscription",
    "create_signal_store",
    "target_for_path",
]


def create_signal_store(backend: str | None = None) -> DocumentStore:
    """Build the store selected by SIGNAL_STORE_BACKEND ("memory" or "mongo")."""
    cfg = get_app_environ_config()
    backend = (backend or cfg.SIGNAL_STORE_BACKEND).lower()

    if backend == "memory":
        logger.info("Using in-memory signal store")
        return InMemoryDocumentStore()

    if backend == "mongo":
        from livesignal.shared.storage.mongo import get_mongo_client

        from .mongo_store import MongoDocumentStore

        logger.info(
            "Using MongoDB signal store: label={} database={}",
            cfg.SIGNAL_MONGO_LABEL, cfg.SIGNAL_DATABASE,
        )
        signals = cfg.SIGNALS_COLLECTION
        return MongoDocumentStore(
            get_mongo_client(cfg.SIGNAL_MONGO_LABEL),
            cfg.SIGNAL_DATABASE,
            index_paths=(cfg.STREAMS_COLLECTION, signals, f"{signals}/_/answers", f"{signals}/_/candidates"),
        )

    raise ValueError(f"Unknown signal store backend: {backend!r}")
