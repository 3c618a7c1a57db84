"""
Signal channel: timestamped, logged writes to the document store.

Every write is sanitized and stamped with a server `ts`. Every outcome is
logged as `[SIGNAL OK]` or `[SIGNAL FAIL]` with the path and payload, and
failures are re-raised to the caller.
"""

from dataclasses import dataclass
from typing import Any

from loguru import logger

from livesignal.app_config import get_app_environ_config
from livesignal.services.store import (
    SERVER_TIMESTAMP,
    CollectionRef,
    DocumentRef,
    DocumentStore,
    SignalTarget,
)

from .codec import sanitize


def _stamp(data: dict[str, Any]) -> dict[str, Any]:
    return sanitize({**data, "ts": SERVER_TIMESTAMP})


def _error_code(e: Exception) -> str | None:
    code = getattr(e, "errcode", None) or getattr(e, "code", None)
    return str(code) if code is not None else type(e).__name__


def _log_fail(label: str, path: str, body: dict[str, Any], e: Exception):
    logger.error(
        "[SIGNAL FAIL] {} path={} code={} message={} data={}",
        label, path, _error_code(e), e, body,
    )


async def safe_add(collection_ref: CollectionRef, data: dict[str, Any], label: str = "add") -> str:
    """Append a record to a collection and return its generated id."""
    body = _stamp(data)
    try:
        doc_ref = await collection_ref.store.add(collection_ref, body)
    except Exception as e:
        _log_fail(label, collection_ref.path, body, e)
        raise
    logger.info("[SIGNAL OK] {} path={} id={} data={}", label, collection_ref.path, doc_ref.id, body)
    return doc_ref.id


async def safe_set(doc_ref: DocumentRef, data: dict[str, Any], label: str = "set") -> None:
    """Merge fields into a document, creating it when missing."""
    body = _stamp(data)
    try:
        await doc_ref.store.set(doc_ref, body, merge=True)
    except Exception as e:
        _log_fail(label, doc_ref.path, body, e)
        raise
    logger.info("[SIGNAL OK] {} path={} data={}", label, doc_ref.path, body)


async def safe_send_signal(
    ref: DocumentRef | CollectionRef | str,
    data: dict[str, Any],
    label: str = "signal",
    *,
    store: DocumentStore | None = None,
) -> str | None:
    """
    Append to a collection or merge into a document, by the ref's target.

    A string path needs `store` and is resolved by segment count: odd is a
    collection, even a document. Returns the new record id for appends.
    """
    if isinstance(ref, str):
        if store is None:
            raise ValueError("A store is required to send a signal to a raw path")
        ref = store.ref(ref)

    if ref.target is SignalTarget.APPEND:
        return await safe_add(ref, data, label)
    await safe_set(ref, data, label)
    return None


@dataclass(frozen=True)
class ChannelRefs:
    """The three signaling targets of one stream, all keyed by the stream id."""

    base_doc: DocumentRef
    answers_ref: CollectionRef
    candidates_ref: CollectionRef

    @property
    def stream_id(self) -> str:
        return self.base_doc.id


def make_channel_refs(store: DocumentStore, stream_id: str) -> ChannelRefs:
    base = store.collection(get_app_environ_config().SIGNALS_COLLECTION).document(stream_id)
    return ChannelRefs(
        base_doc=base,
        answers_ref=base.collection("answers"),
        candidates_ref=base.collection("candidates"),
    )
