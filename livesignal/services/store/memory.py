"""In-process document store for demo mode and tests."""

import copy
from datetime import datetime, timezone
from typing import Any

from loguru import logger

from livesignal.domain.utils.idgen import new_document_id

from .base import (
    SERVER_TIMESTAMP,
    ChangeCallback,
    ChangeType,
    CollectionRef,
    DocumentChange,
    DocumentRef,
    DocumentSnapshot,
    DocumentStore,
    Subscription,
    document_not_found,
)


def _resolve_timestamps(value: Any, now: datetime) -> Any:
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, dict):
        return {k: _resolve_timestamps(v, now) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_resolve_timestamps(v, now) for v in value]
    return copy.deepcopy(value)


def _deep_merge(target: dict[str, Any], source: dict[str, Any]):
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = value


class InMemoryDocumentStore(DocumentStore):
    """
    Keeps documents in a dict keyed by path.

    Writes notify the listeners of the document's parent collection
    synchronously; delivery to callbacks happens on each listener's task.
    """

    def __init__(self):
        self._docs: dict[str, dict[str, Any]] = {}
        self._listeners: dict[str, list[Subscription]] = {}

    def _snapshot(self, path: str) -> DocumentSnapshot:
        data = self._docs.get(path)
        return DocumentSnapshot(
            id=path.rsplit("/", 1)[-1],
            path=path,
            data=copy.deepcopy(data) if data is not None else None,
        )

    def _children(self, collection_path: str) -> list[str]:
        depth = collection_path.count("/") + 1
        prefix = f"{collection_path}/"
        return [p for p in self._docs if p.startswith(prefix) and p.count("/") == depth]

    def _notify(self, path: str, change_type: ChangeType):
        collection_path = path.rsplit("/", 1)[0]
        listeners = self._listeners.get(collection_path)
        if not listeners:
            return
        change = DocumentChange(type=change_type, doc=self._snapshot(path))
        for subscription in list(listeners):
            subscription.push([change])

    async def get(self, ref: DocumentRef) -> DocumentSnapshot:
        return self._snapshot(ref.path)

    async def set(self, ref: DocumentRef, data: dict[str, Any], *, merge: bool = False) -> None:
        body = _resolve_timestamps(data, datetime.now(timezone.utc))
        existing = self._docs.get(ref.path)

        if existing is not None and merge:
            _deep_merge(existing, body)
        else:
            self._docs[ref.path] = body

        self._notify(ref.path, ChangeType.ADDED if existing is None else ChangeType.MODIFIED)

    async def add(self, ref: CollectionRef, data: dict[str, Any]) -> DocumentRef:
        doc_ref = ref.document(new_document_id())
        await self.set(doc_ref, data)
        return doc_ref

    async def update(self, ref: DocumentRef, data: dict[str, Any]) -> None:
        if ref.path not in self._docs:
            raise document_not_found(ref.path)
        await self.set(ref, data, merge=True)

    async def delete(self, ref: DocumentRef) -> None:
        if self._docs.pop(ref.path, None) is not None:
            self._notify_removed(ref.path)

    def _notify_removed(self, path: str):
        collection_path = path.rsplit("/", 1)[0]
        change = DocumentChange(
            type=ChangeType.REMOVED,
            doc=DocumentSnapshot(id=path.rsplit("/", 1)[-1], path=path, data=None),
        )
        for subscription in list(self._listeners.get(collection_path, [])):
            subscription.push([change])

    async def documents(self, ref: CollectionRef) -> list[DocumentSnapshot]:
        return [self._snapshot(path) for path in self._children(ref.path)]

    async def query(self, ref: CollectionRef, field_name: str, value: Any) -> list[DocumentSnapshot]:
        return [
            self._snapshot(path)
            for path in self._children(ref.path)
            if self._docs[path].get(field_name) == value
        ]

    def subscribe(self, ref: CollectionRef, callback: ChangeCallback) -> Subscription:
        subscription = Subscription(ref.path, callback, on_close=self._remove_listener)
        subscription.push([
            DocumentChange(type=ChangeType.ADDED, doc=self._snapshot(path))
            for path in self._children(ref.path)
        ])
        self._listeners.setdefault(ref.path, []).append(subscription)
        logger.debug("Subscribed to {}", ref.path)
        return subscription

    def _remove_listener(self, subscription: Subscription):
        listeners = self._listeners.get(subscription.path, [])
        if subscription in listeners:
            listeners.remove(subscription)
        if not listeners:
            self._listeners.pop(subscription.path, None)

    async def close(self):
        for listeners in list(self._listeners.values()):
            for subscription in list(listeners):
                subscription.unsubscribe()
        self._listeners.clear()
