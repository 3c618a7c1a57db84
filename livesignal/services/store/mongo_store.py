"""
MongoDB document store on motor.

A collection path `a/x/b` is stored in the MongoDB collection `a.b`. Each
document keeps its full path as `_id` and its parent document path as
`_parent`, so sibling sub-collections of different parents share one MongoDB
collection. Server timestamps are written with `$currentDate` /
`$$NOW`, and subscriptions run on change streams, which need a replica set.
"""

import asyncio
import re
from collections.abc import Callable
from typing import Any

from loguru import logger
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from livesignal.domain.utils.idgen import new_document_id
from livesignal.shared.storage.mongo import supports_change_streams

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

_META_FIELDS = ('_id', '_parent')

_OPERATION_CHANGES = {
    'insert': ChangeType.ADDED,
    'update': ChangeType.MODIFIED,
    'replace': ChangeType.MODIFIED,
    'delete': ChangeType.REMOVED,
}


def _split_fields(data: dict[str, Any], prefix: str = '', *, flatten: bool) -> tuple[dict[str, Any], list[str]]:
    """Split a body into `$set` fields and server timestamp field paths.

    With `flatten`, nested dicts become dotted keys so a merge write keeps
    sibling fields already stored.
    """
    fields: dict[str, Any] = {}
    timestamps: list[str] = []

    for key, value in data.items():
        name = f'{prefix}{key}'
        if value is SERVER_TIMESTAMP:
            timestamps.append(name)
        elif flatten and isinstance(value, dict) and value:
            nested_fields, nested_ts = _split_fields(value, f'{name}.', flatten=True)
            fields.update(nested_fields)
            timestamps.extend(nested_ts)
        elif isinstance(value, dict):
            nested_fields, nested_ts = _split_fields(value, '', flatten=False)
            fields[name] = nested_fields
            timestamps.extend(f'{name}.{ts}' for ts in nested_ts)
        else:
            fields[name] = value

    return fields, timestamps


class _ChangeStreamSubscription(Subscription):
    def __init__(
        self,
        path: str,
        callback: ChangeCallback,
        collection: AsyncIOMotorCollection,
        parent: str,
        on_close: Callable[[Subscription], None] | None = None,
    ):
        super().__init__(path, callback, on_close=on_close)
        self._collection = collection
        self._parent = parent
        self._ready = asyncio.Event()
        self._watcher = asyncio.create_task(self._watch(), name=f'change-stream:{path}')

    async def ready(self):
        """Wait until existing documents are queued and the change stream is open."""
        await self._ready.wait()

    async def _watch(self):
        pipeline = [
            {'$match': {'documentKey._id': {'$regex': f'^{re.escape(self.path)}/[^/]+$'}}}
        ]
        seen: set[str] = set()

        try:
            # Open the stream before reading existing documents so no write falls in between
            async with self._collection.watch(pipeline, full_document='updateLookup') as stream:
                existing = []
                async for raw in self._collection.find({'_parent': self._parent}).sort('_id', 1):
                    snapshot = MongoDocumentStore.to_snapshot(raw)
                    seen.add(snapshot.path)
                    existing.append(DocumentChange(type=ChangeType.ADDED, doc=snapshot))
                self.push(existing)
                self._ready.set()

                async for event in stream:
                    change = self._to_change(event, seen)
                    if change is not None:
                        self.push([change])
        except asyncio.CancelledError:
            raise
        except PyMongoError as e:
            logger.error('Change stream failed: path={} error={}', self.path, e)
        finally:
            self._ready.set()

    @staticmethod
    def _to_change(event: dict[str, Any], seen: set[str]) -> DocumentChange | None:
        change_type = _OPERATION_CHANGES.get(event.get('operationType'))
        if change_type is None:
            return None

        path = event['documentKey']['_id']
        if change_type is ChangeType.ADDED:
            if path in seen:
                return None
            seen.add(path)

        full_document = event.get('fullDocument')
        if change_type is ChangeType.REMOVED or full_document is None:
            snapshot = DocumentSnapshot(id=path.rsplit('/', 1)[-1], path=path, data=None)
        else:
            snapshot = MongoDocumentStore.to_snapshot(full_document)
        return DocumentChange(type=change_type, doc=snapshot)

    def unsubscribe(self):
        if not self.closed:
            self._watcher.cancel()
        super().unsubscribe()


class MongoDocumentStore(DocumentStore):
    """Document store backed by one MongoDB database."""

    def __init__(self, client: AsyncIOMotorClient, database: str, index_paths: tuple[str, ...] = ()):
        self._client = client
        self._db: AsyncIOMotorDatabase = client.get_database(database)
        self._index_paths = index_paths
        self._subscriptions: set[Subscription] = set()

    @staticmethod
    def collection_name(path: str) -> str:
        return '.'.join(path.split('/')[0::2])

    @staticmethod
    def parent_path(path: str) -> str:
        """Parent document path of a collection path, empty for a root collection."""
        return path.rsplit('/', 1)[0] if '/' in path else ''

    @staticmethod
    def to_snapshot(raw: dict[str, Any]) -> DocumentSnapshot:
        path = raw['_id']
        data = {k: v for k, v in raw.items() if k not in _META_FIELDS}
        return DocumentSnapshot(id=path.rsplit('/', 1)[-1], path=path, data=data)

    def _collection(self, collection_path: str) -> AsyncIOMotorCollection:
        return self._db[self.collection_name(collection_path)]

    async def get(self, ref: DocumentRef) -> DocumentSnapshot:
        raw = await self._collection(ref.parent.path).find_one({'_id': ref.path})
        if raw is None:
            return DocumentSnapshot(id=ref.id, path=ref.path, data=None)
        return self.to_snapshot(raw)

    async def set(self, ref: DocumentRef, data: dict[str, Any], *, merge: bool = False) -> None:
        collection_path = ref.parent.path
        collection = self._collection(collection_path)
        meta = {'_parent': self.parent_path(collection_path)}

        if merge:
            fields, timestamps = _split_fields(data, flatten=True)
            update = {'$set': {**fields, **meta}}
            if timestamps:
                update['$currentDate'] = {name: True for name in timestamps}
            await collection.update_one({'_id': ref.path}, update, upsert=True)
            return

        fields, timestamps = _split_fields(data, flatten=False)
        pipeline = [{'$replaceWith': {'$literal': {'_id': ref.path, **meta, **fields}}}]
        if timestamps:
            pipeline.append({'$set': {name: '$$NOW' for name in timestamps}})
        await collection.update_one({'_id': ref.path}, pipeline, upsert=True)

    async def add(self, ref: CollectionRef, data: dict[str, Any]) -> DocumentRef:
        doc_ref = ref.document(new_document_id())
        await self.set(doc_ref, data, merge=True)
        return doc_ref

    async def update(self, ref: DocumentRef, data: dict[str, Any]) -> None:
        collection = self._collection(ref.parent.path)
        fields, timestamps = _split_fields(data, flatten=True)
        update: dict[str, Any] = {'$set': fields} if fields else {}
        if timestamps:
            update['$currentDate'] = {name: True for name in timestamps}
        if not update:
            if await collection.find_one({'_id': ref.path}, {'_id': 1}) is None:
                raise document_not_found(ref.path)
            return

        result = await collection.update_one({'_id': ref.path}, update)
        if result.matched_count == 0:
            raise document_not_found(ref.path)

    async def delete(self, ref: DocumentRef) -> None:
        await self._collection(ref.parent.path).delete_one({'_id': ref.path})

    async def documents(self, ref: CollectionRef) -> list[DocumentSnapshot]:
        cursor = self._collection(ref.path).find({'_parent': self.parent_path(ref.path)}).sort('_id', 1)
        return [self.to_snapshot(raw) async for raw in cursor]

    async def query(self, ref: CollectionRef, field_name: str, value: Any) -> list[DocumentSnapshot]:
        cursor = self._collection(ref.path).find(
            {'_parent': self.parent_path(ref.path), field_name: value}
        ).sort('_id', 1)
        return [self.to_snapshot(raw) async for raw in cursor]

    def subscribe(self, ref: CollectionRef, callback: ChangeCallback) -> Subscription:
        subscription = _ChangeStreamSubscription(
            ref.path, callback,
            collection=self._collection(ref.path),
            parent=self.parent_path(ref.path),
            on_close=self._subscriptions.discard,
        )
        self._subscriptions.add(subscription)
        logger.debug('Subscribed to {} ({})', ref.path, self.collection_name(ref.path))
        return subscription

    async def ensure_indexes(self, *collection_paths: str):
        for path in collection_paths:
            await self._collection(path).create_index('_parent')

    async def open(self):
        if not await supports_change_streams(self._client):
            logger.warning('MongoDB server has no replica set: subscriptions will not receive changes')
        await self.ensure_indexes(*self._index_paths)

    async def close(self):
        for subscription in list(self._subscriptions):
            subscription.unsubscribe()
        self._subscriptions.clear()
