"""Unit tests for the in-memory document store."""

import asyncio
from datetime import datetime

import pytest

from livesignal.services.store import (
    SERVER_TIMESTAMP,
    ChangeType,
    CollectionRef,
    DocumentRef,
    SignalTarget,
    target_for_path,
)
from livesignal.utils.app_errors import AppError, AppErrorCode


class TestRefs:
    @pytest.mark.parametrize(
        "path,target",
        [
            ("liveStreamSignals", SignalTarget.APPEND),
            ("liveStreamSignals/U1-1000", SignalTarget.MERGE),
            ("liveStreamSignals/U1-1000/answers", SignalTarget.APPEND),
            ("/liveStreamSignals/U1-1000/", SignalTarget.MERGE),
        ],
    )
    def test_target_from_segment_parity(self, path, target):
        assert target_for_path(path) is target

    @pytest.mark.parametrize("path", ["", "/", "a//b", None])
    def test_invalid_paths(self, path):
        with pytest.raises(AppError) as exc_info:
            target_for_path(path)
        assert exc_info.value.errcode == AppErrorCode.E_INVALID_PATH.value

    async def test_ref_resolves_kind(self, store):
        assert isinstance(store.ref("liveStreams"), CollectionRef)
        assert isinstance(store.ref("liveStreams/U1-1000"), DocumentRef)

    async def test_document_and_collection_reject_wrong_parity(self, store):
        with pytest.raises(AppError):
            store.document("liveStreams")
        with pytest.raises(AppError):
            store.collection("liveStreams/U1-1000")

    async def test_navigation(self, store):
        doc = store.collection("liveStreamSignals").document("U1-1000")
        answers = doc.collection("answers")

        assert answers.path == "liveStreamSignals/U1-1000/answers"
        assert answers.parent == doc
        assert doc.parent.path == "liveStreamSignals"
        assert store.collection("liveStreamSignals").parent is None


class TestReadWrite:
    async def test_get_missing(self, store):
        snapshot = await store.get(store.document("liveStreams/nope"))

        assert not snapshot.exists
        assert snapshot.to_dict() == {}

    async def test_set_replaces_without_merge(self, store):
        ref = store.document("liveStreams/U1-1000")
        await store.set(ref, {"a": 1, "b": 2})

        await store.set(ref, {"a": 3})

        assert (await store.get(ref)).data == {"a": 3}

    async def test_merge_is_deep(self, store):
        ref = store.document("liveStreams/U1-1000")
        await store.set(ref, {"meta": {"a": 1, "b": 2}})

        await store.set(ref, {"meta": {"b": 3}}, merge=True)

        assert (await store.get(ref)).data == {"meta": {"a": 1, "b": 3}}

    async def test_server_timestamp_is_resolved(self, store):
        ref = store.document("liveStreams/U1-1000")

        await store.set(ref, {"ts": SERVER_TIMESTAMP, "nested": {"at": SERVER_TIMESTAMP}})

        data = (await store.get(ref)).data
        assert isinstance(data["ts"], datetime)
        assert isinstance(data["nested"]["at"], datetime)

    async def test_snapshots_are_copies(self, store):
        ref = store.document("liveStreams/U1-1000")
        await store.set(ref, {"items": [1]})

        (await store.get(ref)).data["items"].append(2)

        assert (await store.get(ref)).data == {"items": [1]}

    async def test_add_generates_ids(self, store):
        answers = store.collection("liveStreamSignals/U1-1000/answers")

        first = await store.add(answers, {"n": 1})
        second = await store.add(answers, {"n": 2})

        assert first.id != second.id
        assert [d.data["n"] for d in await store.documents(answers)] == [1, 2]

    async def test_update_missing_document_fails(self, store):
        with pytest.raises(AppError) as exc_info:
            await store.update(store.document("liveStreams/nope"), {"live": False})

        assert exc_info.value.errcode == AppErrorCode.E_DOCUMENT_NOT_FOUND.value

    async def test_update_merges(self, store):
        ref = store.document("liveStreams/U1-1000")
        await store.set(ref, {"id": "U1-1000", "live": True})

        await store.update(ref, {"live": False})

        assert (await store.get(ref)).data == {"id": "U1-1000", "live": False}

    async def test_documents_are_direct_children_only(self, store):
        await store.set(store.document("liveStreamSignals/U1-1000"), {"live": True})
        await store.add(store.collection("liveStreamSignals/U1-1000/answers"), {"from": "U2"})

        docs = await store.documents(store.collection("liveStreamSignals"))

        assert [d.id for d in docs] == ["U1-1000"]

    async def test_query(self, store):
        streams = store.collection("liveStreams")
        await store.set(streams.document("a"), {"live": True})
        await store.set(streams.document("b"), {"live": False})
        await store.set(streams.document("c"), {"live": True})

        assert [d.id for d in await store.query(streams, "live", True)] == ["a", "c"]

    async def test_delete(self, store):
        ref = store.document("liveStreams/U1-1000")
        await store.set(ref, {"live": True})

        await store.delete(ref)

        assert not (await store.get(ref)).exists


class TestSubscribe:
    async def test_existing_documents_then_live_changes(self, store):
        answers = store.collection("liveStreamSignals/U1-1000/answers")
        await store.add(answers, {"n": 1})
        batches = []

        subscription = store.subscribe(answers, batches.append)
        await subscription.idle()
        added = await store.add(answers, {"n": 2})
        await store.update(added, {"n": 3})
        await store.delete(added)
        await subscription.idle()

        assert [[c.type for c in batch] for batch in batches] == [
            [ChangeType.ADDED],
            [ChangeType.ADDED],
            [ChangeType.MODIFIED],
            [ChangeType.REMOVED],
        ]
        assert batches[1][0].doc.data["n"] == 2
        assert batches[2][0].doc.data["n"] == 3
        assert batches[3][0].doc.data is None

    async def test_empty_collection_delivers_empty_batch(self, store):
        batches = []

        subscription = store.subscribe(store.collection("liveStreams"), batches.append)
        await subscription.idle()

        assert batches == [[]]

    async def test_sibling_collections_are_isolated(self, store):
        seen = []
        subscription = store.subscribe(store.collection("liveStreamSignals/U1-1000/answers"), seen.extend)

        await store.add(store.collection("liveStreamSignals/U1-2000/answers"), {"n": 1})
        await store.add(store.collection("liveStreamSignals/U1-1000/candidates"), {"n": 1})
        await subscription.idle()

        assert seen == []

    async def test_async_callback_and_failure_isolation(self, store):
        streams = store.collection("liveStreams")
        delivered = []

        async def callback(changes):
            await asyncio.sleep(0)
            for change in changes:
                if change.doc.id == "bad":
                    raise RuntimeError("callback failed")
                delivered.append(change.doc.id)

        subscription = store.subscribe(streams, callback)
        await store.set(streams.document("bad"), {})
        await store.set(streams.document("good"), {})
        await subscription.idle()

        assert delivered == ["good"]

    async def test_unsubscribe_stops_delivery(self, store):
        streams = store.collection("liveStreams")
        seen = []
        subscription = store.subscribe(streams, seen.extend)
        await subscription.idle()

        subscription.unsubscribe()
        subscription.unsubscribe()
        await store.set(streams.document("a"), {})
        await asyncio.sleep(0)

        assert subscription.closed
        assert seen == []

    async def test_close_unsubscribes_all(self, store):
        subscription = store.subscribe(store.collection("liveStreams"), lambda changes: None)

        await store.close()

        assert subscription.closed
