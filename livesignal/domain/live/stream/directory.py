"""Live stream directory: which streams are live right now."""

from collections.abc import Awaitable, Callable

from loguru import logger
from pydantic import ValidationError

from livesignal.app_config import AppEnvironConfig, get_app_environ_config
from livesignal.domain.live.signaling import make_channel_refs
from livesignal.schemas import LiveStreamRecord, StreamRole
from livesignal.services.store import ChangeType, DocumentChange, DocumentSnapshot, DocumentStore, Subscription
from livesignal.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

from .stream_models import LiveStreamResponse, StreamStatusResponse

LiveSetCallback = Callable[[list[LiveStreamResponse]], Awaitable[None] | None]


def _to_response(snapshot: DocumentSnapshot) -> LiveStreamResponse | None:
    try:
        record = LiveStreamRecord.model_validate({"id": snapshot.id, **snapshot.to_dict()})
    except ValidationError as e:
        logger.warning("Skipping malformed stream record {}: {}", snapshot.path, e)
        return None
    return LiveStreamResponse(
        stream_id=record.stream_id,
        streamer_uid=record.streamer_uid,
        streamer_name=record.streamer_name,
        live=record.live,
        created_at=record.created_at,
    )


def _created_ms(stream: LiveStreamResponse) -> int:
    """Creation time from the `{uid}-{ms}` stream id; -1 when it has no ms suffix."""
    suffix = stream.stream_id.rsplit("-", 1)[-1]
    return int(suffix) if suffix.isdigit() else -1


def _sort_newest_first(streams: list[LiveStreamResponse]) -> list[LiveStreamResponse]:
    return sorted(streams, key=lambda s: (_created_ms(s), s.stream_id), reverse=True)


class LiveStreamDirectory:
    def __init__(self, store: DocumentStore, cfg: AppEnvironConfig | None = None):
        self.store = store
        self._cfg = cfg or get_app_environ_config()

    @property
    def _streams(self):
        return self.store.collection(self._cfg.STREAMS_COLLECTION)

    async def list_live(self) -> list[LiveStreamResponse]:
        snapshots = await self.store.query(self._streams, "live", True)
        return _sort_newest_first([s for s in map(_to_response, snapshots) if s is not None])

    async def get_stream(self, stream_id: str) -> StreamStatusResponse:
        """
        One stream record with a summary of its signaling records.

        Raises:
            AppError: E_STREAM_NOT_FOUND if no stream record exists
        """
        snapshot = await self.store.get(self._streams.document(stream_id))
        stream = _to_response(snapshot) if snapshot.exists else None
        if stream is None:
            raise AppError(
                errcode=AppErrorCode.E_STREAM_NOT_FOUND,
                errmesg=f"Stream not found: {stream_id}",
                status_code=HttpStatusCode.NOT_FOUND,
            )

        refs = make_channel_refs(self.store, stream_id)
        base = await self.store.get(refs.base_doc)
        answers = await self.store.documents(refs.answers_ref)
        host_candidates = await self.store.query(refs.candidates_ref, "role", StreamRole.HOST.value)
        viewer_candidates = await self.store.query(refs.candidates_ref, "role", StreamRole.VIEWER.value)

        return StreamStatusResponse(
            **stream.model_dump(),
            has_offer=bool(base.to_dict().get("offer")),
            answer_count=len(answers),
            host_candidate_count=len(host_candidates),
            viewer_candidate_count=len(viewer_candidates),
        )

    def watch_live(self, callback: LiveSetCallback) -> Subscription:
        """Call back with the full live set on attach and after every change."""
        live: dict[str, LiveStreamResponse] = {}

        def on_changes(changes: list[DocumentChange]):
            for change in changes:
                stream = _to_response(change.doc) if change.type is not ChangeType.REMOVED else None
                if stream is not None and stream.live:
                    live[change.doc.id] = stream
                else:
                    live.pop(change.doc.id, None)
            return callback(_sort_newest_first(list(live.values())))

        return self.store.subscribe(self._streams, on_changes)
