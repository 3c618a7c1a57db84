"""
Peer session: one aiortc RTCPeerConnection and its signaling.

The host writes its offer to the stream's base document, then listens to
`answers` and `candidates`. The viewer waits for the offer, appends its
answer, then listens to `candidates`. Each side only applies candidates
tagged with the other side's role, and every record is applied at most once
per subscription. A record that fails to apply is logged and skipped so the
rest of the negotiation carries on.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
)
from aiortc.sdp import SessionDescription
from loguru import logger
from pydantic import ValidationError

from livesignal.app_config import AppEnvironConfig, get_app_environ_config
from livesignal.domain.live.signaling import (
    ChannelRefs,
    make_channel_refs,
    parse_description,
    parse_ice_candidate,
    safe_add,
    safe_set,
    serialize_answer,
    serialize_ice_candidate,
    serialize_offer,
)
from livesignal.schemas import (
    AnswerRecord,
    CandidateRecord,
    PeerState,
    SessionDescriptionPayload,
    SignalBaseRecord,
    StreamRole,
)
from livesignal.services.media import RemoteMediaSink
from livesignal.services.store import ChangeType, CollectionRef, DocumentChange, DocumentStore, Subscription
from livesignal.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

from .stream_state_machine import PeerStateMachine

StatusCallback = Callable[[str], None]
ConnectionFactory = Callable[[RTCConfiguration], RTCPeerConnection]

NO_OFFER_MESSAGE = "No offer found yet."


def build_rtc_configuration(cfg: AppEnvironConfig) -> RTCConfiguration:
    return RTCConfiguration(iceServers=[
        RTCIceServer(urls=server.urls, username=server.username, credential=server.credential)
        for server in cfg.ICE_SERVERS
    ])


class PeerSession:
    """Owns at most one live peer connection for one participant of a stream."""

    def __init__(
        self,
        store: DocumentStore,
        user_id: str,
        role: StreamRole,
        *,
        on_status: StatusCallback | None = None,
        remote_sink: RemoteMediaSink | None = None,
        connection_factory: ConnectionFactory | None = None,
        cfg: AppEnvironConfig | None = None,
    ):
        self.store = store
        self.user_id = user_id
        self.role = role
        self._cfg = cfg or get_app_environ_config()
        self._on_status = on_status
        self._sink = remote_sink or RemoteMediaSink(self._cfg.REMOTE_RECORDING_PATH)
        self._connection_factory = connection_factory or (lambda c: RTCPeerConnection(configuration=c))

        self.pc: RTCPeerConnection | None = None
        self.state = PeerState.UNINITIALIZED
        self.refs: ChannelRefs | None = None

        self._pending_candidates: list[dict[str, Any]] = []
        self._disposables: list[Callable[[], None]] = []
        self._subscriptions: list[Subscription] = []

    @property
    def stream_id(self) -> str | None:
        return self.refs.stream_id if self.refs else None

    def _status(self, text: str):
        logger.info("[LIVE] {}", text)
        if self._on_status is not None:
            self._on_status(text)

    def _transition(self, new: PeerState):
        if new == self.state:
            return
        if PeerStateMachine.is_terminal(self.state):
            # Late transport events after close
            logger.debug("Peer session closed, ignoring state {}", new)
            return
        if not PeerStateMachine.can_transition(self.state, new):
            logger.warning("Ignoring peer state change: {} -> {}", self.state, new)
            return
        logger.debug("Peer state: {} -> {}", self.state, new)
        self.state = new

    # ==================== CONNECTION ====================

    def _on(self, pc: RTCPeerConnection, event: str, handler: Callable[..., Any]):
        pc.on(event, handler)
        self._disposables.append(lambda: pc.remove_listener(event, handler))

    async def create_connection(self) -> RTCPeerConnection:
        """Close any previous connection and build a new one with handlers installed."""
        await self._close_connection()

        logger.info(
            "Creating peer connection: role={} ice_servers={} candidate_pool_size={}",
            self.role, len(self._cfg.ICE_SERVERS), self._cfg.ICE_CANDIDATE_POOL_SIZE,
        )
        pc = self._connection_factory(build_rtc_configuration(self._cfg))
        self.pc = pc
        self.state = PeerState.UNINITIALIZED
        self._transition(PeerState.CONNECTING)

        async def on_track(track: MediaStreamTrack):
            try:
                await self._sink.attach(track)
            except Exception as e:
                logger.warning("Cannot attach remote {} track: {}", track.kind, e)

        def on_connection_state_change():
            state = pc.connectionState
            self._status(f"Connection: {state}")
            peer_state = PeerStateMachine.from_transport(state)
            if peer_state is not None:
                self._transition(peer_state)

        self._on(pc, "track", on_track)
        self._on(pc, "connectionstatechange", on_connection_state_change)
        self._on(pc, "icecandidate", self.handle_local_candidate)
        return pc

    async def _close_connection(self):
        for dispose in self._disposables:
            dispose()
        self._disposables.clear()

        pc, self.pc = self.pc, None
        if pc is None:
            return
        try:
            await pc.close()
        except Exception as e:
            logger.warning("Error closing peer connection: {}", e)
        self._transition(PeerState.CLOSED)

    async def close(self):
        """Stop listening for signals and close the connection and remote sink."""
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()
        self._pending_candidates.clear()

        await self._close_connection()
        self._transition(PeerState.CLOSED)

        try:
            await self._sink.stop()
        except Exception as e:
            logger.warning("Error stopping remote media sink: {}", e)

    # ==================== LOCAL CANDIDATES ====================

    async def bind_stream(self, stream_id: str):
        """Point the session at a stream and flush candidates gathered before it."""
        self.refs = make_channel_refs(self.store, stream_id)

        pending, self._pending_candidates = self._pending_candidates, []
        if pending:
            logger.info("Flushing {} early ICE candidates to {}", len(pending), stream_id)
        for payload in pending:
            await self._send_candidate(payload)

    async def handle_local_candidate(self, candidate: Any):
        payload = serialize_ice_candidate(candidate)
        if payload is None:
            return
        if self.refs is None:
            self._pending_candidates.append(payload)
            return
        await self._send_candidate(payload)

    async def _send_candidate(self, payload: dict[str, Any]):
        try:
            await safe_add(
                self.refs.candidates_ref,
                {"from": self.user_id, "role": self.role.value, **payload},
                "ice",
            )
        except Exception as e:
            # Already logged by the channel; one lost candidate does not end negotiation
            logger.warning("ICE candidate not sent: {}", e)

    async def _emit_local_candidates(self):
        """Send the candidates aiortc embedded in the local description."""
        description = self.pc.localDescription if self.pc else None
        if description is None:
            return

        for index, media in enumerate(SessionDescription.parse(description.sdp).media):
            for candidate in media.ice_candidates:
                candidate.sdpMid = media.rtp.muxId
                candidate.sdpMLineIndex = index
                await self.handle_local_candidate(candidate)

    # ==================== REMOTE RECORDS ====================

    def _subscribe(self, ref: CollectionRef, apply: Callable[[dict[str, Any]], Awaitable[None]], label: str):
        applied: set[str] = set()

        async def on_changes(changes: list[DocumentChange]):
            for change in changes:
                if change.type is not ChangeType.ADDED or change.doc.id in applied:
                    continue
                applied.add(change.doc.id)
                try:
                    await apply(change.doc.to_dict())
                except (ValidationError, ValueError) as e:
                    logger.warning("Malformed {} record {}: {}", label, change.doc.path, e)
                except Exception as e:
                    logger.warning("Cannot apply {} record {}: {}", label, change.doc.path, e)

        self._subscriptions.append(self.store.subscribe(ref, on_changes))

    async def _apply_answer(self, data: dict[str, Any]):
        record = AnswerRecord.model_validate(data)
        if self.pc is None or self.pc.signalingState != "have-local-offer":
            logger.info("Skipping answer from {}: signaling state is not have-local-offer", record.sender)
            return
        await self.pc.setRemoteDescription(parse_description(record.answer.model_dump()))
        logger.info("Applied answer from {}", record.sender)

    async def _apply_candidate(self, data: dict[str, Any]):
        record = CandidateRecord.model_validate(data)
        if record.role != self.role.remote or self.pc is None:
            return
        await self.pc.addIceCandidate(parse_ice_candidate(record))
        logger.debug("Applied {} candidate from {}", record.role, record.sender)

    # ==================== NEGOTIATION ====================

    async def start_host(self, stream_id: str, tracks: Iterable[MediaStreamTrack]):
        """Publish local tracks: write the offer, then listen for answers and candidates."""
        if self.pc is None:
            await self.create_connection()
        await self.bind_stream(stream_id)

        kinds = set()
        for track in tracks:
            self.pc.addTrack(track)
            kinds.add(track.kind)
        # Offer to receive both kinds even without a local track of that kind
        for kind in ("audio", "video"):
            if kind not in kinds:
                self.pc.addTransceiver(kind, direction="recvonly")

        await self.pc.setLocalDescription(await self.pc.createOffer())
        await safe_set(
            self.refs.base_doc,
            {"from": self.user_id, "offer": serialize_offer(self.pc.localDescription)},
            "offer",
        )
        await self._emit_local_candidates()

        self._subscribe(self.refs.answers_ref, self._apply_answer, "answer")
        self._subscribe(self.refs.candidates_ref, self._apply_candidate, "candidate")

    async def _read_offer(self) -> SessionDescriptionPayload | None:
        snapshot = await self.store.get(self.refs.base_doc)
        try:
            return SignalBaseRecord.model_validate(snapshot.to_dict()).offer
        except ValidationError as e:
            logger.warning("Ignoring malformed signaling document {}: {}", snapshot.path, e)
            return None

    async def _wait_for_offer(self) -> SessionDescriptionPayload | None:
        offer = await self._read_offer()
        if offer is not None:
            return offer

        self._status("Waiting for host offer…")
        interval = self._cfg.OFFER_POLL_INTERVAL_MS / 1000
        for _ in range(self._cfg.OFFER_POLL_MAX_ATTEMPTS):
            await asyncio.sleep(interval)
            offer = await self._read_offer()
            if offer is not None:
                return offer
        return None

    async def join_viewer(self, stream_id: str):
        """Answer the host's offer, then listen for host candidates.

        Raises:
            AppError: E_NO_OFFER_FOUND when the offer does not appear in time
        """
        await self.bind_stream(stream_id)

        offer = await self._wait_for_offer()
        if offer is None:
            raise AppError(
                errcode=AppErrorCode.E_NO_OFFER_FOUND,
                errmesg=NO_OFFER_MESSAGE,
                status_code=HttpStatusCode.GATEWAY_TIMEOUT,
            )

        if self.pc is None:
            await self.create_connection()
        await self.pc.setRemoteDescription(parse_description(offer.model_dump()))
        await self.pc.setLocalDescription(await self.pc.createAnswer())
        await safe_add(
            self.refs.answers_ref,
            {"from": self.user_id, "answer": serialize_answer(self.pc.localDescription)},
            "answer",
        )
        await self._emit_local_candidates()

        self._subscribe(self.refs.candidates_ref, self._apply_candidate, "candidate")

    def replace_video_track(self, track: MediaStreamTrack) -> bool:
        """Swap the outgoing video track without renegotiating."""
        if self.pc is None:
            return False
        for sender in self.pc.getSenders():
            if sender.kind == "video":
                sender.replaceTrack(track)
                logger.info("Replaced outgoing video track")
                return True
        return False
