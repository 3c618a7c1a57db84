"""
Stream lifecycle controller: start, stop and join streams.

Start runs IDLE -> VALIDATING_CREDENTIAL -> ACQUIRING_MEDIA -> ACTIVE and
is accepted only from IDLE, so a start requested while another is in
flight does nothing. Any failure closes what was built and returns to IDLE.
Stop is unconditional: it tears down what exists, marks the stream records
no longer live (best-effort) and always ends in IDLE.
"""

from collections.abc import Callable

from loguru import logger

from livesignal.app_config import AppEnvironConfig, get_app_environ_config
from livesignal.domain.live.signaling import safe_set
from livesignal.domain.utils.idgen import new_stream_id
from livesignal.schemas import StreamRole, StreamStartState
from livesignal.services.auth import AuthProvider, AuthUser
from livesignal.services.credential_gate import CredentialGate
from livesignal.services.media import (
    PERMISSION_DENIED_MESSAGE,
    LocalMedia,
    MediaError,
    MediaPermissionError,
    MediaSource,
)
from livesignal.services.store import SERVER_TIMESTAMP, DocumentRef, DocumentStore
from livesignal.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

from .peer_session import PeerSession, StatusCallback
from .stream_models import ControllerSnapshot, StreamSession
from .stream_state_machine import StreamStartStateMachine

PeerFactory = Callable[[str, StreamRole], PeerSession]


class _StartAborted(Exception):
    """Raised inside start when a stop happened while it was suspended."""


class StreamLifecycleController:
    def __init__(
        self,
        store: DocumentStore,
        auth: AuthProvider,
        media_source: MediaSource,
        credential_gate: CredentialGate,
        *,
        on_status: StatusCallback | None = None,
        peer_factory: PeerFactory | None = None,
        cfg: AppEnvironConfig | None = None,
    ):
        self.store = store
        self._auth = auth
        self._media_source = media_source
        self._gate = credential_gate
        self._on_status = on_status
        self._cfg = cfg or get_app_environ_config()
        self._peer_factory = peer_factory or self._default_peer

        self.state = StreamStartState.IDLE
        self.session: StreamSession | None = None
        self.status = ""
        # Bumped by every stop so a suspended start can tell it was cancelled
        self._generation = 0

    def _default_peer(self, user_id: str, role: StreamRole) -> PeerSession:
        return PeerSession(self.store, user_id, role, on_status=self._set_status, cfg=self._cfg)

    def _set_status(self, text: str):
        self.status = text
        logger.info("[LIVE] {}", text)
        if self._on_status is not None:
            self._on_status(text)

    def _set_state(self, new: StreamStartState):
        if not StreamStartStateMachine.can_transition(self.state, new):
            logger.warning("Invalid stream start transition: {} -> {}", self.state, new)
        self.state = new

    def _stream_doc(self, stream_id: str) -> DocumentRef:
        return self.store.collection(self._cfg.STREAMS_COLLECTION).document(stream_id)

    def _signal_doc(self, stream_id: str) -> DocumentRef:
        return self.store.collection(self._cfg.SIGNALS_COLLECTION).document(stream_id)

    def _require_user(self, action: str) -> AuthUser:
        user = self._auth.current_user
        if user is None:
            raise AppError(
                errcode=AppErrorCode.E_UNAUTHENTICATED,
                errmesg=f"Log in first to {action}",
                status_code=HttpStatusCode.UNAUTHORIZED,
            )
        return user

    def _ensure_current(self, generation: int):
        if generation != self._generation:
            raise _StartAborted()

    def snapshot(self) -> ControllerSnapshot:
        session = self.session
        return ControllerSnapshot(
            start_state=self.state,
            role=session.role if session else None,
            stream_id=session.stream_id if session else None,
            peer_state=session.peer.state if session else None,
            status=self.status,
        )

    # ==================== HOST ====================

    async def start_stream(self) -> StreamSession | None:
        """Go live as host.

        Returns the new session, or None when a start is already in flight,
        the credential prompt was cancelled or a stop interrupted the start.

        Raises:
            AppError: E_UNAUTHENTICATED, E_MEDIA_PERMISSION_DENIED or E_STREAM_START_FAILED
        """
        user = self._require_user("start streaming")

        if not StreamStartStateMachine.can_start(self.state):
            logger.info("Stream start ignored: state={}", self.state)
            return None

        generation = self._generation
        self._set_state(StreamStartState.VALIDATING_CREDENTIAL)

        media: LocalMedia | None = None
        peer: PeerSession | None = None
        # Set once the stream record exists, so rollback can take it off the live list
        published_id: str | None = None
        try:
            if not await self._gate.confirm():
                self._ensure_current(generation)
                logger.info("Stream start cancelled at credential check")
                self._set_state(StreamStartState.IDLE)
                return None
            self._ensure_current(generation)

            self._set_state(StreamStartState.ACQUIRING_MEDIA)
            if self.session is not None:
                # Going live ends any stream being watched
                await self._teardown(self.session)
                self.session = None

            self._set_status("Requesting camera/mic…")
            media = await self._media_source.get_user_media(video=True, audio=True)
            self._ensure_current(generation)

            stream_id = new_stream_id(user.uid)
            streamer_name = user.streamer_name

            await safe_set(self._stream_doc(stream_id), {
                "id": stream_id,
                "streamerUid": user.uid,
                "streamerName": streamer_name,
                "live": True,
                "createdAt": SERVER_TIMESTAMP,
            }, "stream")
            published_id = stream_id
            await safe_set(self._signal_doc(stream_id), {
                "from": user.uid,
                "live": True,
                "createdAt": SERVER_TIMESTAMP,
            }, "signal-root")
            self._ensure_current(generation)

            peer = self._peer_factory(user.uid, StreamRole.HOST)
            await peer.create_connection()
            await peer.start_host(stream_id, media.tracks)
            self._ensure_current(generation)

            self.session = StreamSession(
                stream_id=stream_id,
                role=StreamRole.HOST,
                user_id=user.uid,
                peer=peer,
                media=media,
                streamer_name=streamer_name,
            )
            self._set_state(StreamStartState.ACTIVE)

        except _StartAborted:
            logger.info("Stream start interrupted by stop")
            await self._rollback(peer, media)
            await self._mark_not_live(published_id)
            return None

        except MediaPermissionError as e:
            await self._rollback(peer, media)
            await self._mark_not_live(published_id)
            self._fail(str(e))
            raise AppError(
                errcode=AppErrorCode.E_MEDIA_PERMISSION_DENIED,
                errmesg=PERMISSION_DENIED_MESSAGE,
                status_code=HttpStatusCode.FORBIDDEN,
            ) from e

        except Exception as e:
            logger.exception("Stream start failed: {}", e)
            await self._rollback(peer, media)
            await self._mark_not_live(published_id)
            message = e.errmesg if isinstance(e, AppError) else (str(e) or type(e).__name__)
            self._fail(message)
            raise AppError(
                errcode=AppErrorCode.E_STREAM_START_FAILED,
                errmesg=f"Live streaming failed: {message}",
                status_code=HttpStatusCode.INTERNAL_SERVER_ERROR,
            ) from e

        finally:
            if self.state is not StreamStartState.ACTIVE and generation == self._generation:
                self.state = StreamStartState.IDLE

        self._set_status(f"LIVE: {streamer_name}")
        return self.session

    def _fail(self, message: str):
        self._set_state(StreamStartState.IDLE)
        self._set_status(f"Error: {message}")

    async def _rollback(self, peer: PeerSession | None, media: LocalMedia | None):
        if peer is not None:
            try:
                await peer.close()
            except Exception as e:
                logger.warning("Rollback: closing peer session failed: {}", e)
        if media is not None:
            try:
                media.stop()
            except Exception as e:
                logger.warning("Rollback: stopping media failed: {}", e)

    async def _teardown(self, session: StreamSession):
        await self._rollback(session.peer, session.media)

        if session.role is StreamRole.HOST:
            await self._mark_not_live(session.stream_id)

    async def _mark_not_live(self, stream_id: str | None):
        if stream_id is None:
            return
        for ref in (self._stream_doc(stream_id), self._signal_doc(stream_id)):
            try:
                await self.store.update(ref, {"live": False})
            except Exception as e:
                logger.warning("Cannot mark {} as not live: {}", ref.path, e)

    async def stop_stream(self):
        """Stop hosting or viewing. Always ends in IDLE with status `Stopped`."""
        self._generation += 1
        session, self.session = self.session, None
        try:
            if session is not None:
                await self._teardown(session)
        finally:
            self.state = StreamStartState.IDLE
            self._set_status("Stopped")

    # ==================== VIEWER ====================

    async def join_stream(self, stream_id: str) -> StreamSession:
        """Watch a stream.

        Raises:
            AppError: E_UNAUTHENTICATED, E_INVALID_REQUEST while hosting,
                E_NO_OFFER_FOUND when the host offer never appears
        """
        user = self._require_user("join streams")

        hosting = self.session is not None and self.session.role is StreamRole.HOST
        if self.state is not StreamStartState.IDLE or hosting:
            raise AppError(
                errcode=AppErrorCode.E_INVALID_REQUEST,
                errmesg="Stop your live stream before joining another one",
                status_code=HttpStatusCode.CONFLICT,
            )

        if self.session is not None:
            await self._teardown(self.session)
            self.session = None

        peer = self._peer_factory(user.uid, StreamRole.VIEWER)
        try:
            await peer.join_viewer(stream_id)
        except Exception as e:
            await self._rollback(peer, None)
            message = e.errmesg if isinstance(e, AppError) else (str(e) or type(e).__name__)
            self._set_status(f"Error: {message}")
            raise

        self.session = StreamSession(
            stream_id=stream_id,
            role=StreamRole.VIEWER,
            user_id=user.uid,
            peer=peer,
        )
        self._set_status(f"Viewing: {stream_id}")
        return self.session

    # ==================== LOCAL MEDIA ====================

    def _toggle(self, kind: str) -> bool:
        media = self.session.media if self.session else None
        track = getattr(media, kind, None) if media else None
        if track is None:
            logger.info("No {} track available", kind)
            return False
        track.enabled = not track.enabled
        logger.info("{} {}", kind.capitalize(), "enabled" if track.enabled else "disabled")
        return track.enabled

    def toggle_audio(self) -> bool:
        return self._toggle("audio")

    def toggle_video(self) -> bool:
        return self._toggle("video")

    async def share_screen(self) -> bool:
        """Replace the outgoing camera video with a screen capture.

        Returns False, after logging, when there is no live host session or
        screen capture fails.
        """
        session = self.session
        if session is None or session.role is not StreamRole.HOST or session.media is None:
            logger.info("Screen sharing needs an active live stream")
            return False

        try:
            track = await self._media_source.get_display_media()
        except MediaError as e:
            logger.error("Screen sharing failed: {}", e)
            return False

        replaced = session.peer.replace_video_track(session.media.replace_video(track))
        if replaced:
            logger.info("Screen sharing started")
        return replaced
