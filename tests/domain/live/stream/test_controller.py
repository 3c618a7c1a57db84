"""Tests for StreamLifecycleController."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from livesignal.domain.live.signaling import make_channel_refs
from livesignal.domain.live.stream.controller import StreamLifecycleController
from livesignal.domain.live.stream.directory import LiveStreamDirectory
from livesignal.schemas import PeerState, StreamRole, StreamStartState
from livesignal.services.auth import AuthUser, StaticAuthProvider
from livesignal.services.credential_gate import CredentialGate
from livesignal.services.media import PERMISSION_DENIED_MESSAGE, MediaError, MediaPermissionError
from livesignal.utils.app_errors import AppError, AppErrorCode
from tests.fixtures.fakes import FakeMediaSource, StaticGate


@pytest.fixture
def user() -> AuthUser:
    return AuthUser(uid="U1", display_name="Streamer One")


@pytest.fixture
def auth(user) -> StaticAuthProvider:
    return StaticAuthProvider(user)


@pytest.fixture
def media_source() -> FakeMediaSource:
    return FakeMediaSource()


@pytest.fixture
def statuses() -> list[str]:
    return []


@pytest.fixture
def make_controller(store, auth, media_source, statuses, make_peer, cfg):
    def factory(gate: CredentialGate | None = None, **kwargs) -> StreamLifecycleController:
        kwargs.setdefault("peer_factory", lambda uid, role: make_peer(uid, role, on_status=statuses.append))
        return StreamLifecycleController(
            store,
            kwargs.pop("auth", auth),
            kwargs.pop("media_source", media_source),
            gate or StaticGate(True),
            on_status=statuses.append,
            cfg=cfg,
            **kwargs,
        )

    return factory


@pytest.fixture
def controller(make_controller) -> StreamLifecycleController:
    return make_controller()


class TestStartStream:
    async def test_start_goes_live(self, controller, store, statuses, connections):
        session = await controller.start_stream()

        assert session is controller.session
        assert session.role is StreamRole.HOST
        assert session.stream_id.startswith("U1-")
        assert session.streamer_name == "Streamer One"
        assert controller.state is StreamStartState.ACTIVE
        assert statuses[0] == "Requesting camera/mic…"
        assert statuses[-1] == "LIVE: Streamer One"

        stream = (await store.get(store.document(f"liveStreams/{session.stream_id}"))).data
        assert stream["id"] == session.stream_id
        assert stream["streamerUid"] == "U1"
        assert stream["streamerName"] == "Streamer One"
        assert stream["live"] is True
        assert stream["createdAt"] is not None

        signal = (await store.get(make_channel_refs(store, session.stream_id).base_doc)).data
        assert signal["from"] == "U1"
        assert signal["live"] is True
        assert signal["offer"]["type"] == "offer"
        assert [s.kind for s in connections.last.getSenders()] == ["audio", "video"]

    async def test_requires_user(self, make_controller):
        controller = make_controller(auth=StaticAuthProvider())

        with pytest.raises(AppError) as exc_info:
            await controller.start_stream()

        assert exc_info.value.errcode == AppErrorCode.E_UNAUTHENTICATED.value
        assert controller.state is StreamStartState.IDLE

    async def test_start_outside_idle_is_ignored(self, controller, media_source):
        await controller.start_stream()

        assert await controller.start_stream() is None
        assert len(media_source.opened) == 1

    async def test_concurrent_start_runs_once(self, make_controller, media_source):
        release = asyncio.Event()

        class SlowGate(CredentialGate):
            async def confirm(self) -> bool:
                await release.wait()
                return True

        controller = make_controller(SlowGate())
        first = asyncio.create_task(controller.start_stream())
        await asyncio.sleep(0)

        assert controller.state is StreamStartState.VALIDATING_CREDENTIAL
        assert await controller.start_stream() is None

        release.set()
        assert (await first) is not None
        assert len(media_source.opened) == 1

    async def test_gate_cancel(self, make_controller, media_source, connections):
        controller = make_controller(StaticGate(False))

        assert await controller.start_stream() is None
        assert controller.state is StreamStartState.IDLE
        assert media_source.opened == []
        assert connections.connections == []

    async def test_permission_denied(self, make_controller, statuses, connections):
        controller = make_controller(media_source=FakeMediaSource(error=MediaPermissionError("denied")))

        with pytest.raises(AppError) as exc_info:
            await controller.start_stream()

        assert exc_info.value.errcode == AppErrorCode.E_MEDIA_PERMISSION_DENIED.value
        assert exc_info.value.errmesg == PERMISSION_DENIED_MESSAGE
        assert exc_info.value.status_code == 403
        assert controller.state is StreamStartState.IDLE
        assert statuses[-1].startswith("Error: ")
        assert connections.connections == []

    async def test_store_failure_rolls_back(self, controller, store, media_source, statuses):
        store.set = AsyncMock(side_effect=RuntimeError("write rejected"))

        with pytest.raises(AppError) as exc_info:
            await controller.start_stream()

        assert exc_info.value.errcode == AppErrorCode.E_STREAM_START_FAILED.value
        assert exc_info.value.errmesg == "Live streaming failed: write rejected"
        assert controller.state is StreamStartState.IDLE
        assert controller.session is None
        assert all(t.source.stopped for t in media_source.opened[0].tracks)
        assert statuses[-1] == "Error: write rejected"

    async def test_negotiation_failure_closes_connection(self, make_controller, connections, make_peer):
        def broken_peer(uid, role):
            peer = make_peer(uid, role)

            async def start_host(stream_id, tracks):
                await peer.create_connection()
                raise RuntimeError("createOffer failed")

            peer.start_host = start_host
            return peer

        controller = make_controller(peer_factory=broken_peer)

        with pytest.raises(AppError):
            await controller.start_stream()

        assert connections.last.closed
        assert controller.state is StreamStartState.IDLE

    async def test_stop_during_start_aborts_it(self, make_controller, media_source, connections):
        release = asyncio.Event()

        class SlowGate(CredentialGate):
            async def confirm(self) -> bool:
                await release.wait()
                return True

        controller = make_controller(SlowGate())
        start = asyncio.create_task(controller.start_stream())
        await asyncio.sleep(0)

        await controller.stop_stream()
        release.set()

        assert await start is None
        assert controller.state is StreamStartState.IDLE
        assert controller.session is None
        assert media_source.opened == []
        assert connections.connections == []

    async def test_failed_start_is_not_listed_live(self, make_controller, make_peer, store, cfg):
        def broken_peer(uid, role):
            peer = make_peer(uid, role)

            async def start_host(stream_id, tracks):
                raise RuntimeError("createOffer failed")

            peer.start_host = start_host
            return peer

        controller = make_controller(peer_factory=broken_peer)

        with pytest.raises(AppError):
            await controller.start_stream()

        assert await LiveStreamDirectory(store, cfg).list_live() == []
        [stream] = await store.documents(store.collection("liveStreams"))
        assert stream.data["live"] is False
        assert (await store.get(make_channel_refs(store, stream.id).base_doc)).data["live"] is False

    async def test_stop_during_negotiation_is_not_listed_live(self, make_controller, make_peer, store, cfg):
        negotiating = asyncio.Event()
        release = asyncio.Event()

        def slow_peer(uid, role):
            peer = make_peer(uid, role)

            async def start_host(stream_id, tracks):
                negotiating.set()
                await release.wait()

            peer.start_host = start_host
            return peer

        controller = make_controller(peer_factory=slow_peer)
        start = asyncio.create_task(controller.start_stream())
        await negotiating.wait()
        assert len(await LiveStreamDirectory(store, cfg).list_live()) == 1

        await controller.stop_stream()
        release.set()

        assert await start is None
        assert controller.state is StreamStartState.IDLE
        assert await LiveStreamDirectory(store, cfg).list_live() == []


class TestStopStream:
    async def test_stop_marks_records_not_live(self, controller, store, statuses):
        session = await controller.start_stream()
        pc = session.peer.pc

        await controller.stop_stream()

        assert controller.state is StreamStartState.IDLE
        assert controller.session is None
        assert statuses[-1] == "Stopped"
        assert pc.closed
        assert session.peer.state is PeerState.CLOSED
        assert all(t.source.stopped for t in session.media.tracks)
        assert (await store.get(store.document(f"liveStreams/{session.stream_id}"))).data["live"] is False
        assert (await store.get(make_channel_refs(store, session.stream_id).base_doc)).data["live"] is False

    async def test_stop_when_idle(self, controller, statuses):
        await controller.stop_stream()
        await controller.stop_stream()

        assert controller.state is StreamStartState.IDLE
        assert statuses == ["Stopped", "Stopped"]

    async def test_stop_survives_store_failure(self, controller, store, statuses):
        await controller.start_stream()
        store.update = AsyncMock(side_effect=RuntimeError("offline"))

        await controller.stop_stream()

        assert controller.state is StreamStartState.IDLE
        assert statuses[-1] == "Stopped"

    async def test_stop_after_failed_start(self, make_controller, statuses):
        controller = make_controller(media_source=FakeMediaSource(error=MediaError("no camera")))
        with pytest.raises(AppError):
            await controller.start_stream()

        await controller.stop_stream()

        assert controller.state is StreamStartState.IDLE
        assert statuses[-1] == "Stopped"

    async def test_restart_after_stop(self, controller):
        await controller.start_stream()
        await controller.stop_stream()

        assert await controller.start_stream() is not None
        assert controller.state is StreamStartState.ACTIVE


class TestJoinStream:
    async def test_join_without_offer(self, make_controller, statuses, connections):
        controller = make_controller(auth=StaticAuthProvider(AuthUser(uid="U2")))

        with pytest.raises(AppError) as exc_info:
            await controller.join_stream("U9-9999")

        assert exc_info.value.errcode == AppErrorCode.E_NO_OFFER_FOUND.value
        assert statuses[-1] == "Error: No offer found yet."
        assert controller.session is None
        assert connections.connections == []

    async def test_join_requires_user(self, make_controller):
        controller = make_controller(auth=StaticAuthProvider())

        with pytest.raises(AppError) as exc_info:
            await controller.join_stream("U1-1000")

        assert exc_info.value.errcode == AppErrorCode.E_UNAUTHENTICATED.value

    async def test_join_while_hosting_is_rejected(self, controller):
        await controller.start_stream()

        with pytest.raises(AppError) as exc_info:
            await controller.join_stream("U9-9999")

        assert exc_info.value.errcode == AppErrorCode.E_INVALID_REQUEST.value
        assert controller.session.role is StreamRole.HOST


class TestLocalMediaControls:
    async def test_toggles(self, controller):
        assert controller.toggle_audio() is False

        session = await controller.start_stream()

        assert controller.toggle_audio() is False
        assert session.media.audio.enabled is False
        assert controller.toggle_video() is False
        assert controller.toggle_video() is True
        assert controller.toggle_audio() is True

    async def test_share_screen(self, controller):
        session = await controller.start_stream()
        camera = session.media.video

        assert await controller.share_screen() is True
        assert session.media.video is not camera
        assert camera.source.stopped
        video_senders = [s for s in session.peer.pc.getSenders() if s.kind == "video"]
        assert video_senders[0].track is session.media.video

    async def test_share_screen_needs_live_stream(self, controller):
        assert await controller.share_screen() is False

    async def test_share_screen_failure(self, make_controller):
        controller = make_controller(media_source=FakeMediaSource(display_error=MediaError("no display")))
        session = await controller.start_stream()
        camera = session.media.video

        assert await controller.share_screen() is False
        assert session.media.video is camera

    async def test_snapshot(self, controller):
        session = await controller.start_stream()

        snapshot = controller.snapshot()

        assert snapshot.start_state is StreamStartState.ACTIVE
        assert snapshot.role is StreamRole.HOST
        assert snapshot.stream_id == session.stream_id
        assert snapshot.peer_state is PeerState.CONNECTING
