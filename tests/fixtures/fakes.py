"""In-process stand-ins for aiortc connections, capture devices and prompts."""

import inspect
from collections.abc import Callable
from typing import Any

from aiortc import MediaStreamTrack, RTCSessionDescription
from aiortc.mediastreams import MediaStreamError

from livesignal.services.credential_gate import CredentialGate
from livesignal.services.media import LocalMedia, MediaSource

HOST_CANDIDATE = "candidate:1 1 udp 2130706431 10.0.0.1 50000 typ host"
VIEWER_CANDIDATE = "candidate:2 1 udp 2130706431 10.0.0.2 50001 typ host"


def fake_sdp(candidate: str | None = HOST_CANDIDATE) -> str:
    lines = [
        "v=0",
        "o=- 1 1 IN IP4 0.0.0.0",
        "s=-",
        "t=0 0",
        "m=audio 9 UDP/TLS/RTP/SAVPF 111",
        "c=IN IP4 0.0.0.0",
        "a=mid:0",
        "a=rtpmap:111 opus/48000/2",
    ]
    if candidate:
        lines.append(f"a={candidate}")
    return "\r\n".join(lines) + "\r\n"


class FakeSender:
    def __init__(self, kind: str, track: MediaStreamTrack | None):
        self.kind = kind
        self.track = track

    def replaceTrack(self, track: MediaStreamTrack | None):
        self.track = track


class FakePeerConnection:
    """Records what a peer session does to its connection."""

    def __init__(self, configuration=None, *, local_candidate: str | None = HOST_CANDIDATE):
        self.configuration = configuration
        self.local_candidate = local_candidate
        self.handlers: dict[str, list[Callable[..., Any]]] = {}

        self.connectionState = "new"
        self.signalingState = "stable"
        self.localDescription: RTCSessionDescription | None = None
        self.remoteDescription: RTCSessionDescription | None = None

        self.senders: list[FakeSender] = []
        self.transceivers: list[tuple[str, str]] = []
        self.candidates: list[Any] = []
        self.remote_descriptions: list[RTCSessionDescription] = []
        self.closed = False

    def on(self, event: str, handler: Callable[..., Any]):
        self.handlers.setdefault(event, []).append(handler)
        return handler

    def remove_listener(self, event: str, handler: Callable[..., Any]):
        self.handlers.get(event, []).remove(handler)

    async def emit(self, event: str, *args):
        for handler in list(self.handlers.get(event, [])):
            result = handler(*args)
            if inspect.isawaitable(result):
                await result

    async def set_connection_state(self, state: str):
        self.connectionState = state
        await self.emit("connectionstatechange")

    def addTrack(self, track: MediaStreamTrack) -> FakeSender:
        sender = FakeSender(track.kind, track)
        self.senders.append(sender)
        return sender

    def addTransceiver(self, kind: str, direction: str = "sendrecv"):
        self.transceivers.append((kind, direction))

    def getSenders(self) -> list[FakeSender]:
        return list(self.senders)

    async def createOffer(self) -> RTCSessionDescription:
        return RTCSessionDescription(sdp=fake_sdp(self.local_candidate), type="offer")

    async def createAnswer(self) -> RTCSessionDescription:
        return RTCSessionDescription(sdp=fake_sdp(self.local_candidate), type="answer")

    async def setLocalDescription(self, description: RTCSessionDescription):
        self.localDescription = description
        self.signalingState = "have-local-offer" if description.type == "offer" else "stable"

    async def setRemoteDescription(self, description: RTCSessionDescription):
        self.remoteDescription = description
        self.remote_descriptions.append(description)
        self.signalingState = "have-remote-offer" if description.type == "offer" else "stable"

    async def addIceCandidate(self, candidate):
        self.candidates.append(candidate)

    async def close(self):
        self.closed = True
        self.connectionState = "closed"


class ConnectionRecorder:
    """Connection factory that keeps every connection it built."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.connections: list[FakePeerConnection] = []

    def __call__(self, configuration) -> FakePeerConnection:
        pc = FakePeerConnection(configuration, **self.kwargs)
        self.connections.append(pc)
        return pc

    @property
    def last(self) -> FakePeerConnection:
        return self.connections[-1]


class FakeTrack(MediaStreamTrack):
    def __init__(self, kind: str):
        super().__init__()
        self.kind = kind
        self.stopped = False

    async def recv(self):
        raise MediaStreamError

    def stop(self):
        self.stopped = True
        super().stop()


class FakeMediaSource(MediaSource):
    def __init__(self, *, error: Exception | None = None, display_error: Exception | None = None):
        self.error = error
        self.display_error = display_error
        self.opened: list[LocalMedia] = []

    async def get_user_media(self, video: bool = True, audio: bool = True) -> LocalMedia:
        if self.error is not None:
            raise self.error
        media = LocalMedia(
            audio=FakeTrack("audio") if audio else None,
            video=FakeTrack("video") if video else None,
        )
        self.opened.append(media)
        return media

    async def get_display_media(self) -> MediaStreamTrack:
        if self.display_error is not None:
            raise self.display_error
        return FakeTrack("video")


class FakeSink:
    def __init__(self):
        self.tracks: list[MediaStreamTrack] = []
        self.stopped = False

    async def attach(self, track: MediaStreamTrack) -> bool:
        self.tracks.append(track)
        return True

    async def stop(self):
        self.stopped = True


class StaticGate(CredentialGate):
    def __init__(self, result: bool = True):
        self.result = result
        self.calls = 0

    async def confirm(self) -> bool:
        self.calls += 1
        return self.result


class ScriptedPrompt:
    """Prompt function answering from a list; None entries cancel."""

    def __init__(self, answers: list[str | None]):
        self.answers = list(answers)
        self.messages: list[str] = []

    async def __call__(self, message: str) -> str | None:
        self.messages.append(message)
        return self.answers.pop(0)
