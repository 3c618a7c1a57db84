"""Stream domain models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone

from pydantic import BaseModel

from livesignal.schemas import PeerState, StreamRole, StreamStartState
from livesignal.services.media import LocalMedia

from .peer_session import PeerSession


@dataclass
class StreamSession:
    """One participant's stream: created on start or join, dropped on stop."""

    stream_id: str
    role: StreamRole
    user_id: str
    peer: PeerSession
    media: LocalMedia | None = None
    streamer_name: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class LiveStreamResponse(BaseModel):
    """A live stream as listed by the directory."""

    stream_id: str
    streamer_uid: str
    streamer_name: str
    live: bool
    created_at: datetime | None = None


class StreamStatusResponse(LiveStreamResponse):
    """A stream record joined with its signaling state."""

    has_offer: bool = False
    answer_count: int = 0
    host_candidate_count: int = 0
    viewer_candidate_count: int = 0


class ControllerSnapshot(BaseModel):
    """Current controller state, as reported by the agent CLI."""

    start_state: StreamStartState
    role: StreamRole | None = None
    stream_id: str | None = None
    peer_state: PeerState | None = None
    status: str = ""
