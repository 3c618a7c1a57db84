"""Common enums used across schemas."""

from enum import Enum


class StreamRole(str, Enum):
    """Which side of a stream a participant is on.

    Candidate records are tagged with the sender's role so each side only
    applies the other side's candidates.
    """

    HOST = "host"
    VIEWER = "viewer"

    def __str__(self) -> str:
        return self.value

    @property
    def remote(self) -> "StreamRole":
        return StreamRole.VIEWER if self is StreamRole.HOST else StreamRole.HOST


class StreamStartState(str, Enum):
    """Start guard states of the stream lifecycle controller.

    IDLE → VALIDATING_CREDENTIAL → ACQUIRING_MEDIA → ACTIVE

    IDLE is both the initial state and the state every failure returns to.
    A start request is accepted only from IDLE.
    """

    IDLE = "idle"
    VALIDATING_CREDENTIAL = "validating-credential"
    ACQUIRING_MEDIA = "acquiring-media"
    ACTIVE = "active"

    def __str__(self) -> str:
        return self.value


class PeerState(str, Enum):
    """Peer session states.

    UNINITIALIZED → CONNECTING → CONNECTED → (FAILED | CLOSED)

    - CONNECTING: a connection handle was built.
    - CONNECTED/FAILED: reported by the transport, never self-assigned.
    - CLOSED: explicit close.
    """

    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"
    CLOSED = "closed"

    def __str__(self) -> str:
        return self.value


__all__ = ["PeerState", "StreamRole", "StreamStartState"]
