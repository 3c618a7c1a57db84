"""State machines for peer sessions and the stream start guard."""

from livesignal.schemas import PeerState, StreamStartState


class PeerStateMachine:
    """State machine for peer session transitions.

    State flow with triggers:
    - UNINITIALIZED -> CONNECTING (connection handle built) | CLOSED
    - CONNECTING -> CONNECTED (transport reports connected) | FAILED | CLOSED
    - CONNECTED -> FAILED (transport reports failure) | CLOSED
    - FAILED -> CLOSED (explicit close)
    - CLOSED is terminal

    CONNECTED and FAILED only ever come from the transport's
    connection-state events. FAILED is not retried; the controller decides
    whether to start over with a new session.
    """

    TRANSITIONS: dict[PeerState, set[PeerState]] = {
        PeerState.UNINITIALIZED: {PeerState.CONNECTING, PeerState.CLOSED},
        PeerState.CONNECTING: {PeerState.CONNECTED, PeerState.FAILED, PeerState.CLOSED},
        PeerState.CONNECTED: {PeerState.FAILED, PeerState.CLOSED},
        PeerState.FAILED: {PeerState.CLOSED},
        PeerState.CLOSED: set(),
    }

    TERMINAL_STATES: set[PeerState] = {PeerState.CLOSED}

    # aiortc RTCPeerConnection.connectionState values
    TRANSPORT_STATES: dict[str, PeerState] = {
        "new": PeerState.CONNECTING,
        "connecting": PeerState.CONNECTING,
        "connected": PeerState.CONNECTED,
        "failed": PeerState.FAILED,
        "closed": PeerState.CLOSED,
    }

    @classmethod
    def can_transition(cls, current: PeerState, new: PeerState) -> bool:
        """Check if state transition is valid.

        Args:
            current: Current peer state
            new: Target state to transition to

        Returns:
            True if transition is valid, False otherwise
        """
        return new in cls.TRANSITIONS.get(current, set())

    @classmethod
    def is_terminal(cls, state: PeerState) -> bool:
        return state in cls.TERMINAL_STATES

    @classmethod
    def from_transport(cls, connection_state: str) -> PeerState | None:
        """Map a transport connection state to a peer state, None if unknown."""
        return cls.TRANSPORT_STATES.get(connection_state)


class StreamStartStateMachine:
    """State machine guarding stream start.

    State flow:
    - IDLE -> VALIDATING_CREDENTIAL (start requested)
    - VALIDATING_CREDENTIAL -> ACQUIRING_MEDIA (credential accepted) | IDLE (cancelled)
    - ACQUIRING_MEDIA -> ACTIVE (offer sent) | IDLE (any failure)
    - ACTIVE -> IDLE (stop)

    Stop resets to IDLE from any state without consulting this table.
    """

    TRANSITIONS: dict[StreamStartState, set[StreamStartState]] = {
        StreamStartState.IDLE: {StreamStartState.VALIDATING_CREDENTIAL},
        StreamStartState.VALIDATING_CREDENTIAL: {
            StreamStartState.ACQUIRING_MEDIA,
            StreamStartState.IDLE,
        },
        StreamStartState.ACQUIRING_MEDIA: {
            StreamStartState.ACTIVE,
            StreamStartState.IDLE,
        },
        StreamStartState.ACTIVE: {StreamStartState.IDLE},
    }

    @classmethod
    def can_transition(cls, current: StreamStartState, new: StreamStartState) -> bool:
        return new in cls.TRANSITIONS.get(current, set())

    @classmethod
    def can_start(cls, current: StreamStartState) -> bool:
        """A start request is accepted only from IDLE."""
        return cls.can_transition(current, StreamStartState.VALIDATING_CREDENTIAL)
