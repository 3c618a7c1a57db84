"""Pydantic schemas for signaling and stream records."""

from .signal import (
    AnswerRecord,
    CandidateRecord,
    IceCandidatePayload,
    LiveStreamRecord,
    SessionDescriptionPayload,
    SignalBaseRecord,
)
from .stream_state import PeerState, StreamRole, StreamStartState

__all__ = [
    "AnswerRecord",
    "CandidateRecord",
    "IceCandidatePayload",
    "LiveStreamRecord",
    "PeerState",
    "SessionDescriptionPayload",
    "SignalBaseRecord",
    "StreamRole",
    "StreamStartState",
]
