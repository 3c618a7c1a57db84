"""Signaling record schemas.

Field names follow the stored wire shape (camelCase, `from`); Python code
uses the snake_case attribute names.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .schema_utils import parse_store_datetime
from .stream_state import StreamRole


class SessionDescriptionPayload(BaseModel):
    """Offer or answer: an opaque SDP blob and its type."""

    type: str
    sdp: str


class IceCandidatePayload(BaseModel):
    candidate: str = Field(..., min_length=1)
    sdp_mid: str | None = Field(default=None, alias="sdpMid")
    sdp_mline_index: int | None = Field(default=None, alias="sdpMLineIndex")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("sdp_mline_index", mode="before")
    @classmethod
    def _only_int_index(cls, v: Any) -> Any:
        # bool is an int subclass; neither it nor strings are a line index
        if isinstance(v, bool) or not isinstance(v, int):
            return None
        return v


class CandidateRecord(IceCandidatePayload):
    """An ICE candidate appended to `<signals>/{sid}/candidates`."""

    sender: str = Field(..., alias="from")
    role: StreamRole


class AnswerRecord(BaseModel):
    """A viewer answer appended to `<signals>/{sid}/answers`."""

    sender: str | None = Field(default=None, alias="from")
    answer: SessionDescriptionPayload

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SignalBaseRecord(BaseModel):
    """The base signaling document `<signals>/{sid}` holding the host offer."""

    sender: str | None = Field(default=None, alias="from")
    offer: SessionDescriptionPayload | None = None
    live: bool = False
    created_at: datetime | None = Field(default=None, alias="createdAt")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("created_at", mode="before")
    @classmethod
    def _parse_datetime(cls, v: Any) -> Any:
        return parse_store_datetime(v)


class LiveStreamRecord(BaseModel):
    """The public stream document `<streams>/{sid}`."""

    stream_id: str = Field(..., alias="id")
    streamer_uid: str = Field(..., alias="streamerUid")
    streamer_name: str = Field(..., alias="streamerName")
    live: bool = False
    created_at: datetime | None = Field(default=None, alias="createdAt")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("created_at", mode="before")
    @classmethod
    def _parse_datetime(cls, v: Any) -> Any:
        return parse_store_datetime(v)


__all__ = [
    "AnswerRecord",
    "CandidateRecord",
    "IceCandidatePayload",
    "LiveStreamRecord",
    "SessionDescriptionPayload",
    "SignalBaseRecord",
]
