"""
Signal codec: session descriptions and ICE candidates to storage-safe dicts.

An empty candidate string marks end-of-candidates and is never serialized,
so it never reaches the store.
"""

from collections.abc import Mapping
from typing import Any

from aiortc import RTCIceCandidate, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp
from pydantic import BaseModel, ValidationError

from livesignal.schemas import IceCandidatePayload, SessionDescriptionPayload
from livesignal.services.store import SERVER_TIMESTAMP

CANDIDATE_PREFIX = "candidate:"


class _Undefined:
    """Value of a field that was never set; dropped by `sanitize`."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNDEFINED"


UNDEFINED = _Undefined()


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, Mapping):
        value = obj.get(name, default)
    else:
        value = getattr(obj, name, default)
    return default if value is UNDEFINED else value


def _serialize_description(desc: Any) -> dict[str, str] | None:
    if desc is None or desc is UNDEFINED:
        return None
    return {"type": _field(desc, "type"), "sdp": _field(desc, "sdp")}


def serialize_offer(desc: RTCSessionDescription | Mapping | None) -> dict[str, str] | None:
    return _serialize_description(desc)


def serialize_answer(desc: RTCSessionDescription | Mapping | None) -> dict[str, str] | None:
    return _serialize_description(desc)


def parse_description(record: Mapping[str, Any] | None) -> RTCSessionDescription:
    """Build an aiortc description from a stored `{type, sdp}` record.

    Raises:
        ValueError: record is missing or malformed
    """
    if not record:
        raise ValueError("Missing session description")
    try:
        payload = SessionDescriptionPayload.model_validate(record)
    except ValidationError as e:
        raise ValueError(f"Malformed session description: {e}") from e
    return RTCSessionDescription(sdp=payload.sdp, type=payload.type)


def serialize_ice_candidate(candidate: Any) -> dict[str, Any] | None:
    """
    Serialize a local ICE candidate, or return None for the end marker.

    Accepts an aiortc RTCIceCandidate, a browser-style mapping
    (`candidate`, `sdpMid`, `sdpMLineIndex`) or any object with those
    attributes.
    """
    if candidate is None or candidate is UNDEFINED:
        return None

    if isinstance(candidate, RTCIceCandidate):
        line = CANDIDATE_PREFIX + candidate_to_sdp(candidate)
    else:
        line = _field(candidate, "candidate")

    if not isinstance(line, str) or not line:
        return None

    sdp_mline_index = _field(candidate, "sdpMLineIndex")
    if isinstance(sdp_mline_index, bool) or not isinstance(sdp_mline_index, int):
        sdp_mline_index = None

    return {
        "candidate": line,
        "sdpMid": _field(candidate, "sdpMid"),
        "sdpMLineIndex": sdp_mline_index,
    }


def parse_ice_candidate(record: Mapping[str, Any] | IceCandidatePayload) -> RTCIceCandidate:
    """
    Build an aiortc candidate from a stored candidate record.

    Raises:
        ValueError: candidate string is missing or cannot be parsed
    """
    try:
        payload = (
            record if isinstance(record, IceCandidatePayload)
            else IceCandidatePayload.model_validate(record)
        )
    except ValidationError as e:
        raise ValueError(f"Malformed ICE candidate record: {e}") from e

    line = payload.candidate
    if line.startswith(CANDIDATE_PREFIX):
        line = line[len(CANDIDATE_PREFIX):]

    try:
        candidate = candidate_from_sdp(line)
    except (AssertionError, IndexError, ValueError) as e:
        raise ValueError(f"Unparseable ICE candidate: {payload.candidate!r}") from e

    candidate.sdpMid = payload.sdp_mid
    candidate.sdpMLineIndex = payload.sdp_mline_index
    return candidate


def sanitize(value: Any) -> Any:
    """
    Deep copy a value tree into something the store accepts.

    Keys whose value is UNDEFINED or callable are dropped at every depth.
    Lists and tuples map element-wise, with an UNDEFINED or callable
    element becoming None. Pydantic models are dumped by alias first.
    Primitives and the SERVER_TIMESTAMP sentinel pass through unchanged.
    """
    if value is SERVER_TIMESTAMP:
        return value
    if isinstance(value, BaseModel):
        value = value.model_dump(by_alias=True)
    if isinstance(value, Mapping):
        return {
            key: sanitize(item)
            for key, item in value.items()
            if item is not UNDEFINED and not callable(item)
        }
    if isinstance(value, (list, tuple)):
        return [None if item is UNDEFINED or callable(item) else sanitize(item) for item in value]
    return value
