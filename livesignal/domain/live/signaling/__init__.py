"""Signaling over the document store: codec and channel."""

from .channel import ChannelRefs, make_channel_refs, safe_add, safe_send_signal, safe_set
from .codec import (
    UNDEFINED,
    parse_description,
    parse_ice_candidate,
    sanitize,
    serialize_answer,
    serialize_ice_candidate,
    serialize_offer,
)

__all__ = [
    "UNDEFINED",
    "ChannelRefs",
    "make_channel_refs",
    "parse_description",
    "parse_ice_candidate",
    "safe_add",
    "safe_send_signal",
    "safe_set",
    "sanitize",
    "serialize_answer",
    "serialize_ice_candidate",
    "serialize_offer",
]
