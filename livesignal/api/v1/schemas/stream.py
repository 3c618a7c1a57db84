from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel

from livesignal.shared.api.utils import ApiSuccess

ResultsT = TypeVar("ResultsT", bound=BaseModel)


class StreamsOut(ApiSuccess, Generic[ResultsT]):
    """Success envelope for the stream directory endpoints."""

    results: ResultsT  # type: ignore[valid-type]


class LiveStreamOut(BaseModel):
    stream_id: str
    streamer_uid: str
    streamer_name: str
    created_at: datetime | None = None


class ListLiveStreamsOut(BaseModel):
    streams: list[LiveStreamOut]


class StreamStatusOut(LiveStreamOut):
    live: bool
    has_offer: bool
    answer_count: int
    host_candidate_count: int
    viewer_candidate_count: int
