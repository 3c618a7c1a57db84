from fastapi import APIRouter, Path

from livesignal.api.v1.dependency import Directory
from livesignal.api.v1.schemas.stream import ListLiveStreamsOut, LiveStreamOut, StreamsOut, StreamStatusOut

router = APIRouter(prefix="/streams", tags=["Streams"])


@router.get("/live")
async def list_live_streams(directory: Directory) -> StreamsOut[ListLiveStreamsOut]:
    """List streams that are currently live, newest first."""
    streams = await directory.list_live()

    return StreamsOut[ListLiveStreamsOut](
        results=ListLiveStreamsOut(
            streams=[
                LiveStreamOut(
                    stream_id=s.stream_id,
                    streamer_uid=s.streamer_uid,
                    streamer_name=s.streamer_name,
                    created_at=s.created_at,
                )
                for s in streams
            ]
        )
    )


@router.get("/{stream_id}")
async def get_stream(
    directory: Directory,
    stream_id: str = Path(..., min_length=1, max_length=200),
) -> StreamsOut[StreamStatusOut]:
    """Get one stream record and a summary of its signaling state.

    Raises AppError (E_STREAM_NOT_FOUND) if the stream does not exist.
    """
    status = await directory.get_stream(stream_id)

    return StreamsOut[StreamStatusOut](results=StreamStatusOut(**status.model_dump()))
