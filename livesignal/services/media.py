"""
Local media capture and remote media sinks on aiortc.

Capture devices are opened with aiortc's MediaPlayer using the file/format
pairs from config, e.g. `/dev/video0` + `v4l2` for a camera,
`default` + `pulse` for a microphone or `:0.0` + `x11grab` for the screen.
"""

import errno
from abc import ABC, abstractmethod

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder
from av import AudioFrame, VideoFrame
from loguru import logger

from livesignal.app_config import AppEnvironConfig, get_app_environ_config

PERMISSION_DENIED_MESSAGE = (
    "Camera/microphone access was denied. "
    "Allow access to the capture devices and try again."
)


class MediaError(Exception):
    pass


class MediaPermissionError(MediaError):
    pass


def _is_permission_error(e: BaseException) -> bool:
    if isinstance(e, PermissionError):
        return True
    return isinstance(e, OSError) and e.errno in (errno.EACCES, errno.EPERM)


class ToggleableTrack(MediaStreamTrack):
    """
    Relays a source track and sends black video or silence while disabled.

    The outgoing track keeps running while disabled so the remote side sees
    no renegotiation, only blank frames.
    """

    def __init__(self, source: MediaStreamTrack):
        super().__init__()
        self.kind = source.kind
        self.source = source
        self.enabled = True

    async def recv(self):
        frame = await self.source.recv()
        if self.enabled:
            return frame
        if self.kind == "video":
            return self._black(frame)
        return self._silence(frame)

    @staticmethod
    def _black(frame: VideoFrame) -> VideoFrame:
        blank = VideoFrame(width=frame.width, height=frame.height, format="yuv420p")
        luma, *chroma = blank.planes
        luma.update(bytes(luma.buffer_size))
        for plane in chroma:
            plane.update(b"\x80" * plane.buffer_size)
        blank.pts = frame.pts
        blank.time_base = frame.time_base
        return blank

    @staticmethod
    def _silence(frame: AudioFrame) -> AudioFrame:
        blank = AudioFrame(format="s16", layout=frame.layout.name, samples=frame.samples)
        for plane in blank.planes:
            plane.update(bytes(plane.buffer_size))
        blank.sample_rate = frame.sample_rate
        blank.pts = frame.pts
        blank.time_base = frame.time_base
        return blank

    def stop(self):
        super().stop()
        self.source.stop()


class LocalMedia:
    """A captured media stream: at most one audio and one video track."""

    def __init__(self, audio: MediaStreamTrack | None = None, video: MediaStreamTrack | None = None):
        self.audio = ToggleableTrack(audio) if audio is not None else None
        self.video = ToggleableTrack(video) if video is not None else None

    @property
    def tracks(self) -> list[MediaStreamTrack]:
        return [t for t in (self.audio, self.video) if t is not None]

    def replace_video(self, track: MediaStreamTrack) -> MediaStreamTrack:
        """Swap the video source, stopping the previous one."""
        previous = self.video
        self.video = ToggleableTrack(track)
        if previous is not None:
            self.video.enabled = previous.enabled
            previous.stop()
        return self.video

    def stop(self):
        for track in self.tracks:
            track.stop()


class MediaSource(ABC):
    @abstractmethod
    async def get_user_media(self, video: bool = True, audio: bool = True) -> LocalMedia:
        """Open camera and/or microphone.

        Raises:
            MediaPermissionError: access to a device was denied
            MediaError: no device is available
        """

    @abstractmethod
    async def get_display_media(self) -> MediaStreamTrack:
        """Open a screen capture video track."""


class PlayerMediaSource(MediaSource):
    def __init__(self, cfg: AppEnvironConfig | None = None):
        self._cfg = cfg or get_app_environ_config()

    def _open(self, device: str, fmt: str | None, options: dict[str, str] | None = None) -> MediaPlayer:
        try:
            return MediaPlayer(device, format=fmt, options=options or {})
        except Exception as e:
            if _is_permission_error(e):
                raise MediaPermissionError(f"Access denied to {device}: {e}") from e
            raise MediaError(f"Cannot open {device}: {e}") from e

    async def get_user_media(self, video: bool = True, audio: bool = True) -> LocalMedia:
        cfg = self._cfg
        video_track = audio_track = None

        if video and cfg.MEDIA_VIDEO_DEVICE:
            player = self._open(
                cfg.MEDIA_VIDEO_DEVICE, cfg.MEDIA_VIDEO_FORMAT,
                {"video_size": cfg.MEDIA_VIDEO_SIZE} if cfg.MEDIA_VIDEO_FORMAT else None,
            )
            video_track = player.video
            # A media file or muxed device may carry both kinds
            if audio and cfg.MEDIA_AUDIO_DEVICE in (None, cfg.MEDIA_VIDEO_DEVICE):
                audio_track = player.audio

        if audio and audio_track is None and cfg.MEDIA_AUDIO_DEVICE:
            audio_track = self._open(cfg.MEDIA_AUDIO_DEVICE, cfg.MEDIA_AUDIO_FORMAT).audio

        if video_track is None and audio_track is None:
            raise MediaError("No capture device available")

        logger.info(
            "Acquired local media: video={} audio={}",
            video_track is not None, audio_track is not None,
        )
        return LocalMedia(audio=audio_track, video=video_track)

    async def get_display_media(self) -> MediaStreamTrack:
        if not self._cfg.SCREEN_CAPTURE_DEVICE:
            raise MediaError("Screen capture is not configured")
        track = self._open(self._cfg.SCREEN_CAPTURE_DEVICE, self._cfg.SCREEN_CAPTURE_FORMAT).video
        if track is None:
            raise MediaError("Screen capture device has no video")
        return track


class RemoteMediaSink:
    """
    Consumes the remote side's media: the first track of each kind is
    recorded to a file, or discarded when no recording path is set.
    """

    def __init__(self, recording_path: str | None = None):
        self._sink = MediaRecorder(recording_path) if recording_path else MediaBlackhole()
        self.tracks: dict[str, MediaStreamTrack] = {}

    def has_kind(self, kind: str) -> bool:
        return kind in self.tracks

    async def attach(self, track: MediaStreamTrack) -> bool:
        if self.has_kind(track.kind):
            return False
        self.tracks[track.kind] = track
        self._sink.addTrack(track)
        await self._sink.start()
        logger.info("Remote {} track attached", track.kind)
        return True

    async def stop(self):
        await self._sink.stop()
        self.tracks.clear()
