import orjson
from pydantic import BaseModel, Field

from livesignal.shared.config import config


class IceServerConfig(BaseModel):
    urls: str | list[str]
    username: str | None = None
    credential: str | None = None


DEFAULT_ICE_SERVERS: list[IceServerConfig] = [
    IceServerConfig(urls="stun:stun.l.google.com:19302"),
    IceServerConfig(urls="stun:stun1.l.google.com:19302"),
    IceServerConfig(urls="stun:stun2.l.google.com:19302"),
    IceServerConfig(urls="stun:stun3.l.google.com:19302"),
    IceServerConfig(urls="stun:stun4.l.google.com:19302"),
    IceServerConfig(
        urls="turn:openrelay.metered.ca:80",
        username="openrelayproject",
        credential="openrelayproject",
    ),
    IceServerConfig(
        urls="turn:openrelay.metered.ca:443",
        username="openrelayproject",
        credential="openrelayproject",
    ),
]


def _load_ice_servers() -> list[IceServerConfig]:
    raw = (config.get("ICE_SERVERS_JSON") or "").strip()
    if not raw:
        return list(DEFAULT_ICE_SERVERS)
    return [IceServerConfig.model_validate(item) for item in orjson.loads(raw)]


def _str_or_none(key: str) -> str | None:
    return (config.get(key) or "").strip() or None


class AppEnvironConfig(BaseModel):
    DEBUG: bool = (config.get("DEBUG") or "false").strip().lower() == "true"

    # API server
    API_HOST: str = (config.get("API_HOST") or "0.0.0.0").strip()
    API_PORT: int = int((config.get("API_PORT") or "").strip() or 8000)
    API_WORKERS: int = int((config.get("API_WORKERS") or "").strip() or 1)
    API_CORS_ORIGINS: list[str] = [
        o.strip() for o in (config.get("API_CORS_ORIGINS") or "*").split(",") if o.strip()
    ]

    # Document store backing the signaling channel: "memory" or "mongo"
    SIGNAL_STORE_BACKEND: str = (config.get("SIGNAL_STORE_BACKEND") or "memory").strip().lower()
    SIGNAL_MONGO_LABEL: str = (config.get("SIGNAL_MONGO_LABEL") or "signal").strip()
    SIGNAL_DATABASE: str = (config.get("SIGNAL_DATABASE") or "livesignal").strip()
    STREAMS_COLLECTION: str = (config.get("STREAMS_COLLECTION") or "liveStreams").strip()
    SIGNALS_COLLECTION: str = (config.get("SIGNALS_COLLECTION") or "liveStreamSignals").strip()

    # Peer connection
    ICE_SERVERS: list[IceServerConfig] = Field(default_factory=_load_ice_servers)
    # Pool size hint kept with the ICE config; aiortc gathers on demand and ignores it
    ICE_CANDIDATE_POOL_SIZE: int = int((config.get("ICE_CANDIDATE_POOL_SIZE") or "").strip() or 10)

    # Viewer waits for the host offer: OFFER_POLL_MAX_ATTEMPTS x OFFER_POLL_INTERVAL_MS
    OFFER_POLL_INTERVAL_MS: int = int((config.get("OFFER_POLL_INTERVAL_MS") or "").strip() or 400)
    OFFER_POLL_MAX_ATTEMPTS: int = int((config.get("OFFER_POLL_MAX_ATTEMPTS") or "").strip() or 10)

    # Go-live password gate
    GO_LIVE_PASSWORD: str | None = _str_or_none("GO_LIVE_PASSWORD")
    GO_LIVE_MAX_ATTEMPTS: int = int((config.get("GO_LIVE_MAX_ATTEMPTS") or "").strip() or 3)
    GO_LIVE_PROMPT_TIMEOUT_SECONDS: float = float(
        (config.get("GO_LIVE_PROMPT_TIMEOUT_SECONDS") or "").strip() or 30
    )

    # Media capture (aiortc MediaPlayer file/format pairs)
    MEDIA_VIDEO_DEVICE: str | None = _str_or_none("MEDIA_VIDEO_DEVICE")
    MEDIA_VIDEO_FORMAT: str | None = _str_or_none("MEDIA_VIDEO_FORMAT")
    MEDIA_VIDEO_SIZE: str = (config.get("MEDIA_VIDEO_SIZE") or "1280x720").strip()
    MEDIA_AUDIO_DEVICE: str | None = _str_or_none("MEDIA_AUDIO_DEVICE")
    MEDIA_AUDIO_FORMAT: str | None = _str_or_none("MEDIA_AUDIO_FORMAT")
    SCREEN_CAPTURE_DEVICE: str | None = _str_or_none("SCREEN_CAPTURE_DEVICE")
    SCREEN_CAPTURE_FORMAT: str | None = _str_or_none("SCREEN_CAPTURE_FORMAT")

    # Where a viewer writes the received media; empty discards it
    REMOTE_RECORDING_PATH: str | None = _str_or_none("REMOTE_RECORDING_PATH")


_app_environ_config = AppEnvironConfig()


def get_app_environ_config() -> AppEnvironConfig:
    return _app_environ_config
