import time

from ulid import ULID


def new_ulid(prefix: str | None = None) -> str:
    value = str(ULID()).lower()
    return f"{prefix}{value}" if prefix else value


def new_document_id() -> str:
    return new_ulid()


def now_ms() -> int:
    return int(time.time() * 1000)


def new_stream_id(user_id: str, created_ms: int | None = None) -> str:
    """Stream ids are `{host uid}-{creation epoch ms}`."""
    return f"{user_id}-{created_ms if created_ms is not None else now_ms()}"
