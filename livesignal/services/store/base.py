"""
Path-addressed document store used as the signaling channel.

Paths alternate collection and document segments: `liveStreamSignals` is a
collection, `liveStreamSignals/U1-1000` a document and
`liveStreamSignals/U1-1000/answers` a sub-collection. A ref resolves its
write target once from the segment count: odd means a collection that is
appended to, even means a document that is merged into.
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger

from livesignal.utils.app_errors import AppError, AppErrorCode, HttpStatusCode


class SignalTarget(str, Enum):
    APPEND = "append"
    MERGE = "merge"

    def __str__(self) -> str:
        return self.value


class _ServerTimestamp:
    """Placeholder replaced with the store's clock at write time."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


def split_path(path: str) -> list[str]:
    segments = path.strip("/").split("/") if isinstance(path, str) else []
    if not segments or any(not s for s in segments):
        raise AppError(
            errcode=AppErrorCode.E_INVALID_PATH,
            errmesg=f"Invalid document path: {path!r}",
            status_code=HttpStatusCode.BAD_REQUEST,
        )
    return segments


def target_for_path(path: str) -> SignalTarget:
    return SignalTarget.APPEND if len(split_path(path)) % 2 == 1 else SignalTarget.MERGE


@dataclass(frozen=True)
class _Ref:
    path: str
    store: "DocumentStore" = field(compare=False, repr=False)

    @property
    def segments(self) -> list[str]:
        return self.path.split("/")

    @property
    def id(self) -> str:
        return self.segments[-1]

    @property
    def target(self) -> SignalTarget:
        return target_for_path(self.path)


@dataclass(frozen=True)
class DocumentRef(_Ref):
    @property
    def parent(self) -> "CollectionRef":
        return CollectionRef(self.path.rsplit("/", 1)[0], self.store)

    def collection(self, name: str) -> "CollectionRef":
        return self.store.collection(f"{self.path}/{name}")


@dataclass(frozen=True)
class CollectionRef(_Ref):
    @property
    def parent(self) -> DocumentRef | None:
        if "/" not in self.path:
            return None
        return DocumentRef(self.path.rsplit("/", 1)[0], self.store)

    def document(self, doc_id: str) -> DocumentRef:
        return self.store.document(f"{self.path}/{doc_id}")


@dataclass(frozen=True)
class DocumentSnapshot:
    id: str
    path: str
    data: dict[str, Any] | None

    @property
    def exists(self) -> bool:
        return self.data is not None

    def to_dict(self) -> dict[str, Any]:
        return dict(self.data or {})


class ChangeType(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class DocumentChange:
    type: ChangeType
    doc: DocumentSnapshot


ChangeCallback = Callable[[list[DocumentChange]], Awaitable[None] | None]


class Subscription:
    """
    Live listener on one collection.

    Change batches are queued and delivered to the callback in order from a
    single consumer task. A failing callback is logged and the listener keeps
    running.
    """

    def __init__(self, path: str, callback: ChangeCallback, on_close: Callable[["Subscription"], None] | None = None):
        self.path = path
        self._callback = callback
        self._on_close = on_close
        self._queue: asyncio.Queue[list[DocumentChange]] = asyncio.Queue()
        self._closed = False
        self._consumer = asyncio.create_task(self._consume(), name=f"subscription:{path}")

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, changes: list[DocumentChange]):
        if not self._closed:
            self._queue.put_nowait(changes)

    async def _consume(self):
        while True:
            changes = await self._queue.get()
            try:
                result = self._callback(changes)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("Subscription callback failed: path={} error={}", self.path, e)
            finally:
                self._queue.task_done()

    async def idle(self):
        """Wait until every queued change batch has been handled."""
        if not self._closed:
            await self._queue.join()

    def unsubscribe(self):
        if self._closed:
            return
        self._closed = True

        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()

        self._consumer.cancel()
        if self._on_close is not None:
            self._on_close(self)


class DocumentStore(ABC):
    """Document store interface shared by the in-memory and MongoDB backends."""

    def document(self, path: str) -> DocumentRef:
        segments = split_path(path)
        if len(segments) % 2 != 0:
            raise AppError(
                errcode=AppErrorCode.E_INVALID_PATH,
                errmesg=f"Not a document path: {path!r}",
                status_code=HttpStatusCode.BAD_REQUEST,
            )
        return DocumentRef("/".join(segments), self)

    def collection(self, path: str) -> CollectionRef:
        segments = split_path(path)
        if len(segments) % 2 != 1:
            raise AppError(
                errcode=AppErrorCode.E_INVALID_PATH,
                errmesg=f"Not a collection path: {path!r}",
                status_code=HttpStatusCode.BAD_REQUEST,
            )
        return CollectionRef("/".join(segments), self)

    def ref(self, path: str) -> DocumentRef | CollectionRef:
        if target_for_path(path) is SignalTarget.APPEND:
            return self.collection(path)
        return self.document(path)

    @abstractmethod
    async def get(self, ref: DocumentRef) -> DocumentSnapshot:
        ...

    @abstractmethod
    async def set(self, ref: DocumentRef, data: dict[str, Any], *, merge: bool = False) -> None:
        ...

    @abstractmethod
    async def add(self, ref: CollectionRef, data: dict[str, Any]) -> DocumentRef:
        ...

    @abstractmethod
    async def update(self, ref: DocumentRef, data: dict[str, Any]) -> None:
        """Merge fields into an existing document.

        Raises:
            AppError: E_DOCUMENT_NOT_FOUND when the document does not exist
        """

    @abstractmethod
    async def delete(self, ref: DocumentRef) -> None:
        ...

    @abstractmethod
    async def documents(self, ref: CollectionRef) -> list[DocumentSnapshot]:
        """All documents directly under the collection, oldest first."""

    @abstractmethod
    async def query(self, ref: CollectionRef, field_name: str, value: Any) -> list[DocumentSnapshot]:
        """Documents directly under the collection whose field equals value."""

    @abstractmethod
    def subscribe(self, ref: CollectionRef, callback: ChangeCallback) -> Subscription:
        """Listen to changes on a collection.

        Documents already present are delivered once as ADDED when the
        listener attaches, followed by live changes.
        """

    async def open(self):
        """Prepare the backend before first use."""

    async def close(self):
        pass


def document_not_found(path: str) -> AppError:
    return AppError(
        errcode=AppErrorCode.E_DOCUMENT_NOT_FOUND,
        errmesg=f"No document to update: {path}",
        status_code=HttpStatusCode.NOT_FOUND,
    )
