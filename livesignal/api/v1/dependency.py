from typing import Annotated

from fastapi import Depends, Request

from livesignal.domain.live.stream.directory import LiveStreamDirectory
from livesignal.services.store import DocumentStore


def get_signal_store(request: Request) -> DocumentStore:
    return request.app.state.signal_store


def get_directory(store: DocumentStore = Depends(get_signal_store)) -> LiveStreamDirectory:
    return LiveStreamDirectory(store)


Directory = Annotated[LiveStreamDirectory, Depends(get_directory)]
