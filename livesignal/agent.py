"""
Stream agent: host or watch a live stream from a terminal.

    livesignal-agent host --uid U1 --name "Streamer One"
    livesignal-agent join U1-1000 --uid U2
    livesignal-agent list --watch

Hosting and joining run until Ctrl-C, then stop the stream. Both sides must
share a store, so use SIGNAL_STORE_BACKEND=mongo across processes.
"""

import argparse
import asyncio
import os
import sys
import termios

from loguru import logger

from livesignal.app_config import get_app_environ_config
from livesignal.domain.live.stream.controller import StreamLifecycleController
from livesignal.domain.live.stream.directory import LiveStreamDirectory
from livesignal.domain.live.stream.stream_models import LiveStreamResponse
from livesignal.services.auth import AuthUser, StaticAuthProvider
from livesignal.services.credential_gate import CredentialGate, OpenGate, PasswordGate
from livesignal.services.media import PlayerMediaSource
from livesignal.services.store import DocumentStore, create_signal_store
from livesignal.shared.api.utils import init_logger
from livesignal.utils.app_errors import AppError


def _hide_input(fd: int) -> list | None:
    """Turn terminal echo off; returns the settings to restore, None for a pipe."""
    if not os.isatty(fd):
        return None
    saved = termios.tcgetattr(fd)
    quiet = termios.tcgetattr(fd)
    quiet[3] &= ~termios.ECHO
    termios.tcsetattr(fd, termios.TCSADRAIN, quiet)
    return saved


async def prompt_password(message: str) -> str | None:
    """
    Read one line from stdin without echo, None on end of input.

    The read runs on the event loop: cancelling the prompt stops it and
    restores terminal echo.
    """
    loop = asyncio.get_running_loop()
    fd = sys.stdin.fileno()
    line: asyncio.Future[str | None] = loop.create_future()
    buffer = bytearray()

    def on_readable():
        chunk = os.read(fd, 1024)
        if line.done():
            return
        if not chunk:
            line.set_result(None)
            return
        buffer.extend(chunk)
        if b"\n" in buffer:
            line.set_result(buffer.split(b"\n", 1)[0].decode(errors="replace").rstrip("\r"))

    saved = _hide_input(fd)
    sys.stderr.write(f"{message}: ")
    sys.stderr.flush()
    loop.add_reader(fd, on_readable)
    try:
        return await line
    finally:
        loop.remove_reader(fd)
        if saved is not None:
            termios.tcsetattr(fd, termios.TCSADRAIN, saved)
        sys.stderr.write("\n")
        sys.stderr.flush()


def build_credential_gate() -> CredentialGate:
    cfg = get_app_environ_config()
    if not cfg.GO_LIVE_PASSWORD:
        return OpenGate()
    return PasswordGate(
        prompt_password,
        cfg.GO_LIVE_PASSWORD,
        max_attempts=cfg.GO_LIVE_MAX_ATTEMPTS,
        timeout=cfg.GO_LIVE_PROMPT_TIMEOUT_SECONDS,
    )


def build_controller(store: DocumentStore, args) -> StreamLifecycleController:
    user = AuthUser(uid=args.uid, display_name=args.name, email=args.email)
    return StreamLifecycleController(
        store,
        StaticAuthProvider(user),
        PlayerMediaSource(),
        build_credential_gate(),
        on_status=lambda text: print(f"[{args.uid}] {text}"),
    )


async def run_until_interrupted(controller: StreamLifecycleController):
    try:
        await asyncio.Event().wait()
    finally:
        await controller.stop_stream()


async def host(store: DocumentStore, args):
    controller = build_controller(store, args)
    session = await controller.start_stream()
    if session is None:
        print("Live stream was not started")
        return

    print(f"Streaming as {session.streamer_name}: stream id {session.stream_id}")
    if args.share_screen and not await controller.share_screen():
        print("Screen sharing is not available, keeping the camera")
    await run_until_interrupted(controller)


async def join(store: DocumentStore, args):
    controller = build_controller(store, args)
    await controller.join_stream(args.stream_id)
    await run_until_interrupted(controller)


def print_streams(streams: list[LiveStreamResponse]):
    if not streams:
        print("No live streams")
        return
    for stream in streams:
        print(f"{stream.stream_id}\t{stream.streamer_name}\t{stream.created_at or '-'}")


async def list_streams(store: DocumentStore, args):
    directory = LiveStreamDirectory(store)
    if not args.watch:
        print_streams(await directory.list_live())
        return

    subscription = directory.watch_live(print_streams)
    try:
        await asyncio.Event().wait()
    finally:
        subscription.unsubscribe()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Live stream agent")
    parser.add_argument(
        "--store",
        choices=["memory", "mongo"],
        help="Signal store backend (default: SIGNAL_STORE_BACKEND)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    def add_identity(sub: argparse.ArgumentParser):
        sub.add_argument("--uid", required=True, help="Caller user id")
        sub.add_argument("--name", help="Display name")
        sub.add_argument("--email", help="Email, used for the name when no display name is set")

    host_parser = commands.add_parser("host", help="Go live with the configured capture devices")
    add_identity(host_parser)
    host_parser.add_argument(
        "--share-screen",
        action="store_true",
        help="Send the configured screen capture instead of the camera",
    )

    join_parser = commands.add_parser("join", help="Watch a live stream")
    join_parser.add_argument("stream_id", help="Stream id, e.g. U1-1700000000000")
    add_identity(join_parser)

    list_parser = commands.add_parser("list", help="List live streams")
    list_parser.add_argument("--watch", action="store_true", help="Keep printing the live set on changes")

    return parser


COMMANDS = {
    "host": host,
    "join": join,
    "list": list_streams,
}


async def run(args):
    store = create_signal_store(args.store)
    try:
        await store.open()
        await COMMANDS[args.command](store, args)
    except AppError as e:
        logger.error("{} {}", e.errcode, e.errmesg)
        print(f"✗ {e.errmesg}")
    finally:
        await store.close()


def main():
    args = build_parser().parse_args()
    init_logger()
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
