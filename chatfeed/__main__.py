"""CLI entry point for chatfeed."""

import argparse
import asyncio
import json
import logging
import mimetypes
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import Config, load_config
from .errors import SendError, TransientFetchError
from .models import Viewer
from .mqtt_client import PushChannel
from .render import format_entry
from .session import FeedSession
from .store_client import BlobStore, RestStore
from .sync import Composer, FeedState


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            # Fallback for non-serializable objects
            log_data["message"] = str(log_data["message"])
            if "exception" in log_data:
                log_data["exception"] = str(log_data["exception"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
    )


def _build_clients(config: Config) -> tuple[RestStore, PushChannel, BlobStore]:
    return (
        RestStore(config.store),
        PushChannel(config.realtime),
        BlobStore(config.store, config.blob),
    )


def _build_composer(config: Config, store: RestStore, blobs: BlobStore) -> Composer:
    viewer = Viewer(user_id=config.viewer.user_id, email=config.viewer.email)
    return Composer(store, blobs, viewer, config.store.messages_table)


class FeedPrinter:
    """Prints entries as they are admitted, each id once.

    Lines already printed are not rewritten when a profile resolves later;
    they keep the handle shown at print time (the fallback if the profile
    was still pending). Later entries by that author use the resolved one.
    """

    def __init__(self, session: FeedSession):
        self._session = session
        self._printed: set = set()

    def __call__(self, state: FeedState) -> None:
        if not self._session.is_ready:
            return
        for entry in state:
            if entry.id in self._printed:
                continue
            self._printed.add(entry.id)
            profile = self._session.display_profile(entry)
            print(format_entry(entry, profile, own=self._session.is_own(entry)))


async def cmd_watch(args: argparse.Namespace) -> int:
    """Print the feed and follow new entries until interrupted."""
    config = load_config(args.config)
    store, channel, blobs = _build_clients(config)

    if not await channel.connect():
        print(f"Cannot reach MQTT broker at {config.realtime.broker}:{config.realtime.port}", file=sys.stderr)
        await store.close()
        return 1

    session = FeedSession(store, channel, blobs, config)
    printer = FeedPrinter(session)
    session.add_listener(printer)
    try:
        async with session:
            print("Loading messages...")
            try:
                state = await session.wait_ready()
            except TransientFetchError as e:
                print(f"Error: {e}", file=sys.stderr)
                return 1

            if len(state) == 0:
                print("No messages yet. Start the conversation!")
            printer(state)

            await asyncio.Event().wait()
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("\nShutting down...")
    finally:
        await channel.disconnect()
        await store.close()
        await blobs.close()

    return 0


async def cmd_send(args: argparse.Namespace) -> int:
    """Submit a text entry."""
    config = load_config(args.config)
    store, _, blobs = _build_clients(config)
    composer = _build_composer(config, store, blobs)
    try:
        await composer.submit_text(args.text)
    except SendError as e:
        print(f"Message not sent ({e.reason.value}): {e}", file=sys.stderr)
        return 1
    finally:
        await store.close()
        await blobs.close()

    print("Sent")
    return 0


async def cmd_attach(args: argparse.Namespace) -> int:
    """Upload a file and submit an entry referencing it."""
    config = load_config(args.config)
    path = Path(args.path)
    if not path.is_file():
        print(f"No such file: {path}", file=sys.stderr)
        return 1

    media_type = args.type or mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    store, _, blobs = _build_clients(config)
    composer = _build_composer(config, store, blobs)
    try:
        await composer.submit_attachment(path.read_bytes(), path.name, media_type)
    except SendError as e:
        print(f"Attachment not sent ({e.reason.value}): {e}", file=sys.stderr)
        return 1
    finally:
        await store.close()
        await blobs.close()

    print(f"Sent {path.name} ({media_type})")
    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    """Check connectivity status."""
    config = load_config(args.config)
    store, channel, blobs = _build_clients(config)

    try:
        store_ok = await store.health_check()
    finally:
        await store.close()
    mqtt_ok = await channel.check_connection()

    status_data = {
        "timestamp": datetime.now().isoformat(),
        "viewer": config.viewer.user_id or None,
        "store": {"url": config.store.url, "reachable": store_ok},
        "mqtt": {
            "broker": config.realtime.broker,
            "port": config.realtime.port,
            "reachable": mqtt_ok,
            "topic": channel.topic_for(config.store.messages_table),
        },
    }

    if args.json:
        print(json.dumps(status_data, indent=2))
    else:
        print("chatfeed Status Check")
        print("=====================")
        print(f"Viewer: {status_data['viewer'] or 'not configured'}")
        print(f"Store ({config.store.url}): {'reachable' if store_ok else 'unreachable'}")
        print(
            f"MQTT ({config.realtime.broker}:{config.realtime.port}): "
            f"{'reachable' if mqtt_ok else 'unreachable'}"
        )

    return 0 if store_ok and mqtt_ok else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatfeed",
        description="Follow and post to a shared conversation feed",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: none, use environment)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    watch_parser = subparsers.add_parser("watch", help="Print the feed and follow new messages")
    watch_parser.set_defaults(func=cmd_watch)

    send_parser = subparsers.add_parser("send", help="Send a text message")
    send_parser.add_argument("text", help="Message text")
    send_parser.set_defaults(func=cmd_send)

    attach_parser = subparsers.add_parser("attach", help="Send a file or image")
    attach_parser.add_argument("path", help="File to upload")
    attach_parser.add_argument(
        "--type",
        default=None,
        help="Media type (default: guessed from the file name)",
    )
    attach_parser.set_defaults(func=cmd_attach)

    status_parser = subparsers.add_parser("status", help="Check connectivity status")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    return parser


def main() -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, getattr(args, "json", False))

    if not args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
