"""CLI entry point for postlite.

Handles argument parsing and dispatches to send or history mode.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import mimetypes
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TextIO

import httpx

from postlite.auth_injector import CookieJarCredentialSource, CredentialSource, preview_headers
from postlite.config_loader import ConfigError, load_settings, load_settings_or_default
from postlite.executor import ExecutionState, Executor
from postlite.history_store import HistoryError, HistoryStore, request_record
from postlite.models import (
    HTTP_METHODS,
    AppSettings,
    BodyType,
    FileBlob,
    FormPart,
    KeyValueEntry,
    PartKind,
    RequestSpec,
    ResponseSnapshot,
)
from postlite.request_builder import format_body, render_raw_request, render_raw_response
from postlite.transport import Transport

DEFAULT_HOME = Path.home() / ".postlite"
DEFAULT_CONFIG_PATH = DEFAULT_HOME / "settings.yaml"
DEFAULT_HISTORY_PATH = DEFAULT_HOME / "history.json"


def parse_key_value(value: str) -> tuple[str, str]:
    """Parse a NAME=VALUE argument.

    Raises:
        argparse.ArgumentTypeError: If there is no '=' or the name is empty.
    """
    name, sep, rest = value.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"Invalid format '{value}'. Expected NAME=VALUE")
    return (name, rest)


def parse_header(value: str) -> tuple[str, str]:
    """Parse a 'Name: value' header argument."""
    name, sep, rest = value.partition(":")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"Invalid header '{value}'. Expected 'Name: value'")
    return (name.strip(), rest.strip())


@dataclass
class SendArgs:
    """Parsed arguments for send mode."""

    url: str
    method: str | None
    headers: list[tuple[str, str]]
    params: list[tuple[str, str]]
    json_body: str | None
    text_body: str | None
    file: Path | None
    form: list[tuple[str, str]]
    urlencoded: list[tuple[str, str]]
    stream: bool
    config: Path | None
    history: Path | None
    cookies: list[tuple[str, str]] = field(default_factory=list)
    show_raw: bool = False
    verbose: bool = False


@dataclass
class HistoryArgs:
    """Parsed arguments for history mode."""

    action: str
    history: Path
    item_id: str | None = None
    verbose: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with send and history subcommands."""
    parser = argparse.ArgumentParser(
        prog="postlite",
        description="Send HTTP requests with buffered or streamed responses and signed auth headers.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True, help="Mode")

    # Send subcommand
    send_parser = subparsers.add_parser("send", help="Send one request and print the response")
    send_parser.add_argument("url", help="Request URL")
    send_parser.add_argument(
        "-X",
        "--method",
        type=str.upper,
        choices=HTTP_METHODS,
        default=None,
        help="HTTP method (default: GET, or POST when a body is given)",
    )
    send_parser.add_argument(
        "-H",
        "--header",
        type=parse_header,
        action="append",
        default=[],
        dest="headers",
        metavar="'NAME: VALUE'",
        help="Request header (can be repeated)",
    )
    send_parser.add_argument(
        "-q",
        "--param",
        type=parse_key_value,
        action="append",
        default=[],
        dest="params",
        metavar="NAME=VALUE",
        help="Query parameter (can be repeated)",
    )
    body_group = send_parser.add_mutually_exclusive_group()
    body_group.add_argument("--json", dest="json_body", metavar="TEXT", help="JSON body, sent verbatim")
    body_group.add_argument("--text", dest="text_body", metavar="TEXT", help="Plain text body")
    body_group.add_argument("--file", type=Path, metavar="PATH", help="Send a file as the raw body")
    body_group.add_argument(
        "--form",
        type=parse_key_value,
        action="append",
        metavar="NAME=VALUE|NAME=@PATH",
        help="Multipart field; @PATH attaches a file (can be repeated)",
    )
    body_group.add_argument(
        "--urlencoded",
        type=parse_key_value,
        action="append",
        metavar="NAME=VALUE",
        help="x-www-form-urlencoded field (can be repeated)",
    )
    send_parser.add_argument("--stream", action="store_true", help="Print the response as it arrives")
    send_parser.add_argument(
        "--cookie",
        type=parse_key_value,
        action="append",
        default=[],
        dest="cookies",
        metavar="NAME=VALUE",
        help="Cookie available to signed-header auth (can be repeated)",
    )
    send_parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"Settings file (YAML or JSON, default: {DEFAULT_CONFIG_PATH} if present)",
    )
    send_parser.add_argument(
        "--history",
        type=Path,
        default=DEFAULT_HISTORY_PATH,
        help=f"History file (default: {DEFAULT_HISTORY_PATH})",
    )
    send_parser.add_argument(
        "--no-history", action="store_true", help="Do not record this request in history"
    )
    send_parser.add_argument(
        "--show-raw", action="store_true", help="Print the raw request preview before sending"
    )

    # History subcommand
    history_parser = subparsers.add_parser("history", help="Inspect or clear request history")
    history_parser.add_argument("action", choices=["list", "show", "clear"], help="History action")
    history_parser.add_argument("item_id", nargs="?", default=None, help="Item id (for show)")
    history_parser.add_argument(
        "--history",
        type=Path,
        default=DEFAULT_HISTORY_PATH,
        help=f"History file (default: {DEFAULT_HISTORY_PATH})",
    )

    return parser


def parse_send_args(namespace: argparse.Namespace) -> SendArgs:
    """Convert parsed namespace to SendArgs dataclass."""
    return SendArgs(
        url=namespace.url,
        method=namespace.method,
        headers=namespace.headers or [],
        params=namespace.params or [],
        json_body=namespace.json_body,
        text_body=namespace.text_body,
        file=namespace.file,
        form=namespace.form or [],
        urlencoded=namespace.urlencoded or [],
        stream=namespace.stream,
        config=namespace.config,
        history=None if namespace.no_history else namespace.history,
        cookies=namespace.cookies or [],
        show_raw=namespace.show_raw,
        verbose=namespace.verbose,
    )


def parse_history_args(namespace: argparse.Namespace) -> HistoryArgs:
    """Convert parsed namespace to HistoryArgs dataclass."""
    return HistoryArgs(
        action=namespace.action,
        history=namespace.history,
        item_id=namespace.item_id,
        verbose=namespace.verbose,
    )


def parse_args(args: list[str] | None = None) -> SendArgs | HistoryArgs:
    """Parse command-line arguments and return typed args dataclass.

    Raises:
        SystemExit: If arguments are invalid (argparse behavior).
    """
    parser = build_parser()
    namespace = parser.parse_args(args)

    if namespace.command == "send":
        return parse_send_args(namespace)
    elif namespace.command == "history":
        return parse_history_args(namespace)
    else:
        # Should not happen with required=True on subparsers
        parser.error(f"Unknown command: {namespace.command}")


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    try:
        parsed = parse_args(args)
        logging.basicConfig(
            level=logging.DEBUG if parsed.verbose else logging.WARNING,
            format="%(levelname)s %(name)s: %(message)s",
        )

        if isinstance(parsed, SendArgs):
            return run_send(parsed)
        else:
            return run_history(parsed)

    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 1


# =============================================================================
# Send Mode
# =============================================================================


def _entries(pairs: list[tuple[str, str]]) -> list[KeyValueEntry]:
    return [KeyValueEntry(key=k, value=v) for k, v in pairs] + [KeyValueEntry()]


def _read_blob(path: Path) -> FileBlob:
    content_type, _ = mimetypes.guess_type(path.name)
    return FileBlob(name=path.name, content=path.read_bytes(), content_type=content_type)


def build_spec(args: SendArgs) -> RequestSpec:
    """Build the RequestSpec described by the send arguments.

    Raises:
        OSError: If a referenced file cannot be read.
    """
    data: dict[str, Any] = {
        "url": args.url,
        "params": _entries(args.params),
        "headers": _entries(args.headers),
        "stream": args.stream,
    }

    if args.json_body is not None:
        data.update(body_type=BodyType.JSON, body_content=args.json_body)
    elif args.text_body is not None:
        data.update(body_type=BodyType.TEXT, body_content=args.text_body)
    elif args.file is not None:
        data.update(body_type=BodyType.FILE, file=_read_blob(args.file))
    elif args.form:
        parts = []
        for name, value in args.form:
            if value.startswith("@"):
                parts.append(FormPart(key=name, kind=PartKind.FILE, file=_read_blob(Path(value[1:]))))
            else:
                parts.append(FormPart(key=name, value=value))
        data.update(body_type=BodyType.FORM_DATA, form_data=parts)
    elif args.urlencoded:
        data.update(body_type=BodyType.URLENCODED, form_urlencoded=_entries(args.urlencoded))

    has_body = data.get("body_type", BodyType.NONE) is not BodyType.NONE
    data["method"] = args.method or ("POST" if has_body else "GET")
    return RequestSpec.model_validate(data)


class SnapshotPrinter:
    """Prints streaming snapshots: headers once, then each new piece of body.

    A snapshot whose body does not extend what was printed (a mid-stream
    failure replaces the partial body) is printed whole on a new line.
    """

    def __init__(self, out: TextIO) -> None:
        self._out = out
        self._printed = ""
        self._headers_printed = False

    def __call__(self, snapshot: ResponseSnapshot) -> None:
        if not self._headers_printed:
            self._out.write(_format_head(snapshot) + "\n\n")
            self._headers_printed = True
        text = format_body(snapshot.body)
        if text.startswith(self._printed):
            self._out.write(text[len(self._printed):])
        else:
            self._out.write("\n" + text)
        self._out.flush()
        self._printed = text


def _format_head(snapshot: ResponseSnapshot) -> str:
    lines = [f"HTTP/1.1 {snapshot.status} {snapshot.status_text}"]
    lines.extend(f"{k}: {v}" for k, v in snapshot.headers.items())
    return "\n".join(lines)


async def send_and_print(
    spec: RequestSpec,
    settings: AppSettings,
    credential_source: CredentialSource,
    history: HistoryStore | None,
    out: TextIO,
    transport: Transport | None = None,
) -> int:
    """Send spec and print the response. Returns the exit code."""
    printer = SnapshotPrinter(out)
    executor = Executor(
        transport=transport,
        settings=settings,
        credential_source=credential_source,
        on_complete=history.record if history is not None else None,
    )
    async with executor:
        result = await executor.send(spec, on_snapshot=printer if spec.stream else None)

    snapshot = result.snapshot
    if result.state is ExecutionState.CANCELLED or snapshot is None:
        print("Request cancelled", file=sys.stderr)
        return 1

    if spec.stream:
        out.write("\n")
    else:
        out.write(render_raw_response(snapshot) + "\n")

    print(
        f"[{snapshot.status} {snapshot.status_text}] "
        f"{snapshot.elapsed_ms:.0f} ms, {snapshot.size_display}",
        file=sys.stderr,
    )
    return 1 if snapshot.is_error else 0


def render_preview(spec: RequestSpec, settings: AppSettings, credential_source: CredentialSource) -> str:
    """Raw request preview, including the signed headers when auth is active."""
    auth_headers = None
    if settings.auth.is_active:
        auth_headers = preview_headers(settings.auth.app_id, credential_source)
    return render_raw_request(spec, settings.global_headers, auth_headers)


def run_send(args: SendArgs) -> int:
    """Run send mode."""
    try:
        if args.config is not None:
            settings = load_settings(args.config)
        else:
            settings = load_settings_or_default(DEFAULT_CONFIG_PATH)
    except ConfigError as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return 1

    try:
        spec = build_spec(args)
    except OSError as e:
        print(f"Error reading file: {e}", file=sys.stderr)
        return 1

    history = None
    if args.history is not None:
        history = HistoryStore(args.history, limit=settings.history_limit)

    cookies = httpx.Cookies()
    for name, value in args.cookies:
        cookies.set(name, value)
    credential_source = CookieJarCredentialSource(cookies)

    if args.show_raw:
        print(render_preview(spec, settings, credential_source))
        print()

    try:
        return asyncio.run(
            send_and_print(spec, settings, credential_source, history, sys.stdout)
        )
    except HistoryError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


# =============================================================================
# History Mode
# =============================================================================


def run_history(args: HistoryArgs) -> int:
    """Run history mode."""
    store = HistoryStore(args.history)

    if args.action == "clear":
        try:
            store.clear()
        except HistoryError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        print("History cleared")
        return 0

    if args.action == "show":
        item = store.get(args.item_id) if args.item_id else None
        if item is None:
            print(f"History item not found: {args.item_id}", file=sys.stderr)
            return 1
        print(json.dumps(request_record(HistoryStore.restore(item)), indent=2))
        return 0

    items = store.sorted_items()
    if not items:
        print("No history")
        return 0
    for item in items:
        pin = "*" if item.pinned else " "
        print(f"{pin} {item.id}  {item.method:<7} {item.url}")
    return 0
