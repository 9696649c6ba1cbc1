from __future__ import annotations

import argparse
import json
import os
import socket
import sys
from importlib import metadata
from pathlib import Path

import tomllib
import uvicorn
from rich.console import Console
from rich.table import Table

from .audio import FFprobeError, format_duration, read_duration
from .logging_utils import build_uvicorn_log_config, set_debug_logging
from .player import PlayerConfig, create_app
from .transcript import estimate_transcript, segments_to_payload
from .uploads import DEFAULT_MAX_UPLOAD_BYTES, decode_transcript_bytes

DEFAULT_PORT = 5000
DEFAULT_ROOT = "uploads"


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover - installed without a source tree
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("audioshelf")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _add_version_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"audioshelf {__version__}",
    )


def _env_port() -> int:
    raw = os.getenv("PORT")
    if raw:
        try:
            parsed = int(raw)
            if 0 < parsed < 65536:
                return parsed
        except ValueError:
            pass
    return DEFAULT_PORT


def build_serve_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Serve the audiobook library and browser player.",
    )
    _add_version_flag(ap)
    ap.add_argument(
        "root",
        nargs="?",
        default=os.getenv("AUDIOSHELF_ROOT", DEFAULT_ROOT),
        help="Directory holding uploaded books (default: $AUDIOSHELF_ROOT or ./uploads).",
    )
    ap.add_argument(
        "--host",
        default="0.0.0.0",
        help="Host interface for the web server (default: 0.0.0.0).",
    )
    ap.add_argument(
        "--port",
        type=int,
        default=_env_port(),
        help=f"Port for the web server (default: $PORT or {DEFAULT_PORT}).",
    )
    ap.add_argument(
        "--ffprobe",
        default=os.getenv("AUDIOSHELF_FFPROBE", "ffprobe"),
        help="Path to ffprobe executable (default: ffprobe).",
    )
    ap.add_argument(
        "--max-upload-mb",
        type=float,
        default=DEFAULT_MAX_UPLOAD_BYTES / (1024 * 1024),
        help="Largest accepted upload per file in megabytes (default: 500).",
    )
    ap.add_argument(
        "--progress-interval",
        type=float,
        default=5.0,
        help="Seconds between playback progress saves in the browser (default: 5).",
    )
    ap.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging.",
    )
    return ap


def build_transcript_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Estimate sentence timings for a plain-text transcript.",
    )
    _add_version_flag(ap)
    ap.add_argument("text_file", help="Plain-text transcript source.")
    source = ap.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--duration",
        type=float,
        help="Total audio duration in seconds.",
    )
    source.add_argument(
        "--audio",
        help="Audio file to probe with ffprobe for its duration.",
    )
    ap.add_argument(
        "--ffprobe",
        default=os.getenv("AUDIOSHELF_FFPROBE", "ffprobe"),
        help="Path to ffprobe executable (default: ffprobe).",
    )
    ap.add_argument(
        "--json",
        action="store_true",
        help="Print segments as JSON instead of a table.",
    )
    return ap


def _resolve_local_ip(host: str) -> str:
    if host not in {"", "0.0.0.0", "::"}:
        return host
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("8.8.8.8", 80))
            return sock.getsockname()[0]
    except OSError:
        return "127.0.0.1"


def _run_serve(args: argparse.Namespace) -> int:
    console = Console()
    root = Path(args.root).expanduser().resolve()
    if args.max_upload_mb <= 0:
        console.print("[red]--max-upload-mb must be positive.[/red]")
        return 2
    set_debug_logging(args.debug)
    config = PlayerConfig(
        root=root,
        ffprobe_path=args.ffprobe,
        max_upload_bytes=int(args.max_upload_mb * 1024 * 1024),
        progress_save_interval=args.progress_interval,
    )
    app = create_app(config)
    url = f"http://{_resolve_local_ip(args.host)}:{args.port}/"
    console.print(f"Serving audiobooks from [bold]{root}[/bold]")
    console.print(f"Web URL: [cyan]{url}[/cyan]")
    console.print("Press Ctrl+C to stop.\n")
    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_config=build_uvicorn_log_config(debug=args.debug),
    )
    return 0


def _run_transcript(args: argparse.Namespace) -> int:
    console = Console()
    err_console = Console(stderr=True)
    text_path = Path(args.text_file).expanduser()
    try:
        text = decode_transcript_bytes(text_path.read_bytes())
    except OSError as exc:
        err_console.print(f"[red]Cannot read {text_path}: {exc}[/red]")
        return 1
    if args.audio:
        try:
            duration = read_duration(Path(args.audio).expanduser(), ffprobe_path=args.ffprobe)
        except FFprobeError as exc:
            err_console.print(f"[red]{exc}[/red]")
            return 1
    else:
        duration = args.duration
    if duration is None or duration <= 0:
        err_console.print("[red]Duration must be positive.[/red]")
        return 2
    segments = estimate_transcript(text, duration)
    if args.json:
        print(json.dumps(segments_to_payload(segments), ensure_ascii=False, indent=2))
        return 0
    if not segments:
        err_console.print("[yellow]No complete sentences found.[/yellow]")
        return 0
    table = Table(title=f"{text_path.name} · {format_duration(duration)}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Start", justify="right")
    table.add_column("End", justify="right")
    table.add_column("Text", overflow="fold")
    for index, segment in enumerate(segments, start=1):
        table.add_row(
            str(index),
            f"{segment.start_time:.2f}",
            f"{segment.end_time:.2f}",
            segment.text,
        )
    console.print(table)
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="audioshelf",
        description="Audiobook library with timed transcripts. Commands: serve, transcript.",
    )
    _add_version_flag(ap)
    return ap


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] == "serve":
        serve_args = build_serve_parser().parse_args(argv[1:])
        return _run_serve(serve_args)
    if argv and argv[0] == "transcript":
        transcript_args = build_transcript_parser().parse_args(argv[1:])
        return _run_transcript(transcript_args)

    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    parser.parse_args(argv)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
