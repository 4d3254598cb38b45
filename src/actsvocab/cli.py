from __future__ import annotations

import argparse
import os
import socket
import sys
from importlib import metadata
from pathlib import Path

import uvicorn
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

import tomllib

from .corpus import ALL_CHAPTERS, DEFAULT_UPSTREAM_BASE, ChapterCache, ChapterClient, load_chapters, parse_chapter
from .errors import InvalidChapterError
from .logging_utils import build_uvicorn_log_config, set_debug_logging
from .web import CACHE_FILENAME, WebConfig, create_app

DEFAULT_HOME = Path("~/.acts-vocab")


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover - defensive
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("actsvocab")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _default_home() -> str:
    return os.environ.get("ACTSVOCAB_HOME") or str(DEFAULT_HOME)


def _default_upstream() -> str:
    return os.environ.get("ACTSVOCAB_UPSTREAM") or DEFAULT_UPSTREAM_BASE


def _add_common_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--home",
        default=_default_home(),
        help="Directory holding the session and chapter cache files (default: %(default)s).",
    )
    parser.add_argument(
        "--upstream",
        default=_default_upstream(),
        help="Chapter URL prefix; the chapter number is appended (default: %(default)s).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Upstream request timeout in seconds (default: %(default)s).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging (cache hits, extraction strategy).",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="actsvocab",
        description="Greek vocabulary drill over the Book of Acts.",
    )
    ap.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"actsvocab {__version__}",
    )
    subparsers = ap.add_subparsers(dest="command")

    web = subparsers.add_parser("web", help="Serve the JSON API and chapter proxy.")
    _add_common_flags(web)
    web.add_argument("--host", default="0.0.0.0", help="Bind address (default: %(default)s).")
    web.add_argument("--port", type=int, default=2070, help="Port (default: %(default)s).")
    web.add_argument(
        "--text",
        help="Optional UTF-8 plain-text asset served by /api/text.",
    )

    fetch = subparsers.add_parser("fetch", help="Download and extract chapters into the cache.")
    _add_common_flags(fetch)
    fetch.add_argument(
        "chapters",
        nargs="*",
        help="Chapters to fetch (default: all 1..28).",
    )
    fetch.add_argument(
        "--force",
        action="store_true",
        help="Ignore cached chapters and download again.",
    )
    return ap


def _resolve_local_ip(host: str) -> str:
    if host not in {"0.0.0.0", "::"}:
        return host
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("8.8.8.8", 80))
            return sock.getsockname()[0]
    except OSError:
        return "127.0.0.1"


def _home_dir(args: argparse.Namespace) -> Path:
    home = Path(args.home).expanduser().resolve()
    home.mkdir(parents=True, exist_ok=True)
    return home


def _run_web(args: argparse.Namespace) -> int:
    home = _home_dir(args)
    text_path = Path(args.text).expanduser().resolve() if args.text else None
    config = WebConfig(
        root=home,
        upstream_base=args.upstream,
        timeout=args.timeout,
        text_path=text_path,
    )
    app = create_app(config)
    url = f"http://{_resolve_local_ip(args.host)}:{args.port}/"
    print(f"Serving actsvocab from {home}")
    print(f"Web URL: {url}")
    print("Press Ctrl+C to stop.\n")
    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_config=build_uvicorn_log_config(debug=args.debug),
    )
    return 0


def _run_fetch(args: argparse.Namespace) -> int:
    home = _home_dir(args)
    try:
        chapters = [parse_chapter(value) for value in args.chapters] or list(ALL_CHAPTERS)
    except InvalidChapterError as exc:
        raise SystemExit(str(exc)) from exc

    console = Console(stderr=True)
    client = ChapterClient(args.upstream, timeout=args.timeout)
    cache = ChapterCache(client=client, path=home / CACHE_FILENAME)
    cache.load_file()
    progress = Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    )
    try:
        with progress:
            task = progress.add_task("Fetching chapters", total=len(chapters))

            def _advance(chapter: int, error: str | None) -> None:
                progress.update(task, description=f"Chapter {chapter}/{chapters[-1]}")
                progress.advance(task)

            report = load_chapters(cache, chapters, force=args.force, progress_callback=_advance)
    finally:
        client.close()
    cache.save()

    for chapter in sorted(report.loaded):
        console.print(f"Chapter {chapter}: {len(report.loaded[chapter])} verses")
    for chapter in sorted(report.errors):
        console.print(f"[red]{report.errors[chapter]}[/red]")
    console.print(f"Cache written to {cache.path}")
    return 0 if report.ok else 1


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    args = parser.parse_args(argv)
    set_debug_logging(bool(getattr(args, "debug", False)))
    if args.command == "web":
        return _run_web(args)
    if args.command == "fetch":
        return _run_fetch(args)
    parser.print_help()
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
