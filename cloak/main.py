"""Command-line entrypoints for the cloaking proxy."""
from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import List, Optional

import uvicorn
from dotenv import load_dotenv

try:
    import uvloop
except ImportError:  # pragma: no cover - uvloop optional on some platforms
    uvloop = None

from cloak.fetch.cache import MemoryCacheStore
from cloak.fetch.fetcher import CachedFetcher, TargetRequest, UpstreamFetchError
from cloak.fetch.session import create_fetch_session
from cloak.observability.log import configure_logging
from cloak.observability.metrics import MetricsRegistry
from cloak.parse.meta import extract_meta_tags
from cloak.proxy.codec import DecodingError, decode, encode
from cloak.proxy.synth import synthesize
from cloak.settings import DEFAULT_LOGGING_PATH, Settings, load_settings
from cloak.web import create_app


def build_arg_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(prog="cloak", description="Twitter card cloaking proxy")
    parser.add_argument("--settings", type=Path, help="Path to settings.toml")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the proxy HTTP server")
    serve.add_argument("--host", help="Bind address (overrides settings)")
    serve.add_argument("--port", type=int, help="Bind port (overrides settings)")

    enc = sub.add_parser("encode", help="Print the token for a target URL")
    enc.add_argument("url")

    dec = sub.add_parser("decode", help="Print the URL carried by a token")
    dec.add_argument("token")

    preview = sub.add_parser("preview", help="Fetch a target once and print its crawler fragment")
    preview.add_argument("url")
    preview.add_argument("--user-agent", help="Identity forwarded to the origin (defaults to fetch.user_agent_fallback)")

    return parser


async def run_preview(url: str, *, user_agent: str, settings: Settings) -> str:
    """Fetch ``url`` bypassing any shared cache and return the synthesized body."""
    async with create_fetch_session(
        timeout=settings.fetch.timeout_seconds,
        max_connections=1,
    ) as session:
        fetcher = CachedFetcher(
            session=session,
            store=MemoryCacheStore(max_entries=1),
            metrics=MetricsRegistry(),
            timeout=settings.fetch.timeout_seconds,
        )
        result = await fetcher.fetch(TargetRequest.build(url, {"User-Agent": user_agent}))
    return synthesize(extract_meta_tags(result.text))


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI."""
    load_dotenv()
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    if args.command == "encode":
        print(encode(args.url))
        return

    if args.command == "decode":
        try:
            print(decode(args.token))
        except DecodingError as exc:
            raise SystemExit(f"Failed to decode token: {exc}")
        return

    settings = load_settings(args.settings)
    configure_logging(DEFAULT_LOGGING_PATH)

    if args.command == "preview":
        user_agent = args.user_agent or settings.fetch.user_agent_fallback
        try:
            print(asyncio.run(run_preview(args.url, user_agent=user_agent, settings=settings)))
        except UpstreamFetchError as exc:
            raise SystemExit(f"Upstream fetch failed: {exc}")
        return

    if args.command == "serve":
        uvicorn.run(
            create_app(settings),
            host=args.host or settings.server.host,
            port=args.port or settings.server.port,
            loop="uvloop" if uvloop is not None else "asyncio",
            log_config=None,
        )


if __name__ == "__main__":
    main()
