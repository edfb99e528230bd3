"""Command-line entry point for JournalDesk.

Usage:
    journaldesk                        # MCP server on stdio
    journaldesk --api                  # REST API under uvicorn
    journaldesk --both                 # REST API in a thread, MCP on stdio
    journaldesk --transport sse        # MCP over SSE instead of stdio
    journaldesk --sweep-overdue        # mark late reviews overdue, then exit

The overdue sweep is meant for cron; nothing in the server runs it on a timer.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import threading

from journaldesk import __version__
from journaldesk.config import settings
from journaldesk.logging_setup import configure_logging

logger = logging.getLogger("journaldesk")


def _build_parser() -> argparse.ArgumentParser:
    server = settings.server
    parser = argparse.ArgumentParser(
        prog="journaldesk",
        description="Manuscript workflow, double-blind review and publication backend",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--api", action="store_true", help="Serve the REST API only")
    mode.add_argument("--both", action="store_true", help="Serve the REST API and the MCP server")
    mode.add_argument(
        "--sweep-overdue",
        action="store_true",
        help="Mark in-progress reviews past their due date as overdue and exit",
    )

    parser.add_argument(
        "--transport",
        choices=["stdio", "sse", "streamable-http"],
        default=server.mcp_transport,
        help=f"MCP transport (default: {server.mcp_transport})",
    )
    parser.add_argument("--host", default=server.host, help=f"API host (default: {server.host})")
    parser.add_argument(
        "--port", type=int, default=server.rest_port, help=f"API port (default: {server.rest_port})"
    )
    parser.add_argument(
        "--log-level", default=server.log_level, help=f"Log level (default: {server.log_level})"
    )
    return parser


def main(argv: list[str] | None = None):
    args = _build_parser().parse_args(argv)

    configure_logging(args.log_level)
    settings.ensure_dirs()
    logger.debug("Data directory: %s", settings.data_dir)

    if args.sweep_overdue:
        count = asyncio.run(_sweep_overdue())
        logger.info("Overdue sweep finished: %d review(s) marked", count)
    elif args.api:
        _serve_api(args.host, args.port, log_level=args.log_level)
    elif args.both:
        _serve_both(args.host, args.port, args.transport, args.log_level)
    else:
        _serve_mcp(args.transport)


async def _sweep_overdue() -> int:
    from journaldesk.database import get_db
    from journaldesk.review_service import update_overdue_reviews

    db = await get_db()
    try:
        return await update_overdue_reviews(db, actor_id="cli")
    finally:
        await db.close()


def _serve_mcp(transport: str):
    from journaldesk.mcp_server import mcp

    # On stdio, stdout carries the protocol; log handlers write to stderr.
    logger.info("MCP server starting (transport=%s)", transport)
    mcp.run(transport=transport)


def _serve_api(host: str, port: int, workers: int | None = None, log_level: str | None = None):
    import uvicorn

    logger.info("REST API starting on http://%s:%d (OpenAPI docs at /docs)", host, port)
    uvicorn.run(
        "journaldesk.api:app",
        host=host,
        port=port,
        log_level=log_level or settings.server.log_level,
        workers=settings.server.workers if workers is None else workers,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )


def _serve_both(host: str, port: int, transport: str, log_level: str):
    # uvicorn gets a single worker here; MCP keeps the main thread for stdio.
    threading.Thread(
        target=_serve_api,
        args=(host, port, 1, log_level),
        name="journaldesk-api",
        daemon=True,
    ).start()
    _serve_mcp(transport)


if __name__ == "__main__":
    main()
