"""Command that starts the short-link server with its database and render workers."""

from __future__ import annotations

import argparse
import functools
import logging
import signal
from typing import Optional, Sequence

from .api import create_app
from .config import ConfigError, load_config
from .db import LinkStore
from .render_queue import RenderQueue
from .renderer import render_page

logger = logging.getLogger(__name__)

_MASK = "********"


class _ShutdownRequested(Exception):
    """Raised from a signal handler to leave the serving loop."""


def redact_db_url(db_url: str) -> str:
    """Mask what lies between the first ':' and the following '@' of a database URL.

    The URL is returned unchanged when there is no such non-empty span.
    """
    colon = db_url.find(":")
    if colon == -1:
        return db_url
    start = colon + 1
    end = db_url.find("@", start)
    if end == -1 or end <= start:
        return db_url
    return db_url[:start] + _MASK + db_url[end:]


def _parse_address(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"invalid listen address {address!r}: missing port")
    try:
        port_number = int(port)
    except ValueError:
        raise ValueError(f"invalid listen address {address!r}: bad port") from None
    if not 0 <= port_number <= 65535:
        raise ValueError(f"invalid listen address {address!r}: port out of range")
    host = host.strip("[]") or "0.0.0.0"
    return host, port_number


def _request_shutdown(signum, frame) -> None:
    raise _ShutdownRequested()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the server until it is interrupted; return the process exit status."""
    parser = argparse.ArgumentParser(
        prog="prerender-shortener",
        description="Serve short links, with pre-rendered pages for bots.",
    )
    parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    try:
        config = load_config()
    except ConfigError as exc:
        logger.error("Failed to load configuration: %s", exc)
        return 1
    logger.info("Configuration loaded successfully.")

    try:
        host, port = _parse_address(config.server_port)
    except ValueError as exc:
        logger.error("Failed to start server: %s", exc)
        return 1

    logger.info("Connecting to database: %s...", redact_db_url(config.database_url))
    try:
        store = LinkStore(config.database_url)
    except Exception as exc:
        logger.error("Failed to connect to database: %s", exc)
        return 1
    logger.info("Database connection successful and schema migrated.")

    render = functools.partial(
        render_page,
        timeout=config.render_timeout_seconds,
        browser_path=config.rod_bin_path,
    )
    queue = RenderQueue(store, render, worker_count=config.render_worker_count)

    previous = {
        signum: signal.signal(signum, _request_shutdown)
        for signum in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        queue.start()
        app = create_app(config, store, queue)
        logger.info("Starting server on %s...", config.server_port)
        app.run(host=host, port=port, threaded=True)
    except _ShutdownRequested:
        logger.info("Shutting down gracefully...")
    except OSError as exc:
        logger.error("Failed to start server: %s", exc)
        return 1
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)
        queue.shutdown()
        store.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())