"""Render a page in a headless browser and return its final HTML."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time

logger = logging.getLogger(__name__)

# Executable names tried, in order, when no browser path is configured.
BROWSER_CANDIDATES = (
    "chromium",
    "chromium-browser",
    "google-chrome",
    "google-chrome-stable",
    "chrome",
    "headless-shell",
)

# Extra time, in milliseconds, given to scripts after the network settles.
SCRIPT_SETTLE_MS = 2000


class RenderError(RuntimeError):
    """Raised when a page cannot be rendered."""


def _find_browser(browser_path: str) -> str:
    if browser_path:
        if os.path.isfile(browser_path) and os.access(browser_path, os.X_OK):
            return browser_path
        found = shutil.which(browser_path)
        if found:
            return found
        raise RenderError(f"failed to launch browser with custom path {browser_path}")
    for name in BROWSER_CANDIDATES:
        found = shutil.which(name)
        if found:
            return found
    raise RenderError("no headless browser found on PATH")


def _browser_command(browser: str, url: str) -> list[str]:
    return [
        browser,
        "--headless",
        "--disable-gpu",
        "--no-first-run",
        "--no-default-browser-check",
        "--hide-scrollbars",
        f"--virtual-time-budget={SCRIPT_SETTLE_MS}",
        "--dump-dom",
        url,
    ]


def render_page(url: str, timeout: float = 90, browser_path: str = "") -> str:
    """Load url in a headless browser and return the rendered DOM as HTML.

    The whole render is bounded by timeout seconds. Raises RenderError when the
    browser cannot be found or started, fails, or does not finish in time.
    """
    logger.info("Rendering started for URL: %s (timeout: %ss)", url, timeout)
    if timeout <= 0:
        raise RenderError(f"rendering timeout after {timeout}s for URL: {url}")

    browser = _find_browser(browser_path)
    command = _browser_command(browser, url)
    started = time.monotonic()
    try:
        completed = subprocess.run(
            command,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as exc:
        logger.warning("Rendering timeout after %ss for URL: %s", timeout, url)
        raise RenderError(f"rendering timeout after {timeout}s for URL: {url}") from exc
    except OSError as exc:
        raise RenderError(f"failed to launch browser {browser}: {exc}") from exc

    if completed.returncode != 0:
        detail = completed.stderr.decode("utf-8", errors="replace").strip()
        logger.warning("Rendering failed for URL: %s, error: %s", url, detail)
        raise RenderError(
            f"browser exited with status {completed.returncode} for {url}: {detail}"
        )

    html = completed.stdout.decode("utf-8", errors="replace").rstrip("\r\n")
    logger.info(
        "Rendering completed for URL: %s in %.2fs (length: %d characters)",
        url,
        time.monotonic() - started,
        len(html),
    )
    return html