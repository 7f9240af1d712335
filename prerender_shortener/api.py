"""HTTP endpoints for creating short links and serving them to users and bots."""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlsplit

from flask import Flask, Response, jsonify, request

from .config import Config
from .db import Link, LinkNotFoundError, LinkStore, RenderStatus
from .render_queue import RenderQueue
from .shortener import generate_short_code

logger = logging.getLogger(__name__)

# Seconds a bot request waits for an unfinished render before being redirected.
BOT_RENDER_WAIT = 5.0

# Attempts at drawing an unused short code before giving up.
MAX_CODE_ATTEMPTS = 5

_BOT_MARKERS = (
    "bot",
    "crawler",
    "spider",
    "googlebot",
    "bingbot",
    "slurp",
    "duckduckbot",
    "baiduspider",
    "yandexbot",
    "facebook",
    "twitterbot",
    "linkedinbot",
)

_CORS_METHODS = "GET,POST,PUT,PATCH,DELETE,HEAD,OPTIONS"
_CORS_HEADERS = "Origin,Content-Length,Content-Type"
_CORS_MAX_AGE = str(12 * 60 * 60)


def is_bot(user_agent: str) -> bool:
    """Tell whether a User-Agent looks like a crawler or link-preview bot."""
    agent = (user_agent or "").lower()
    return any(marker in agent for marker in _BOT_MARKERS)


def is_valid_url(url: str) -> bool:
    """Tell whether url is an absolute URL with a scheme and a host, fragment or opaque part."""
    if not isinstance(url, str) or not url:
        return False
    lowered = url.lower()
    if lowered.startswith("file:/"):
        return True
    try:
        parts = urlsplit(lowered)
    except ValueError:
        return False
    if not parts.scheme:
        return False
    opaque = bool(parts.path) and not parts.path.startswith("/") and not parts.netloc
    return bool(parts.netloc or parts.fragment or opaque)


def _hostname(url: str) -> str:
    host = urlsplit(url).netloc.rpartition("@")[2]
    if host.startswith("["):
        end = host.find("]")
        return host[1:end] if end != -1 else host[1:]
    return host.partition(":")[0]


def _domain_allowed(hostname: str, allowed_domains: str) -> bool:
    return any(domain.strip() == hostname for domain in allowed_domains.split(","))


def _redirect(location: str) -> Response:
    return Response(
        f'<a href="{location}">Found</a>.\n',
        status=302,
        headers={"Location": location},
        content_type="text/html; charset=utf-8",
    )


def _html(content: str) -> Response:
    return Response(content, status=200, content_type="text/html; charset=utf-8")


def _link_body(link: Link) -> dict:
    return {"short_code": link.short_code, "original_url": link.original_url}


def _error(message: str, status: int):
    return jsonify({"error": message}), status


def create_app(config: Config, store: LinkStore, queue: RenderQueue) -> Flask:
    """Build the web application over the given configuration, store and render queue."""
    app = Flask(__name__)

    def wait_and_fetch(original_url: str, short_code: str, timeout: float) -> Optional[Link]:
        if not queue.wait_for_render(original_url, timeout):
            return None
        try:
            return store.get_by_short_code(short_code)
        except Exception as exc:
            logger.warning("Error fetching link %s after render wait: %s", short_code, exc)
            return None

    @app.before_request
    def cors_preflight():
        if (
            request.method == "OPTIONS"
            and request.headers.get("Origin")
            and request.headers.get("Access-Control-Request-Method")
        ):
            return Response(
                status=204,
                headers={
                    "Access-Control-Allow-Methods": _CORS_METHODS,
                    "Access-Control-Allow-Headers": _CORS_HEADERS,
                    "Access-Control-Max-Age": _CORS_MAX_AGE,
                },
            )
        return None

    @app.after_request
    def cors_headers(response: Response) -> Response:
        if request.headers.get("Origin"):
            response.headers["Access-Control-Allow-Origin"] = "*"
        return response

    @app.get("/health")
    def health():
        return jsonify({"status": "UP"}), 200

    @app.get("/status")
    def status():
        return jsonify({"status": "UP", "render_queue": queue.status()}), 200

    @app.post("/generate")
    def generate():
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return _error("Invalid request body: expected a JSON object", 400)
        url = payload.get("url")
        if url is not None and not isinstance(url, str):
            return _error("Invalid request body: 'url' must be a string", 400)
        if not url:
            return _error("Invalid request body: 'url' is required", 400)
        if not is_valid_url(url):
            return _error("Invalid request body: 'url' must be a valid URL", 400)

        if config.allowed_domains:
            try:
                hostname = _hostname(url)
            except ValueError as exc:
                return _error(f"Invalid URL format: {exc}", 400)
            if not _domain_allowed(hostname, config.allowed_domains):
                return _error(f"Domain '{hostname}' is not allowed for shortening.", 403)

        timeout = float(config.render_timeout_seconds)

        try:
            existing = store.get_by_original_url(url)
        except LinkNotFoundError:
            existing = None
        except Exception as exc:
            logger.error("Error checking existing URL %s: %s", url, exc)
            return _error("Database error while checking existing URL", 500)

        if existing is not None:
            logger.info(
                "URL %s already exists with short code %s (status: %s)",
                url,
                existing.short_code,
                existing.render_status,
            )
            if existing.render_status in (RenderStatus.COMPLETED, RenderStatus.FAILED):
                return jsonify(_link_body(existing)), 200
            if existing.render_status in (RenderStatus.PENDING, RenderStatus.RENDERING):
                if not queue.is_in_progress(url):
                    logger.info("URL %s exists but is not queued, re-queuing", url)
                    queue.queue_render(existing.short_code, url)
                updated = wait_and_fetch(url, existing.short_code, timeout)
                if updated is not None:
                    return jsonify(_link_body(updated)), 200
                logger.info("Render of %s not finished, returning existing short code", url)
                return jsonify(_link_body(existing)), 200

        short_code = ""
        for attempt in range(MAX_CODE_ATTEMPTS):
            short_code = generate_short_code()
            try:
                store.get_by_short_code(short_code)
            except LinkNotFoundError:
                break
            except Exception as exc:
                logger.error("Error checking existing short code %s: %s", short_code, exc)
                return _error("Database error while checking short code", 500)
            logger.info("Short code collision for %s, retrying", short_code)
            if attempt == MAX_CODE_ATTEMPTS - 1:
                logger.error("Max retries reached for short code generation for URL: %s", url)
                return _error(
                    "Failed to generate a unique short code after multiple attempts", 500
                )

        new_link = Link(
            short_code=short_code,
            original_url=url,
            rendered_html_content="",
            render_status=RenderStatus.PENDING,
        )
        try:
            store.create_link(new_link)
        except Exception as exc:
            logger.error("Error saving link %s for %s: %s", short_code, url, exc)
            return _error("Failed to save link to database", 500)

        logger.info("Saved link %s -> %s (status: pending)", short_code, url)
        queue.queue_render(short_code, url)

        updated = wait_and_fetch(url, short_code, timeout)
        if updated is not None and updated.render_status in (
            RenderStatus.COMPLETED,
            RenderStatus.FAILED,
        ):
            return jsonify(_link_body(updated)), 201
        logger.info("Render of %s not finished, returning short code anyway", short_code)
        return jsonify(_link_body(new_link)), 201

    @app.get("/<short_code>")
    def follow(short_code: str):
        try:
            link = store.get_by_short_code(short_code)
        except LinkNotFoundError:
            return _error("Short code not found", 404)
        except Exception as exc:
            logger.error("Error retrieving link for short code %s: %s", short_code, exc)
            return _error("Database error", 500)

        user_agent = request.headers.get("User-Agent", "")
        if not is_bot(user_agent):
            logger.info("Redirecting user (UA: %s) for %s to %s", user_agent, short_code, link.original_url)
            return _redirect(link.original_url)

        logger.info(
            "Bot request (UA: %s) for %s (render status: %s)",
            user_agent,
            short_code,
            link.render_status,
        )
        if link.render_status == RenderStatus.COMPLETED:
            if not link.rendered_html_content:
                logger.warning("No rendered HTML for completed link %s, redirecting", short_code)
                return _redirect(link.original_url)
            return _html(link.rendered_html_content)

        if link.render_status in (RenderStatus.PENDING, RenderStatus.RENDERING):
            updated = wait_and_fetch(link.original_url, short_code, BOT_RENDER_WAIT)
            if (
                updated is not None
                and updated.render_status == RenderStatus.COMPLETED
                and updated.rendered_html_content
            ):
                return _html(updated.rendered_html_content)
            logger.info("Rendering not ready for %s, redirecting bot", short_code)

        return _redirect(link.original_url)

    return app