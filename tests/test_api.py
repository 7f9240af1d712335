import pytest

from prerender_shortener.api import create_app, is_bot, is_valid_url
from prerender_shortener.config import Config
from prerender_shortener.db import Link, LinkStore, RenderStatus
from prerender_shortener.render_queue import RenderQueue
from prerender_shortener.shortener import ALPHABET


def _render(url):
    return f"<html><body>Rendered {url}</body></html>"


def _failing_render(url):
    raise RuntimeError("browser crashed")


@pytest.fixture
def store():
    link_store = LinkStore("sqlite://")
    yield link_store
    link_store.close()


@pytest.fixture
def config():
    return Config(
        server_port=":8080",
        database_url="sqlite://",
        allowed_domains="",
        render_worker_count=1,
        render_timeout_seconds=30,
    )


def _make_client(config, store, render=_render):
    queue = RenderQueue(store, render, worker_count=1).start()
    app = create_app(config, store, queue)
    return app.test_client(), queue


@pytest.fixture
def client(config, store):
    test_client, queue = _make_client(config, store)
    yield test_client
    queue.shutdown()


def _add(store, short_code, url, status, html=""):
    store.create_link(
        Link(
            short_code=short_code,
            original_url=url,
            rendered_html_content=html,
            render_status=status,
        )
    )


def test_generate_valid_url(client, store):
    response = client.post("/generate", json={"url": "https://example.com/test"})
    assert response.status_code == 201
    body = response.get_json()
    assert body["original_url"] == "https://example.com/test"
    assert len(body["short_code"]) == 6
    link = store.get_by_short_code(body["short_code"])
    assert link.render_status == RenderStatus.COMPLETED
    assert link.rendered_html_content == "<html><body>Rendered https://example.com/test</body></html>"


def test_generate_existing_url(client, store):
    _add(store, "EXIST1", "https://existing.com", RenderStatus.COMPLETED)
    response = client.post("/generate", json={"url": "https://existing.com"})
    assert response.status_code == 200
    assert response.get_json() == {
        "short_code": "EXIST1",
        "original_url": "https://existing.com",
    }


def test_generate_existing_failed_url_returns_existing(client, store):
    _add(store, "FAIL01", "https://failed.com", RenderStatus.FAILED)
    response = client.post("/generate", json={"url": "https://failed.com"})
    assert response.status_code == 200
    assert response.get_json()["short_code"] == "FAIL01"


def test_generate_existing_pending_url_is_requeued(client, store):
    _add(store, "PEND01", "https://pending.com", RenderStatus.PENDING)
    response = client.post("/generate", json={"url": "https://pending.com"})
    assert response.status_code == 200
    assert response.get_json()["short_code"] == "PEND01"
    link = store.get_by_short_code("PEND01")
    assert link.render_status == RenderStatus.COMPLETED
    assert "Rendered https://pending.com" in link.rendered_html_content


def test_generate_invalid_json(client):
    response = client.post(
        "/generate", data="invalid json", content_type="application/json"
    )
    assert response.status_code == 400
    assert "error" in response.get_json()


def test_generate_missing_url(client):
    response = client.post("/generate", json={"noturl": "test"})
    assert response.status_code == 400


def test_generate_invalid_url_format(client):
    response = client.post("/generate", json={"url": "not-a-valid-url"})
    assert response.status_code == 400


@pytest.mark.parametrize(
    "url, valid",
    [
        ("https://example.com", True),
        ("http://example.com", True),
        ("", False),
        ("not-a-url", False),
    ],
)
def test_generate_request_validation(client, url, valid):
    response = client.post("/generate", json={"url": url})
    assert response.status_code == (201 if valid else 400)


def test_generate_response_format(client):
    response = client.post("/generate", json={"url": "https://format-test.com"})
    assert response.status_code == 201
    body = response.get_json()
    assert body["original_url"] == "https://format-test.com"
    assert len(body["short_code"]) == 6
    assert set(body["short_code"]) <= set(ALPHABET)


def test_generate_with_failed_render_still_returns_code(config, store):
    test_client, queue = _make_client(config, store, render=_failing_render)
    try:
        response = test_client.post("/generate", json={"url": "https://broken.com"})
    finally:
        queue.shutdown()
    assert response.status_code == 201
    code = response.get_json()["short_code"]
    link = store.get_by_short_code(code)
    assert link.render_status == RenderStatus.FAILED
    assert link.rendered_html_content == ""


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://allowed.com/page", 201),
        ("https://example.org/test", 201),
        ("https://forbidden.com/page", 403),
    ],
)
def test_generate_with_domain_restriction(config, store, url, expected):
    config.allowed_domains = "allowed.com,example.org"
    test_client, queue = _make_client(config, store)
    try:
        response = test_client.post("/generate", json={"url": url})
    finally:
        queue.shutdown()
    assert response.status_code == expected


def test_domain_restriction_trims_spaces_and_reports_domain(config, store):
    config.allowed_domains = " allowed.com , example.org "
    test_client, queue = _make_client(config, store)
    try:
        allowed = test_client.post("/generate", json={"url": "https://example.org:8443/x"})
        forbidden = test_client.post("/generate", json={"url": "https://other.net/x"})
    finally:
        queue.shutdown()
    assert allowed.status_code == 201
    assert forbidden.status_code == 403
    assert forbidden.get_json()["error"] == "Domain 'other.net' is not allowed for shortening."


def test_redirect_user_to_original_url(client, store):
    _add(store, "USER123", "https://redirect-test.com", RenderStatus.COMPLETED)
    response = client.get(
        "/USER123",
        headers={"User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"},
    )
    assert response.status_code == 302
    assert response.headers["Location"] == "https://redirect-test.com"


def test_serve_html_to_bot(client, store):
    _add(
        store,
        "BOT123",
        "https://bot-test.com",
        RenderStatus.COMPLETED,
        "<html><body>Rendered Content</body></html>",
    )
    response = client.get(
        "/BOT123", headers={"User-Agent": "Googlebot/2.1 (+http://www.google.com/bot.html)"}
    )
    assert response.status_code == 200
    assert "text/html" in response.headers["Content-Type"]
    assert response.get_data(as_text=True) == "<html><body>Rendered Content</body></html>"


def test_short_code_not_found(client):
    response = client.get("/NOTFOUND", headers={"User-Agent": "Mozilla/5.0"})
    assert response.status_code == 404
    assert response.get_json() == {"error": "Short code not found"}


def test_bot_with_failed_rendering_is_redirected(client, store):
    _add(store, "FAILED123", "https://failed-test.com", RenderStatus.FAILED)
    response = client.get("/FAILED123", headers={"User-Agent": "Googlebot/2.1"})
    assert response.status_code == 302
    assert response.headers["Location"] == "https://failed-test.com"


def test_bot_with_completed_but_empty_html_is_redirected(client, store):
    _add(store, "EMPTY1", "https://empty-test.com", RenderStatus.COMPLETED)
    response = client.get("/EMPTY1", headers={"User-Agent": "Googlebot/2.1"})
    assert response.status_code == 302
    assert response.headers["Location"] == "https://empty-test.com"


def test_bot_with_pending_render_not_queued_is_redirected(client, store):
    _add(store, "PEND02", "https://pending-bot.com", RenderStatus.PENDING)
    response = client.get("/PEND02", headers={"User-Agent": "Twitterbot/1.0"})
    assert response.status_code == 302
    assert response.headers["Location"] == "https://pending-bot.com"


BOT_AGENTS = [
    "Googlebot/2.1 (+http://www.google.com/bot.html)",
    "Mozilla/5.0 (compatible; bingbot/2.0; +http://www.bing.com/bingbot.htm)",
    "Slurp/3.0 (http://www.inktomi.com/slurp.html)",
    "DuckDuckBot/1.1; (+http://duckduckgo.com/duckduckbot.html)",
    "BaiduSpider/2.0",
    "YandexBot/3.0",
    "facebookexternalhit/1.1",
    "Twitterbot/1.0",
    "LinkedInBot/1.0",
    "SomeCustomBot/1.0",
    "Web Crawler 1.0",
    "Search Spider",
]

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36",
]


@pytest.mark.parametrize("user_agent", BOT_AGENTS)
def test_bot_detection_serves_html(client, store, user_agent):
    _add(
        store,
        "DETECT123",
        "https://detection-test.com",
        RenderStatus.COMPLETED,
        "<html><body>Bot Content</body></html>",
    )
    response = client.get("/DETECT123", headers={"User-Agent": user_agent})
    assert response.status_code == 200
    assert "text/html" in response.headers["Content-Type"]
    assert "Bot Content" in response.get_data(as_text=True)


@pytest.mark.parametrize("user_agent", USER_AGENTS)
def test_user_detection_redirects(client, store, user_agent):
    _add(
        store,
        "DETECT123",
        "https://detection-test.com",
        RenderStatus.COMPLETED,
        "<html><body>Bot Content</body></html>",
    )
    response = client.get("/DETECT123", headers={"User-Agent": user_agent})
    assert response.status_code == 302
    assert response.headers["Location"] == "https://detection-test.com"


@pytest.mark.parametrize("user_agent", BOT_AGENTS)
def test_is_bot_true(user_agent):
    assert is_bot(user_agent) is True


@pytest.mark.parametrize("user_agent", USER_AGENTS + [""])
def test_is_bot_false(user_agent):
    assert is_bot(user_agent) is False


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://example.com", True),
        ("http://example.com", True),
        ("HTTPS://EXAMPLE.COM/Path", True),
        ("file:///tmp/page.html", True),
        ("mailto:someone@example.com", True),
        ("", False),
        ("not-a-url", False),
        ("https://", False),
        ("/relative/path", False),
    ],
)
def test_is_valid_url(url, expected):
    assert is_valid_url(url) is expected


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.get_json() == {"status": "UP"}


def test_status(client):
    response = client.get("/status")
    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "UP"
    queue_status = body["render_queue"]
    assert queue_status["worker_count"] == 1
    assert queue_status["queue_length"] == 0
    assert queue_status["in_progress_count"] == 0
    assert queue_status["in_progress_urls"] == []


def test_cors_allows_any_origin(client):
    response = client.get("/health", headers={"Origin": "https://app.example.com"})
    assert response.headers["Access-Control-Allow-Origin"] == "*"


def test_cors_preflight(client):
    response = client.open(
        "/generate",
        method="OPTIONS",
        headers={
            "Origin": "https://app.example.com",
            "Access-Control-Request-Method": "POST",
        },
    )
    assert response.status_code == 204
    assert response.headers["Access-Control-Allow-Origin"] == "*"
    assert "POST" in response.headers["Access-Control-Allow-Methods"]