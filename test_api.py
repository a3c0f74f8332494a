import threading

import pytest
from fastapi.testclient import TestClient

from api import app, get_environment, get_scraper_factory
from record import SERIALIZED_KEYS, STATUS_SUCCESS
from scraper_engine import HttpxStrategy
from site_profile import MOBASE
from test_scraper_engine import BrokenStrategy, make_scraper, product_handler


class StaticEnvironment:
    def __init__(self, browser_available):
        self.browser_available = browser_available


class ThreadTrackingStrategy(HttpxStrategy):
    """Static strategy that notes which thread fetched and which cleaned up."""

    def __init__(self):
        super().__init__(MOBASE, max_retries=1)
        self.fetch_threads = []
        self.cleanup_threads = []

    def fetch_record(self, client, article_number, rate_limiter):
        self.fetch_threads.append(threading.get_ident())
        return super().fetch_record(client, article_number, rate_limiter)

    def cleanup(self):
        self.cleanup_threads.append(threading.get_ident())


def scraper_factory(*strategies):
    return lambda: (lambda: make_scraper(product_handler, strategies=list(strategies) or None))


@pytest.fixture
def client():
    app.dependency_overrides[get_scraper_factory] = scraper_factory()
    app.dependency_overrides[get_environment] = lambda: StaticEnvironment(False)
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_scrape_returns_record(client):
    resp = client.post("/api/scrape", json={"articleNumber": " A2V00001234567 "})

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert set(body["data"]) == set(SERIALIZED_KEYS.values())
    assert body["data"]["identifier"] == "A2V00001234567"
    assert body["data"]["status"] == STATUS_SUCCESS
    assert body["data"]["material"] == "S235JR"
    assert "timestamp" in body


@pytest.mark.parametrize("payload", [{}, {"articleNumber": ""}, {"articleNumber": "   "}])
def test_scrape_requires_article_number(client, payload):
    resp = client.post("/api/scrape", json=payload)

    assert resp.status_code == 400
    assert resp.json() == {"error": "Artikelnummer ist erforderlich", "status": "error"}


def test_scrape_unknown_article_is_still_a_record(client):
    resp = client.post("/api/scrape", json={"articleNumber": "UNKNOWN-1"})

    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "Produkt nicht gefunden (404)"


def test_health(client):
    resp = client.get("/api/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "OK"
    assert body["service"] == "DB Produktvergleich API"
    assert body["browser"] == "Nicht verfügbar"


def test_health_with_browser(client):
    app.dependency_overrides[get_environment] = lambda: StaticEnvironment(True)

    assert client.get("/api/health").json()["browser"] == "Bereit"


def test_debug(client):
    resp = client.get("/api/debug/A2V00001234567")

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["url"] == MOBASE.product_url("A2V00001234567")
    assert body["debugInfo"]["productDataExists"] is True


def test_debug_failure_returns_500():
    app.dependency_overrides[get_scraper_factory] = scraper_factory(BrokenStrategy())
    try:
        resp = TestClient(app).get("/api/debug/A2V00001234567")
    finally:
        app.dependency_overrides.clear()

    assert resp.status_code == 500
    body = resp.json()
    assert body["success"] is False
    assert body["articleNumber"] == "A2V00001234567"
    assert "Browser could not be started" in body["error"]


def test_scraper_is_used_and_closed_on_one_thread(client):
    tracker = ThreadTrackingStrategy()
    app.dependency_overrides[get_scraper_factory] = scraper_factory(tracker)

    for _ in range(3):
        resp = client.post("/api/scrape", json={"articleNumber": "A2V00001234567"})
        assert resp.status_code == 200

    assert len(tracker.fetch_threads) == 3
    assert tracker.cleanup_threads == tracker.fetch_threads


def test_each_request_gets_a_fresh_scraper(client):
    built = []

    def factory():
        scraper = make_scraper(product_handler)
        built.append(scraper)
        return scraper

    app.dependency_overrides[get_scraper_factory] = lambda: factory
    client.post("/api/scrape", json={"articleNumber": "A2V00001234567"})
    client.get("/api/debug/A2V00001234567")

    assert len(built) == 2
    assert all(s.client.is_closed for s in built)
