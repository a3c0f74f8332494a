from contextlib import contextmanager

import httpx
import pytest

import scraper_engine
from document_access import ScraperError
from record import NOT_FOUND, STATUS_SUCCESS
from scraper_engine import (
    STATUS_NOT_FOUND,
    AdaptiveRateLimiter,
    EnvironmentProbe,
    FetchStrategy,
    HttpxStrategy,
    ProductScraper,
    http_status_message,
    parse_retry_after,
)
from site_profile import MOBASE

PRODUCT_HTML = """
<html>
  <head><title>Sechskantschraube | MoBase</title></head>
  <body>
    <table>
      <tr><td>Werkstoff</td><td>S235JR</td></tr>
      <tr><td>Gewicht</td><td>0,2 kg</td></tr>
    </table>
    <script>window.initialData = {"product/dataProduct": {"data": {"product": {"name": "Schraube M8"}}}};</script>
  </body>
</html>
"""


def mock_client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def product_handler(request: httpx.Request) -> httpx.Response:
    article = request.url.path.rsplit("/", 1)[-1]
    if article.startswith("A2V"):
        return httpx.Response(200, text=PRODUCT_HTML)
    return httpx.Response(404, text="<html><title>404 Not Found</title></html>")


def make_scraper(handler, strategies=None, **kwargs) -> ProductScraper:
    scraper = ProductScraper(
        strategies=strategies or [HttpxStrategy(MOBASE, max_retries=1)],
        profile=MOBASE,
        env=EnvironmentProbe(),
        client=mock_client(handler),
        **kwargs,
    )
    scraper.rate_limiter = AdaptiveRateLimiter(min_delay=0, max_delay=0)
    return scraper


class BrokenStrategy(FetchStrategy):
    name = "broken"

    def supports(self, env):
        return True

    @contextmanager
    def open_document(self, client, url, rate_limiter):
        raise ScraperError("Browser could not be started")
        yield


class UnsupportedStrategy(BrokenStrategy):
    name = "unsupported"
    requires_browser = True

    def supports(self, env):
        return False


# ============================================================
# Lookups
# ============================================================

def test_scrape_product_page():
    with make_scraper(product_handler) as scraper:
        record = scraper.scrape(" A2V00001234567 ")

    assert record.identifier == "A2V00001234567"
    assert record.status == STATUS_SUCCESS
    assert record.title == "Schraube M8"
    assert record.material == "S235JR"
    assert record.weight == "0,2 kg"
    assert record.frozen


def test_scrape_requests_the_product_url():
    seen = []

    def handler(request):
        seen.append(str(request.url))
        return product_handler(request)

    with make_scraper(handler) as scraper:
        scraper.scrape("A2V00001234567")

    assert seen == [MOBASE.product_url("A2V00001234567")]


def test_not_found_page():
    with make_scraper(product_handler) as scraper:
        record = scraper.scrape("UNKNOWN-1")

    assert record.status == STATUS_NOT_FOUND
    assert record.material == NOT_FOUND
    assert record.frozen


def test_server_error_status_is_reported():
    with make_scraper(lambda request: httpx.Response(503)) as scraper:
        record = scraper.scrape("A2V00001234567")

    assert record.status == "HTTP-Fehler: 503"


def test_connection_error_becomes_failed_record():
    def handler(request):
        raise httpx.ConnectError("Connection refused", request=request)

    with make_scraper(handler) as scraper:
        record = scraper.scrape("A2V00001234567")

    assert record.status.startswith("Fehler: ")
    assert record.error_type == "ScraperError"


def test_timeouts_are_retried():
    attempts = []

    def handler(request):
        attempts.append(request)
        if len(attempts) < 2:
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(200, text=PRODUCT_HTML)

    with make_scraper(handler, strategies=[HttpxStrategy(MOBASE, max_retries=3)]) as scraper:
        record = scraper.scrape("A2V00001234567")

    assert len(attempts) == 2
    assert record.status == STATUS_SUCCESS


def test_rate_limited_request_is_retried():
    responses = iter([httpx.Response(429), httpx.Response(200, text=PRODUCT_HTML)])

    with make_scraper(lambda request: next(responses),
                      strategies=[HttpxStrategy(MOBASE, max_retries=3)]) as scraper:
        record = scraper.scrape("A2V00001234567")

    assert record.material == "S235JR"


def test_falls_back_to_next_strategy():
    static = HttpxStrategy(MOBASE, max_retries=1)

    with make_scraper(product_handler, strategies=[UnsupportedStrategy(), BrokenStrategy(), static]) as scraper:
        record = scraper.scrape("A2V00001234567")
        assert scraper.strategy_used is static

    assert record.status == STATUS_SUCCESS


def test_all_strategies_failing():
    with make_scraper(product_handler, strategies=[BrokenStrategy()]) as scraper:
        record = scraper.scrape("A2V00001234567")

    assert record.status == "Fehler: Browser could not be started"
    assert record.error_type == "ScraperError"


def test_no_viable_strategy():
    with make_scraper(product_handler, strategies=[UnsupportedStrategy()]) as scraper:
        record = scraper.scrape("A2V00001234567")

    assert "No viable scraping strategy" in record.status


def test_scrape_many_keeps_input_order():
    numbers = ["A2V00000000001", "UNKNOWN-2", "A2V00000000003"]

    with make_scraper(product_handler, max_workers=3) as scraper:
        records = scraper.scrape_many(numbers)

    assert [r.identifier for r in records] == numbers
    assert [r.status for r in records] == [STATUS_SUCCESS, STATUS_NOT_FOUND, STATUS_SUCCESS]


def test_diagnose_reports_page_structure():
    with make_scraper(product_handler) as scraper:
        info = scraper.diagnose("A2V00001234567")

    assert info["strategy"] == "httpx"
    assert info["httpStatus"] == 200
    assert info["hasInitialData"] is True
    assert info["productDataExists"] is True
    assert info["tables"] == 1
    assert info["bodyText"].endswith("...")


def test_diagnose_raises_when_nothing_loads():
    with make_scraper(product_handler, strategies=[BrokenStrategy()]) as scraper:
        with pytest.raises(ScraperError):
            scraper.diagnose("A2V00001234567")


# ============================================================
# Helpers
# ============================================================

@pytest.mark.parametrize("status, message", [
    (404, "Produkt nicht gefunden (404)"),
    (500, "HTTP-Fehler: 500"),
    (403, "HTTP-Fehler: 403"),
])
def test_http_status_message(status, message):
    assert http_status_message(status) == message


def test_rate_limiter_backs_off_and_recovers():
    limiter = AdaptiveRateLimiter(min_delay=0.5, max_delay=2.0)

    limiter.record_rate_limit()
    assert limiter.current_delay == 1.0
    limiter.record_rate_limit()
    limiter.record_rate_limit()
    assert limiter.current_delay == 2.0

    for _ in range(10):
        limiter.record_success()
    assert limiter.current_delay == pytest.approx(1.8)


def test_retry_after_is_honored_once(monkeypatch):
    pauses = []
    monkeypatch.setattr(scraper_engine.time, "sleep", pauses.append)
    limiter = AdaptiveRateLimiter(min_delay=0, max_delay=0)

    limiter.record_rate_limit(retry_after=5.0)
    limiter.wait()
    limiter.wait()

    assert pauses == [5.0, 0]


def test_rate_limited_request_waits_for_retry_after(monkeypatch):
    pauses = []
    monkeypatch.setattr(scraper_engine.time, "sleep", pauses.append)
    responses = iter([
        httpx.Response(429, headers={"Retry-After": "7"}),
        httpx.Response(200, text=PRODUCT_HTML),
    ])

    with make_scraper(lambda request: next(responses),
                      strategies=[HttpxStrategy(MOBASE, max_retries=2)]) as scraper:
        record = scraper.scrape("A2V00001234567")

    assert 7.0 in pauses
    assert record.status == STATUS_SUCCESS


@pytest.mark.parametrize("header, seconds", [
    ("12", 12.0),
    ("0", 0.0),
    ("-3", 0.0),
    ("Wed, 21 Oct 2026 07:28:00 GMT", None),
    (None, None),
])
def test_parse_retry_after(header, seconds):
    assert parse_retry_after(header) == seconds


def test_environment_always_offers_static_fetch():
    probe = EnvironmentProbe()
    probe._playwright_available = False
    probe._browser_available = False

    assert probe.get_capabilities() == {
        "static_fetch": True,
        "playwright_available": False,
        "browser_available": False,
    }
