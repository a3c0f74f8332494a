"""
Scraper Engine - Loads product pages and hands them to the extraction pipeline
==============================================================================
Provides environment-aware page loading with automatic strategy selection.

Components:
- EnvironmentProbe: Detects runtime capabilities (Playwright, browser)
- Strategy classes: PlaywrightStrategy (rendered page), HttpxStrategy (static HTML)
- ProductScraper: Orchestrator that selects viable strategies and runs lookups

Optimizations:
- ThreadPoolExecutor for parallel lookups with the static strategy
- httpx for HTTP/2 support and connection pooling
- Adaptive rate limiting (starts fast, slows on 429s)
"""

import os
import logging
import subprocess
import sys
import time
import random
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from threading import Lock
from typing import Any, Dict, Iterator, List, Optional, Tuple

import httpx

from document_access import DocumentAccessor, PlaywrightDocument, ScraperError, SoupDocument
from merge_engine import extract_attributes, failed_record, status_record
from record import CanonicalRecord
from site_profile import MOBASE, SiteProfile

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_WORKERS = int(os.environ.get("MOBASE_WORKERS", 5))
DEFAULT_TIMEOUT = int(os.environ.get("MOBASE_TIMEOUT", 30))
DEFAULT_MIN_DELAY = 0.3
DEFAULT_MAX_DELAY = 2.0
PAGE_TIMEOUT_MS = 45000
SETTLE_MS = 3000
PAYLOAD_WAIT_MS = 15000

STATUS_NO_RESPONSE = "Keine Antwort vom Server"
STATUS_NOT_FOUND = "Produkt nicht gefunden (404)"

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-web-security",
    "--disable-features=VizDisplayCompositor",
]

PAYLOAD_READY_JS = """([name, minKeys]) => {
    const data = window[name];
    return !!data && Object.keys(data).length > minKeys;
}"""


def http_status_message(status: int) -> str:
    if status == 404:
        return STATUS_NOT_FOUND
    return f"HTTP-Fehler: {status}"


# =============================================================================
# ADAPTIVE RATE LIMITER
# =============================================================================

def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds from a Retry-After header; HTTP-date values are ignored."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class AdaptiveRateLimiter:
    """
    Pause between catalog requests. Starts at min_delay, doubles on 429,
    creeps up on errors and eases off after a run of successes. A Retry-After
    from the server is honored once, even above max_delay.
    """

    SUCCESS_STREAK = 10

    def __init__(self, min_delay: float = DEFAULT_MIN_DELAY, max_delay: float = DEFAULT_MAX_DELAY):
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.current_delay = min_delay
        self.pending_pause = 0.0
        self.successes = 0
        self.lock = Lock()

    def record_success(self):
        with self.lock:
            self.successes += 1
            if self.successes >= self.SUCCESS_STREAK:
                self.current_delay = max(self.min_delay, self.current_delay * 0.9)
                self.successes = 0

    def record_rate_limit(self, retry_after: Optional[float] = None):
        with self.lock:
            self.current_delay = min(self.max_delay, self.current_delay * 2)
            self.successes = 0
            if retry_after is not None:
                self.pending_pause = max(self.pending_pause, retry_after)
        logger.warning(f"429 from catalog, delay now {self.current_delay:.1f}s"
                       + (f" (server asks {retry_after:.0f}s)" if retry_after is not None else ""))

    def record_error(self):
        with self.lock:
            self.current_delay = min(self.max_delay, self.current_delay * 1.2)
            self.successes = 0

    def wait(self):
        """Sleep for the current delay plus jitter, or for a pending Retry-After."""
        with self.lock:
            delay = self.current_delay
            pause, self.pending_pause = self.pending_pause, 0.0
        time.sleep(max(pause, delay + random.uniform(0, delay * 0.3)))


# =============================================================================
# ENVIRONMENT PROBE
# =============================================================================

class EnvironmentProbe:
    """
    Finds out once which fetch paths the runtime supports: static fetching
    always works, the browser path needs Playwright and a launchable Chromium.
    """

    def __init__(self):
        self._playwright_available: Optional[bool] = None
        self._browser_available: Optional[bool] = None
        self.browser_error: Optional[str] = None

    @property
    def playwright_available(self) -> bool:
        if self._playwright_available is None:
            try:
                from playwright.sync_api import sync_playwright  # noqa: F401
                self._playwright_available = True
            except ImportError:
                self.browser_error = "playwright is not installed"
                self._playwright_available = False
        return self._playwright_available

    @property
    def browser_available(self) -> bool:
        """True if headless Chromium actually launches with the scraper's flags."""
        if self._browser_available is None:
            self._browser_available = self.playwright_available and self._launch_chromium()
        return self._browser_available

    def _launch_chromium(self) -> bool:
        from playwright.sync_api import Error as PlaywrightError, sync_playwright
        try:
            with sync_playwright() as p:
                p.chromium.launch(headless=True, args=BROWSER_ARGS).close()
        except PlaywrightError as e:
            self.browser_error = str(e).splitlines()[0]
            logger.debug(f"Chromium launch failed: {e}")
            return False
        return True

    def get_capabilities(self) -> Dict[str, Any]:
        caps: Dict[str, Any] = {
            "static_fetch": True,
            "playwright_available": self.playwright_available,
            "browser_available": self.browser_available,
        }
        if self.browser_error:
            caps["browser_error"] = self.browser_error
        return caps

    def __repr__(self):
        return f"EnvironmentProbe({self.get_capabilities()})"


# =============================================================================
# STRATEGY BASE CLASS
# =============================================================================

class FetchStrategy(ABC):
    """Base class for page loading strategies."""

    name: str = "base"
    requires_browser: bool = False

    def __init__(self, profile: SiteProfile = MOBASE):
        self.profile = profile

    @abstractmethod
    def supports(self, env: EnvironmentProbe) -> bool:
        """Check if this strategy can run in the current environment."""
        pass

    @abstractmethod
    def open_document(self, client: httpx.Client, url: str,
                      rate_limiter: AdaptiveRateLimiter) -> Iterator[Tuple[Optional[int], Optional[DocumentAccessor]]]:
        """
        Context manager yielding (http_status, document) for a loaded page.
        http_status is None when the server did not answer; document is None
        unless the status is 200. Raises ScraperError if loading failed.
        """
        pass

    def fetch_record(self, client: httpx.Client, article_number: str,
                     rate_limiter: AdaptiveRateLimiter) -> CanonicalRecord:
        """Load the product page and run the extraction pipeline on it."""
        url = self.profile.product_url(article_number)
        logger.info(f"🔍 [{self.name}] Loading {self.profile.name} page {url}")
        with self.open_document(client, url, rate_limiter) as (status, document):
            if status is None:
                return status_record(article_number, STATUS_NO_RESPONSE, self.profile)
            if status != 200:
                return status_record(article_number, http_status_message(status), self.profile)
            return extract_attributes(document, article_number, self.profile)

    def diagnose(self, client: httpx.Client, article_number: str,
                 rate_limiter: AdaptiveRateLimiter) -> Dict[str, Any]:
        """Describe what the product page exposes without extracting a record."""
        url = self.profile.product_url(article_number)
        with self.open_document(client, url, rate_limiter) as (status, document):
            info: Dict[str, Any] = {"strategy": self.name, "httpStatus": status, "url": url}
            if document is not None:
                info.update(document.diagnostics(self.profile.payload_global, self.profile.payload_key))
            return info

    def get_status_message(self, env: EnvironmentProbe) -> str:
        if self.supports(env):
            return f"✓ {self.name} strategy available"
        return f"✗ {self.name} strategy not available"

    def cleanup(self) -> None:
        """Clean up any resources (override in subclasses)."""
        pass


# =============================================================================
# PLAYWRIGHT STRATEGY (rendered page, window.initialData available)
# =============================================================================

class PlaywrightStrategy(FetchStrategy):
    """Loads pages in headless Chromium so the embedded product data is populated."""

    name = "playwright"
    requires_browser = True

    def __init__(self, profile: SiteProfile = MOBASE, page_timeout: int = PAGE_TIMEOUT_MS,
                 settle_ms: int = SETTLE_MS, payload_wait_ms: int = PAYLOAD_WAIT_MS,
                 auto_install: bool = True):
        super().__init__(profile)
        self.page_timeout = page_timeout
        self.settle_ms = settle_ms
        self.payload_wait_ms = payload_wait_ms
        self.auto_install = auto_install
        self._playwright: Any = None
        self._browser: Any = None
        self._context: Any = None

    def supports(self, env: EnvironmentProbe) -> bool:
        """Requires Playwright installed and browser available."""
        return env.browser_available

    @property
    def is_ready(self) -> bool:
        return self._browser is not None

    def _launch(self):
        return self._playwright.chromium.launch(headless=self.profile.headless, args=BROWSER_ARGS)

    def _ensure_browser(self):
        """Lazy-initialize browser on first use; install Chromium once if missing."""
        if self._browser is not None:
            return
        from playwright.sync_api import Error as PlaywrightError, sync_playwright

        logger.info("🚀 Starting browser...")
        self._playwright = sync_playwright().start()
        try:
            try:
                self._browser = self._launch()
            except PlaywrightError as e:
                if not self.auto_install:
                    raise
                logger.error(f"Browser launch failed: {e}")
                self._install_browser()
                self._browser = self._launch()
                logger.info("✓ Browser installed and started")
        except (PlaywrightError, subprocess.CalledProcessError) as e:
            self.cleanup()
            raise ScraperError(
                "Browser could not be started. Run 'python -m playwright install chromium' manually."
            ) from e
        self._context = self._browser.new_context(user_agent=self.profile.user_agent)

    @staticmethod
    def _install_browser():
        logger.info("🔄 Installing Chromium...")
        subprocess.run([sys.executable, "-m", "playwright", "install", "chromium"], check=True)

    def cleanup(self) -> None:
        """Clean up browser resources."""
        if self._context:
            self._context.close()
        if self._browser:
            self._browser.close()
        if self._playwright:
            self._playwright.stop()
        self._playwright = None
        self._browser = None
        self._context = None

    @contextmanager
    def open_document(self, client, url, rate_limiter):
        from playwright.sync_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

        self._ensure_browser()
        page = self._context.new_page()
        try:
            try:
                response = page.goto(url, wait_until="domcontentloaded", timeout=self.page_timeout)
            except PlaywrightError as e:
                raise ScraperError(f"Navigation to {url} failed: {e}") from e

            if response is None:
                yield None, None
                return
            if response.status != 200:
                yield response.status, None
                return

            page.wait_for_timeout(self.settle_ms)
            try:
                page.wait_for_function(
                    PAYLOAD_READY_JS,
                    arg=[self.profile.payload_global, self.profile.payload_min_keys],
                    timeout=self.payload_wait_ms,
                )
                logger.info("✓ Dynamic product data loaded")
            except PlaywrightTimeoutError:
                logger.warning(f"No dynamic data after {self.payload_wait_ms // 1000}s, using static extraction")

            yield response.status, PlaywrightDocument(page)
        finally:
            page.close()


# =============================================================================
# HTTPX STRATEGY (static HTML + inline initialData script)
# =============================================================================

class HttpxStrategy(FetchStrategy):
    """Fetches the raw HTML with httpx; works without a browser."""

    name = "httpx"
    requires_browser = False

    def __init__(self, profile: SiteProfile = MOBASE, max_retries: int = 3):
        super().__init__(profile)
        self.max_retries = max_retries

    def supports(self, env: EnvironmentProbe) -> bool:
        """Always supported - just needs internet access."""
        return True

    def _get(self, client: httpx.Client, url: str, rate_limiter: AdaptiveRateLimiter) -> httpx.Response:
        """GET with retries on 429, server errors and timeouts."""
        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                resp = client.get(url, timeout=DEFAULT_TIMEOUT)
            except httpx.TimeoutException as e:
                last_error = e
                logger.debug(f"Timeout, retry {attempt + 1}/{self.max_retries}")
                continue
            except httpx.HTTPError as e:
                rate_limiter.record_error()
                raise ScraperError(f"Request to {url} failed: {e}") from e

            if resp.status_code == 429:
                rate_limiter.record_rate_limit(parse_retry_after(resp.headers.get("Retry-After")))
                rate_limiter.wait()
                last_error = httpx.HTTPStatusError("429 Too Many Requests", request=resp.request, response=resp)
                continue
            if resp.status_code >= 500 and attempt < self.max_retries - 1:
                logger.debug(f"Server error {resp.status_code}, retry {attempt + 1}/{self.max_retries}")
                time.sleep(2 ** attempt)
                continue

            rate_limiter.record_success()
            return resp

        rate_limiter.record_error()
        raise ScraperError(f"Giving up on {url} after {self.max_retries} attempts: {last_error}")

    @contextmanager
    def open_document(self, client, url, rate_limiter):
        resp = self._get(client, url, rate_limiter)
        if resp.status_code != 200:
            yield resp.status_code, None
            return
        yield resp.status_code, SoupDocument(resp.text, url)


# =============================================================================
# PRODUCT SCRAPER
# =============================================================================

class ProductScraper:
    """Runs lookups with the first viable strategy that does not fail."""

    def __init__(self, strategies: Optional[List[FetchStrategy]] = None,
                 profile: SiteProfile = MOBASE, max_workers: int = DEFAULT_WORKERS,
                 env: Optional[EnvironmentProbe] = None,
                 client: Optional[httpx.Client] = None):
        self.profile = profile
        self.strategies = strategies if strategies is not None else [
            PlaywrightStrategy(profile),
            HttpxStrategy(profile),
        ]
        self.max_workers = max_workers
        self.env = env or EnvironmentProbe()
        self.client = client or self._create_client()
        self.rate_limiter = AdaptiveRateLimiter()
        self.strategy_used: Optional[FetchStrategy] = None

    def _create_client(self) -> httpx.Client:
        """Create an httpx client with HTTP/2 support."""
        return httpx.Client(
            http2=True,
            headers={"User-Agent": self.profile.user_agent},
            follow_redirects=True,
            timeout=DEFAULT_TIMEOUT,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        for strategy in self.strategies:
            strategy.cleanup()
        self.client.close()

    @property
    def browser_ready(self) -> bool:
        return any(getattr(s, "is_ready", False) for s in self.strategies)

    def get_viable_strategies(self) -> List[FetchStrategy]:
        """Return strategies that can run in current environment, in priority order."""
        viable = []
        for strategy in self.strategies:
            if strategy.supports(self.env):
                viable.append(strategy)
            else:
                logger.info(f"  {strategy.get_status_message(self.env)}")
        return viable

    def scrape(self, article_number: str) -> CanonicalRecord:
        """Look up one article number; always returns a finalized record."""
        article_number = article_number.strip()
        last_error: Optional[Exception] = None
        for strategy in self.get_viable_strategies():
            try:
                record = strategy.fetch_record(self.client, article_number, self.rate_limiter)
                self.strategy_used = strategy
                logger.info(f"📊 [{article_number}] Status: {record.status}")
                return record
            except ScraperError as e:
                logger.error(f"Strategy '{strategy.name}' failed for {article_number}: {e}")
                last_error = e

        if last_error is None:
            last_error = ScraperError("No viable scraping strategy available")
        return failed_record(article_number, last_error, self.profile)

    def scrape_many(self, article_numbers: List[str]) -> List[CanonicalRecord]:
        """Look up several article numbers, in parallel when no browser is involved."""
        viable = self.get_viable_strategies()
        if not viable or viable[0].requires_browser or self.max_workers <= 1:
            return [self.scrape(number) for number in article_numbers]

        def worker(number: str) -> CanonicalRecord:
            record = self.scrape(number)
            self.rate_limiter.wait()
            return record

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            return list(executor.map(worker, article_numbers))

    def diagnose(self, article_number: str) -> Dict[str, Any]:
        """Page diagnostics from the first strategy that can load the page."""
        last_error: Optional[Exception] = None
        for strategy in self.get_viable_strategies():
            try:
                return strategy.diagnose(self.client, article_number.strip(), self.rate_limiter)
            except ScraperError as e:
                logger.error(f"Strategy '{strategy.name}' failed for {article_number}: {e}")
                last_error = e
        raise last_error or ScraperError("No viable scraping strategy available")
