"""
MoBase Scraper - HTTP API
=========================

Endpoints:
  1. POST /api/scrape                 - Scrape one article number
  2. GET  /api/health                 - Service status
  3. GET  /api/debug/{article_number} - Page diagnostics for troubleshooting

Run: uvicorn api:app --port 3000
"""
import logging
from datetime import datetime, timezone
from functools import partial
from typing import Callable, Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from document_access import ScraperError
from scraper_engine import EnvironmentProbe, ProductScraper
from site_profile import MOBASE

logger = logging.getLogger(__name__)

SERVICE_NAME = "DB Produktvergleich API"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ScrapeRequest(BaseModel):
    articleNumber: Optional[str] = None


# ============================================================
# Dependencies
# ============================================================

_env = EnvironmentProbe()


def get_environment() -> EnvironmentProbe:
    return _env


def get_scraper_factory() -> Callable[[], ProductScraper]:
    """
    Builds one scraper (and browser) per request. Routes open and close it
    themselves so every Playwright call stays on the route's worker thread.
    """
    return partial(ProductScraper, profile=MOBASE, env=_env)


app = FastAPI(title=SERVICE_NAME)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================
# Routes
# ============================================================

@app.post("/api/scrape")
def scrape(body: ScrapeRequest,
           new_scraper: Callable[[], ProductScraper] = Depends(get_scraper_factory)):
    article_number = (body.articleNumber or "").strip()
    if not article_number:
        return JSONResponse(
            status_code=400,
            content={"error": "Artikelnummer ist erforderlich", "status": "error"},
        )

    logger.info(f"📦 Scraping article number: {article_number}")
    with new_scraper() as scraper:
        record = scraper.scrape(article_number)
    logger.info(f"✓ Done: {article_number} ({record.status})")
    return {"success": True, "data": record.to_dict(), "timestamp": _now()}


@app.get("/api/health")
def health(env: EnvironmentProbe = Depends(get_environment)):
    return {
        "status": "OK",
        "service": SERVICE_NAME,
        "browser": "Bereit" if env.browser_available else "Nicht verfügbar",
        "timestamp": _now(),
    }


@app.get("/api/debug/{article_number}")
def debug(article_number: str,
          new_scraper: Callable[[], ProductScraper] = Depends(get_scraper_factory)):
    logger.info(f"🔍 Debug request for: {article_number}")
    try:
        with new_scraper() as scraper:
            info = scraper.diagnose(article_number)
    except ScraperError as e:
        logger.error(f"Debug error: {e}")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": str(e),
                "articleNumber": article_number,
                "timestamp": _now(),
            },
        )
    return {
        "success": True,
        "articleNumber": article_number,
        "url": MOBASE.product_url(article_number),
        "debugInfo": info,
        "timestamp": _now(),
    }
