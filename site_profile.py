"""
Site Profile - Configuration for the MoBase product catalog
===========================================================
Everything site-specific lives here: URLs, the page title suffix, where the
embedded product payload sits, and the selector candidates the structural
extractors try in order.

Environment overrides:
  MOBASE_BASE_URL   product page prefix (article number is appended)
  MOBASE_HEADLESS   "0" to watch the browser
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)


@dataclass
class SiteProfile:
    """Configuration for the product catalog site."""

    name: str
    base_url: str
    origin: str
    title_suffix: str = ""

    # Embedded product payload: window.<payload_global>[payload_key].data.product
    payload_global: str = "initialData"
    payload_key: str = "product/dataProduct"
    payload_min_keys: int = 5

    # Label selector candidates, tried in order until one matches
    label_selectors: List[str] = field(default_factory=list)
    # Field -> selectors for single-element product details
    detail_selectors: Dict[str, List[str]] = field(default_factory=dict)

    user_agent: str = DEFAULT_USER_AGENT
    headless: bool = True

    def product_url(self, article_number: str) -> str:
        return f"{self.base_url}{article_number}"

    def absolute_url(self, path: str) -> str:
        """Join a site-relative path from the payload onto the site origin."""
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.origin.rstrip('/')}/{path.lstrip('/')}"

    def clean_title(self, title: str) -> str:
        if self.title_suffix:
            title = title.replace(self.title_suffix, "")
        return title.strip()


MOBASE = SiteProfile(
    name="MoBase",
    base_url=os.environ.get("MOBASE_BASE_URL", "https://www.mymobase.com/de/p/"),
    origin="https://www.mymobase.com",
    title_suffix=" | MoBase",
    label_selectors=[
        '.label, .field-label, [class*="label"]',
        '.spec-name, [class*="spec-name"]',
        "strong, b, .bold",
    ],
    detail_selectors={
        "title": ["h1", ".product-title", ".title", '[data-testid="product-title"]'],
        "description": [".description", ".product-description", ".details"],
        "weight": ['[data-testid="weight"]', ".weight", '[class*="weight"]'],
        "dimensions": ['[data-testid="dimensions"]', ".dimensions", '[class*="dimension"]'],
        "material": [".material", '[data-testid="material"]', '[class*="material"]'],
        "availability": [".availability", ".stock", '[data-testid="availability"]'],
    },
    headless=os.environ.get("MOBASE_HEADLESS", "1") != "0",
)
