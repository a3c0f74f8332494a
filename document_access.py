"""
Document Access - Read-only view of a loaded product page
=========================================================
The extraction pipeline never navigates or waits; it only queries a page
that is already loaded. Two accessors implement the same interface:

- SoupDocument: static HTML parsed with BeautifulSoup/lxml. Page globals are
  recovered from inline `window.<name> = {...};` script assignments.
- PlaywrightDocument: a rendered Playwright page. Page globals are read by
  evaluating a function in the page's script context.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup, Comment

logger = logging.getLogger(__name__)


class ScraperError(Exception):
    """Base class for scraper errors."""


class AccessorError(ScraperError):
    """The document could not be queried or evaluated."""


def collapse_whitespace(text: Optional[str]) -> str:
    return " ".join((text or "").split())


# =============================================================================
# ACCESSOR BASE CLASS
# =============================================================================

class DocumentAccessor(ABC):
    """Interface the extractors consume."""

    @abstractmethod
    def query_all(self, selector: str, root: Any = None) -> List[Any]:
        """Return all nodes matching a CSS selector (empty list if none)."""
        pass

    @abstractmethod
    def text_of(self, node: Any) -> str:
        """Return the trimmed, whitespace-collapsed text of a node."""
        pass

    @abstractmethod
    def next_sibling(self, node: Any) -> Optional[Any]:
        """Return the next element sibling of a node, or None."""
        pass

    @abstractmethod
    def read_global(self, name: str) -> Optional[Any]:
        """Return the JSON value of a page global, or None if it does not exist."""
        pass

    @abstractmethod
    def body_text(self) -> str:
        """Return the rendered text of the document body, line breaks kept."""
        pass

    @abstractmethod
    def page_title(self) -> str:
        pass

    @abstractmethod
    def meta_description(self) -> str:
        pass

    def diagnostics(self, global_name: str = "initialData",
                    payload_key: str = "product/dataProduct") -> Dict[str, Any]:
        """Summarize what the page exposes, for troubleshooting lookups."""
        initial_data = self.read_global(global_name)
        keys = list(initial_data.keys()) if isinstance(initial_data, dict) else []
        body = self.body_text()
        return {
            "title": self.page_title(),
            "hasInitialData": initial_data is not None,
            "initialDataKeys": keys,
            "productDataExists": payload_key in keys,
            "tables": len(self.query_all("table")),
            "divs": len(self.query_all("div")),
            "bodyText": body[:500] + "...",
        }


# =============================================================================
# STATIC HTML (BeautifulSoup)
# =============================================================================

class SoupDocument(DocumentAccessor):
    """Accessor over static HTML."""

    def __init__(self, html: str, url: str = ""):
        self.url = url
        self.html = html or ""
        self.soup = BeautifulSoup(self.html, "lxml")
        self._globals: Dict[str, Any] = {}

    def query_all(self, selector: str, root: Any = None) -> List[Any]:
        scope = root if root is not None else self.soup
        return scope.select(selector)

    def text_of(self, node: Any) -> str:
        if node is None:
            return ""
        return collapse_whitespace(node.get_text(" "))

    def next_sibling(self, node: Any) -> Optional[Any]:
        return node.find_next_sibling()

    def read_global(self, name: str) -> Optional[Any]:
        if name not in self._globals:
            self._globals[name] = self._parse_global(name)
        return self._globals[name]

    def _parse_global(self, name: str) -> Optional[Any]:
        assignment = re.compile(rf"window\.{re.escape(name)}\s*=\s*")
        decoder = json.JSONDecoder()
        for script in self.soup.find_all("script"):
            text = script.string or ""
            match = assignment.search(text)
            if not match:
                continue
            try:
                value, _ = decoder.raw_decode(text, match.end())
                logger.debug(f"Found window.{name} in inline script")
                return value
            except json.JSONDecodeError as e:
                logger.debug(f"window.{name} is not plain JSON: {e}")
                continue
        return None

    def body_text(self) -> str:
        body = self.soup.body or self.soup
        chunks = [
            s for s in body.find_all(string=True)
            if not isinstance(s, Comment)
            and s.parent is not None and s.parent.name not in ("script", "style", "noscript")
        ]
        lines = (collapse_whitespace(line) for chunk in chunks for line in chunk.splitlines())
        return "\n".join(line for line in lines if line)

    def page_title(self) -> str:
        if self.soup.title and self.soup.title.string:
            return self.soup.title.string.strip()
        return ""

    def meta_description(self) -> str:
        meta = self.soup.select_one('meta[name="description"]')
        if meta and meta.get("content"):
            return meta["content"].strip()
        return ""


# =============================================================================
# RENDERED PAGE (Playwright)
# =============================================================================

READ_GLOBAL_JS = """(name) => {
    const value = window[name];
    return value === undefined ? null : value;
}"""


@contextmanager
def _translate_errors(action: str):
    from playwright.sync_api import Error as PlaywrightError
    try:
        yield
    except PlaywrightError as e:
        raise AccessorError(f"{action} failed: {e}") from e


class PlaywrightDocument(DocumentAccessor):
    """Accessor over a loaded Playwright page (sync API)."""

    def __init__(self, page):
        self.page = page

    def query_all(self, selector: str, root: Any = None) -> List[Any]:
        scope = root if root is not None else self.page
        with _translate_errors(f"query '{selector}'"):
            return scope.query_selector_all(selector)

    def text_of(self, node: Any) -> str:
        if node is None:
            return ""
        with _translate_errors("text content"):
            return collapse_whitespace(node.text_content())

    def next_sibling(self, node: Any) -> Optional[Any]:
        with _translate_errors("sibling lookup"):
            handle = node.evaluate_handle("el => el.nextElementSibling")
            return handle.as_element()

    def read_global(self, name: str) -> Optional[Any]:
        with _translate_errors(f"evaluate window.{name}"):
            return self.page.evaluate(READ_GLOBAL_JS, name)

    def body_text(self) -> str:
        with _translate_errors("body text"):
            return self.page.inner_text("body")

    def page_title(self) -> str:
        with _translate_errors("page title"):
            return (self.page.title() or "").strip()

    def meta_description(self) -> str:
        with _translate_errors("meta description"):
            meta = self.page.query_selector('meta[name="description"]')
            if meta is None:
                return ""
            return (meta.get_attribute("content") or "").strip()
