"""Resolve a decoded QR payload or a submitted link into receipt text."""

from __future__ import annotations

import html
import logging
import re

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from ..exceptions import FetchError

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

_URL_RE = re.compile(r"https?://[^\s<>\"']+", re.IGNORECASE)
_SCRIPT_STYLE_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.DOTALL | re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")


def is_url(text: str) -> bool:
    return bool(re.fullmatch(r"https?://\S+", text.strip(), re.IGNORECASE))


def extract_urls(text: str) -> list[str]:
    return [match.rstrip(".,);") for match in _URL_RE.findall(text or "")]


def html_to_text(markup: str) -> str:
    without_code = _SCRIPT_STYLE_RE.sub(" ", markup)
    without_tags = _TAG_RE.sub(" ", without_code)
    return _SPACE_RE.sub(" ", html.unescape(without_tags)).strip()


class ReceiptFetcher:
    """Render receipt pages in headless Chromium and return their visible text."""

    def __init__(self, timeout_ms: int = 30_000, settle_ms: int = 2_000, min_content_chars: int = 100) -> None:
        self.timeout_ms = timeout_ms
        self.settle_ms = settle_ms
        self.min_content_chars = min_content_chars

    def resolve(self, text: str) -> str:
        """Fetch ``text`` if it is a URL, otherwise treat it as raw receipt text."""
        stripped = text.strip()
        if not stripped:
            raise FetchError("Empty payload.")
        if is_url(stripped):
            return self.fetch(stripped)
        return stripped

    def fetch(self, url: str) -> str:
        logger.info("Rendering receipt page %s", url)
        try:
            markup = self._render(url)
        except PlaywrightError as exc:
            raise FetchError(f"Could not load {url}: {exc}") from exc

        content = html_to_text(markup)
        if len(content) < self.min_content_chars:
            raise FetchError(f"Page {url} returned too little content ({len(content)} chars).")
        return content

    def _render(self, url: str) -> str:
        with sync_playwright() as playwright:
            browser = playwright.chromium.launch(headless=True, args=["--no-sandbox", "--disable-dev-shm-usage"])
            try:
                page = browser.new_page(user_agent=USER_AGENT)
                page.goto(url, wait_until="networkidle", timeout=self.timeout_ms)
                page.wait_for_timeout(self.settle_ms)
                return page.content()
            finally:
                browser.close()
