"""Plain-text page fetcher used by the website crawl."""

from __future__ import annotations

import re

import httpx
import structlog
from bs4 import BeautifulSoup

from succession_research.config import Config

logger = structlog.get_logger()

_STRIPPED_TAGS = ["script", "style", "nav", "footer"]
_WHITESPACE_RE = re.compile(r"\s+")


def html_to_text(html: str, max_chars: int = 10000) -> str:
    """Reduce an HTML document to whitespace-collapsed text.

    Script, style, navigation and footer blocks are dropped before the
    remaining markup is stripped.
    """
    soup = BeautifulSoup(html, "lxml")
    for tag in soup.find_all(_STRIPPED_TAGS):
        tag.decompose()
    text = soup.get_text(" ")
    text = text.replace("\xa0", " ")
    return _WHITESPACE_RE.sub(" ", text).strip()[:max_chars]


class PageFetcher:
    def __init__(self, config: Config, client: httpx.Client | None = None):
        self.max_chars = config.fetch_max_chars
        self._client = client or httpx.Client(
            timeout=config.fetch_timeout_seconds,
            follow_redirects=True,
            headers={
                "User-Agent": config.user_agent,
                "Accept": "text/html,application/xhtml+xml",
            },
        )

    def fetch_text(self, url: str) -> str:
        """Fetch ``url`` and return its text; empty string on any failure."""
        try:
            resp = self._client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("page_fetch_failed", url=url, error=str(exc))
            return ""
        if not resp.is_success:
            logger.info("page_fetch_non_success", url=url, status_code=resp.status_code)
            return ""
        return html_to_text(resp.text, self.max_chars)
