"""Web search client for the Serper.dev Google Search API.

Two query interfaces: ``search`` returns simplified organic or news hits with
normalized dates, ``search_raw`` keeps the organic results' sitelinks (used for
Impressum/About discovery). Neither ever raises: a missing key, a transport
error, an API error or a malformed answer all produce an empty result and a
warning log.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Any
from urllib.parse import urlparse

import httpx
import structlog
from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

from succession_research.config import Config
from succession_research.models import (
    OrganicResult,
    RawSearchResponse,
    SearchMode,
    SearchOutcome,
    SearchResult,
    ServiceStatus,
)
from succession_research.services.retry import AuthenticationError, status_for_error, with_retry

logger = structlog.get_logger()

MAX_RESULTS = 10


# ---------------------------------------------------------------------------
# Date normalization
# ---------------------------------------------------------------------------

_DOTTED_DATE_RE = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{4})$")
_ISO_PREFIX_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")
_RELATIVE_RE = re.compile(r"(\d+)\s+(hour|day|week|month|year)s?\s+ago", re.IGNORECASE)
_RELATIVE_DE_RE = re.compile(
    r"vor\s+(\d+)\s+(stunde|tag|woche|monat|jahr)(?:e|en|n)?\b", re.IGNORECASE
)

_GERMAN_UNITS = {
    "stunde": "hour",
    "tag": "day",
    "woche": "week",
    "monat": "month",
    "jahr": "year",
}


def _subtract(now: datetime, amount: int, unit: str) -> datetime:
    if unit == "hour":
        return now - relativedelta(hours=amount)
    if unit == "day":
        return now - relativedelta(days=amount)
    if unit == "week":
        return now - relativedelta(weeks=amount)
    if unit == "month":
        return now - relativedelta(months=amount)
    return now - relativedelta(years=amount)


def normalize_date(value: str | None, now: datetime | None = None) -> str | None:
    """Normalize a search-result date string to ``YYYY-MM-DD``.

    Tried in order: ``dd.MM.yyyy``, ISO-prefixed strings, ``N <unit>(s) ago``
    (and the German ``vor N <Einheit>``) relative to ``now``, then a generic
    parse. Returns None when nothing matches.
    """
    if not value:
        return None
    value = value.strip()

    dotted = _DOTTED_DATE_RE.match(value)
    if dotted:
        day, month, year = dotted.groups()
        return f"{year}-{month.zfill(2)}-{day.zfill(2)}"

    if _ISO_PREFIX_RE.match(value):
        return value[:10]

    now = now or datetime.now(timezone.utc)
    relative = _RELATIVE_RE.search(value)
    if relative:
        amount, unit = int(relative.group(1)), relative.group(2).lower()
        return _subtract(now, amount, unit).date().isoformat()

    relative_de = _RELATIVE_DE_RE.search(value)
    if relative_de:
        amount = int(relative_de.group(1))
        unit = _GERMAN_UNITS[relative_de.group(2).lower()]
        return _subtract(now, amount, unit).date().isoformat()

    try:
        parsed = date_parser.parse(value)
    except (ValueError, OverflowError):
        return None
    if isinstance(parsed, datetime):
        return parsed.date().isoformat()
    if isinstance(parsed, date):
        return parsed.isoformat()
    return None


def hostname(url: str) -> str:
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


# ---------------------------------------------------------------------------
# Serper client
# ---------------------------------------------------------------------------

class SerperClient:
    """Client for the Serper.dev search and news endpoints."""

    SEARCH_URL = "https://google.serper.dev/search"
    NEWS_URL = "https://google.serper.dev/news"

    def __init__(self, config: Config, client: httpx.Client | None = None):
        self.api_key = config.serper_api_key
        self.country = config.search_country
        self.language = config.search_language
        self.max_retries = config.max_retry_attempts
        self._client = client or httpx.Client(timeout=30.0)

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    def search(
        self, query: str, num: int = MAX_RESULTS, mode: SearchMode = SearchMode.organic
    ) -> list[SearchResult]:
        """Simplified search; always a list, empty when nothing could be found."""
        return self.search_with_status(query, num=num, mode=mode).results

    def search_with_status(
        self, query: str, num: int = MAX_RESULTS, mode: SearchMode = SearchMode.organic
    ) -> SearchOutcome:
        if not self.available:
            logger.warning("search_not_configured", query=query)
            return SearchOutcome(status=ServiceStatus.unavailable)

        endpoint = self.NEWS_URL if mode == SearchMode.news else self.SEARCH_URL
        try:
            data = self._post(endpoint, query, num)
            items = data.get("news" if mode == SearchMode.news else "organic") or []
            results = [self._to_result(item) for item in items]
        except Exception as exc:
            logger.warning("search_failed", query=query, mode=mode.value, error=str(exc))
            return SearchOutcome(status=status_for_error(exc), error=str(exc))

        status = ServiceStatus.ok if results else ServiceStatus.no_results
        return SearchOutcome(status=status, results=results)

    def search_raw(self, query: str, num: int = MAX_RESULTS) -> RawSearchResponse:
        """Organic search keeping sitelinks and the knowledge graph."""
        if not self.available:
            logger.warning("search_not_configured", query=query)
            return RawSearchResponse(status=ServiceStatus.unavailable)

        try:
            data = self._post(self.SEARCH_URL, query, num)
            organic = [
                OrganicResult(
                    title=item.get("title") or "",
                    link=item.get("link") or "",
                    snippet=item.get("snippet") or "",
                    position=item.get("position") or 0,
                    sitelinks=[
                        {"title": sl.get("title") or "", "link": sl.get("link") or ""}
                        for sl in item.get("sitelinks") or []
                    ],
                )
                for item in data.get("organic") or []
            ]
            response = RawSearchResponse(
                organic=organic,
                knowledge_graph=data.get("knowledgeGraph"),
                status=ServiceStatus.ok if organic else ServiceStatus.no_results,
            )
        except Exception as exc:
            logger.warning("raw_search_failed", query=query, error=str(exc))
            return RawSearchResponse(status=status_for_error(exc))
        return response

    def _post(self, endpoint: str, query: str, num: int) -> dict[str, Any]:
        fetch = with_retry(self.max_retries)(self._do_post)
        return fetch(endpoint, query, num)

    def _do_post(self, endpoint: str, query: str, num: int) -> dict[str, Any]:
        resp = self._client.post(
            endpoint,
            headers={"X-API-KEY": self.api_key or "", "Content-Type": "application/json"},
            json={
                "q": query,
                "num": min(num, MAX_RESULTS),
                "gl": self.country,
                "hl": self.language,
            },
        )
        if resp.status_code in (401, 403):
            raise AuthenticationError(f"Serper authentication failed: {resp.status_code}")
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected Serper response: {type(data).__name__}")
        return data

    @staticmethod
    def _to_result(item: dict[str, Any]) -> SearchResult:
        link = item.get("link") or ""
        return SearchResult(
            title=item.get("title") or "",
            link=link,
            snippet=item.get("snippet") or item.get("description") or "",
            source=item.get("source") or hostname(link),
            date=normalize_date(item.get("date")),
        )
