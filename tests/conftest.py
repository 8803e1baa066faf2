"""Shared fixtures: a fresh database and in-memory stand-ins for the external services."""

from __future__ import annotations

from typing import Callable

import pytest

from succession_research.database import Database
from succession_research.models import (
    Company,
    RawSearchResponse,
    SearchMode,
    SearchResult,
    ServiceStatus,
)
from succession_research.services.clients import ResearchClients


class FakeSearch:
    """Answers queries through ``handler(query, num, mode)``; records every call."""

    def __init__(
        self,
        handler: Callable[[str, int, SearchMode], list[SearchResult]] | None = None,
        raw: RawSearchResponse | None = None,
        available: bool = True,
    ):
        self.handler = handler or (lambda query, num, mode: [])
        self.raw = raw or RawSearchResponse(status=ServiceStatus.no_results)
        self.available = available
        self.calls: list[tuple[str, int, SearchMode]] = []
        self.raw_calls: list[str] = []

    def search(self, query, num=10, mode=SearchMode.organic):
        self.calls.append((query, num, mode))
        return self.handler(query, num, mode)

    def search_raw(self, query, num=10):
        self.raw_calls.append(query)
        return self.raw


class FakeFetcher:
    def __init__(self, pages: dict[str, str] | None = None):
        self.pages = pages or {}
        self.calls: list[str] = []

    def fetch_text(self, url):
        self.calls.append(url)
        return self.pages.get(url, "")


class FakeSummarizer:
    def __init__(self, reply: str | None = None, available: bool = True):
        self.reply = reply
        self.available = available
        self.calls: list[tuple[str, str]] = []

    def summarize(self, content, system_prompt):
        self.calls.append((content, system_prompt))
        return self.reply

    def diagnose(self):
        return {"llm_key_set": self.available, "llm_key_length": 0}


@pytest.fixture
def db(tmp_path):
    """Create a fresh database for each test."""
    database = Database(str(tmp_path / "test.db"))
    database.init_db()
    return database


@pytest.fixture
def make_clients():
    def _make(search=None, fetcher=None, summarizer=None) -> ResearchClients:
        return ResearchClients(
            search=search or FakeSearch(),
            fetcher=fetcher or FakeFetcher(),
            summarizer=summarizer or FakeSummarizer(),
        )
    return _make


@pytest.fixture
def company(db):
    """A stored company with one individual and one corporate shareholder."""
    record = Company(
        id=42,
        company_name="Müller Maschinenbau GmbH",
        address_city="Hamburg",
        address_country="Germany",
        shareholder_names="Otto Müller, Beta Holding GmbH",
    )
    db.upsert_company(record)
    return record
