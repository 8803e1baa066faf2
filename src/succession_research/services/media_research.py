"""Media mention search for a company and its individual shareholders.

News and web results are accumulated with URL deduplication, the company's
previous mentions are replaced wholesale, and an optional LLM narrative is
stored on the per-company media search row.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from succession_research.database import Database
from succession_research.models import (
    Company,
    MediaMention,
    MediaSearchState,
    MediaSearchStatus,
    MentionType,
    SearchMode,
    SearchResult,
    is_corporate_name,
)
from succession_research.services.clients import ResearchClients

logger = structlog.get_logger()

MAX_SHAREHOLDERS_SEARCHED = 3

MEDIA_SYSTEM_PROMPT = """You are analyzing media mentions and web search results about a German company.
Write a concise 3-5 sentence summary covering:
1. The company's public presence and reputation
2. Any notable news, awards, or events
3. Key findings about shareholders if relevant results exist

If results are mostly directory listings or basic company pages, note that the company has a low media profile.
Write in English. Be factual and specific. Plain text only, no markdown."""


class MentionAccumulator:
    """Ordered mention list that keeps the first hit for every URL."""

    def __init__(self, company_id: int):
        self.company_id = company_id
        self.mentions: list[MediaMention] = []
        self._urls: set[str] = set()

    def __len__(self) -> int:
        return len(self.mentions)

    def add_results(
        self,
        results: list[SearchResult],
        query: str,
        mention_type: MentionType = MentionType.company,
        related_shareholder: str | None = None,
    ) -> int:
        added = 0
        for result in results:
            if not result.link or result.link in self._urls:
                continue
            self._urls.add(result.link)
            self.mentions.append(
                MediaMention(
                    company_id=self.company_id,
                    title=result.title,
                    url=result.link,
                    source=result.source or None,
                    published_at=result.date,
                    snippet=result.snippet or None,
                    mention_type=mention_type,
                    related_shareholder=related_shareholder,
                    search_query=query,
                )
            )
            added += 1
        return added


def build_mention_transcript(mentions: list[MediaMention]) -> str:
    lines = []
    for m in mentions:
        line = f"[{m.mention_type.value.upper()}] {m.title}"
        if m.source:
            line += f" ({m.source})"
        if m.snippet:
            line += f": {m.snippet}"
        lines.append(line)
    return "\n".join(lines)


def collect_mentions(company: Company, clients: ResearchClients) -> MentionAccumulator:
    acc = MentionAccumulator(company.id)
    query = f'"{company.name}" {company.city}'

    acc.add_results(clients.search.search(query, 10, SearchMode.news), query)
    acc.add_results(clients.search.search(query, 10, SearchMode.organic), query)

    people = [n for n in company.shareholder_list() if not is_corporate_name(n)]
    for name in people[:MAX_SHAREHOLDERS_SEARCHED]:
        sh_query = f'"{name}" "{company.name}"'
        acc.add_results(
            clients.search.search(sh_query, 5, SearchMode.news),
            sh_query, MentionType.shareholder, name,
        )
        acc.add_results(
            clients.search.search(f'"{name}" "{company.name}" OR "{company.city}"', 5, SearchMode.organic),
            sh_query, MentionType.shareholder, name,
        )
    return acc


def research_media(company: Company, db: Database, clients: ResearchClients) -> MediaSearchState:
    log = logger.bind(company_id=company.id, module="media")
    db.upsert_media_search(
        MediaSearchStatus(company_id=company.id, search_status=MediaSearchState.searching)
    )

    try:
        acc = collect_mentions(company, clients)
        db.replace_media_mentions(company.id, acc.mentions)

        media_summary = None
        if acc.mentions:
            media_summary = clients.summarizer.summarize(
                f'Here are {len(acc)} search results about "{company.name}" '
                f"({company.city}, Germany) and its shareholders:\n\n"
                f"{build_mention_transcript(acc.mentions)}",
                MEDIA_SYSTEM_PROMPT,
            )

        status = MediaSearchStatus(
            company_id=company.id,
            search_status=MediaSearchState.completed,
            mentions_found=len(acc),
            media_summary=media_summary,
            last_searched_at=datetime.now(timezone.utc),
        )
    except Exception as exc:
        log.error("media_research_failed", error=str(exc))
        status = MediaSearchStatus(
            company_id=company.id,
            search_status=MediaSearchState.failed,
            search_error=str(exc),
            last_searched_at=datetime.now(timezone.utc),
        )

    db.upsert_media_search(status)
    log.info("media_research_finished", status=status.search_status.value, mentions=status.mentions_found)
    return status.search_status
