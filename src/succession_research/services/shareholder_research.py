"""Shareholder background enrichment.

Corporate shareholders get a single registry search and end as ``is_company``.
Individuals get registry, LinkedIn and Xing searches, HRB extraction, an
in-database cross-reference and an optional LLM bio. Each shareholder's
failure is recorded on its own row and never stops the others.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone

import structlog

from succession_research.database import Database
from succession_research.models import (
    Company,
    EnrichmentStatus,
    HandelsregisterEntry,
    OtherCompany,
    SearchResult,
    ShareholderBackground,
    is_corporate_name,
)
from succession_research.services.clients import ResearchClients
from succession_research.services.website_research import IMPRESSUM_PATTERNS

logger = structlog.get_logger()

# lower-case snippet keyword -> role label
ROLE_KEYWORDS: dict[str, str] = {
    "geschäftsführer": "Geschäftsführer",
    "gesellschafter": "Gesellschafter",
    "managing director": "Managing Director",
    "prokurist": "Prokurist",
}

_HRB_RE = re.compile(r"HRB\s*(\d+)", re.IGNORECASE)

MIN_BIO_INPUT_CHARS = 50

BIO_SYSTEM_PROMPT = """Summarize what you can learn about this person's business background in 2-3 sentences.
Focus on: their roles in companies, industry experience, and any notable information.
If the information is too sparse, say so briefly. Reply in English, plain text only."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def detect_role(snippet: str) -> str | None:
    lowered = snippet.lower()
    for keyword, role in ROLE_KEYWORDS.items():
        if keyword in lowered:
            return role
    return None


def parse_registry_results(
    results: list[SearchResult],
) -> tuple[list[OtherCompany], list[HandelsregisterEntry], list[str]]:
    """Split registry search hits into company roles, HRB entries and role labels."""
    other_companies: list[OtherCompany] = []
    entries: list[HandelsregisterEntry] = []
    roles: list[str] = []

    for result in results:
        role = detect_role(result.snippet)
        if role:
            other_companies.append(
                OtherCompany(
                    name=result.title.split(" - ")[0].strip() or result.title,
                    role=role,
                    source_url=result.link or None,
                    snippet=result.snippet,
                )
            )
            if role not in roles:
                roles.append(role)

        hrb = _HRB_RE.search(result.snippet)
        if hrb:
            court = IMPRESSUM_PATTERNS["amtsgericht"].search(result.snippet)
            entries.append(
                HandelsregisterEntry(
                    hrb_number=f"HRB {hrb.group(1)}",
                    court=court.group(1).strip() if court else None,
                    source=result.link or None,
                    context=result.snippet,
                )
            )
    return other_companies, entries, roles


def _research_corporate(
    company: Company, name: str, db: Database, clients: ResearchClients
) -> ShareholderBackground:
    row = ShareholderBackground(
        company_id=company.id,
        shareholder_name=name,
        enrichment_status=EnrichmentStatus.is_company,
        enriched_at=_now(),
    )
    db.upsert_shareholder_background(row)

    results = clients.search.search(f'"{name}" Handelsregister OR Geschäftsführer', 5)
    row.other_companies = [
        OtherCompany(name=r.title, source_url=r.link or None, snippet=r.snippet) for r in results
    ]
    row.enriched_at = _now()
    db.upsert_shareholder_background(row)
    return row


def _research_individual(
    company: Company, name: str, db: Database, clients: ResearchClients
) -> ShareholderBackground:
    row = ShareholderBackground(
        company_id=company.id,
        shareholder_name=name,
        shareholder_dob=company.shareholder_dob(name),
        enrichment_status=EnrichmentStatus.enriching,
    )
    db.upsert_shareholder_background(row)

    city = company.city
    registry = clients.search.search(
        f'"{name}" Geschäftsführer OR Handelsregister OR Gesellschafter {city}', 5
    )
    other_companies, entries, roles = parse_registry_results(registry)

    linkedin = clients.search.search(f'site:linkedin.com "{name}" {city}', 3)
    xing = clients.search.search(f'site:xing.com "{name}" {city}', 3)
    cross_refs = db.find_companies_by_shareholder(name, exclude_company_id=company.id)

    bio = None
    snippets = "\n".join(f"{r.title}: {r.snippet}" for r in registry)
    if len(snippets) > MIN_BIO_INPUT_CHARS:
        bio = clients.summarizer.summarize(
            f'Here are search results about "{name}" who is a shareholder of '
            f'"{company.name}" in {city}, Germany:\n\n{snippets}',
            BIO_SYSTEM_PROMPT,
        )

    row = ShareholderBackground(
        company_id=company.id,
        shareholder_name=name,
        shareholder_dob=row.shareholder_dob,
        other_companies=other_companies,
        handelsregister_entries=entries,
        linkedin_url=linkedin[0].link if linkedin and linkedin[0].link else None,
        xing_url=xing[0].link if xing and xing[0].link else None,
        public_roles=roles,
        bio_summary=bio or None,
        cross_references=cross_refs,
        enrichment_status=EnrichmentStatus.completed,
        enriched_at=_now(),
    )
    db.upsert_shareholder_background(row)
    return row


def research_shareholder(
    company: Company, name: str, db: Database, clients: ResearchClients
) -> EnrichmentStatus:
    """Enrich one shareholder; failures end up on that shareholder's row."""
    log = logger.bind(company_id=company.id, module="shareholders", shareholder=name)
    try:
        if is_corporate_name(name):
            row = _research_corporate(company, name, db, clients)
        else:
            row = _research_individual(company, name, db, clients)
    except Exception as exc:
        log.error("shareholder_research_failed", error=str(exc))
        db.upsert_shareholder_background(
            ShareholderBackground(
                company_id=company.id,
                shareholder_name=name,
                shareholder_dob=company.shareholder_dob(name),
                enrichment_status=EnrichmentStatus.failed,
                enrichment_error=str(exc),
                enriched_at=_now(),
            )
        )
        return EnrichmentStatus.failed
    log.info("shareholder_research_finished", status=row.enrichment_status.value)
    return row.enrichment_status


def research_shareholders(
    company: Company, db: Database, clients: ResearchClients
) -> dict[str, EnrichmentStatus]:
    results: dict[str, EnrichmentStatus] = {}
    for name in company.shareholder_list():
        results[name] = research_shareholder(company, name, db, clients)
    return results
