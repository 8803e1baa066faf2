"""Pydantic models for all domain entities.

Covers: company records (read-only input), research status, website
profiles, media search status and mentions, shareholder backgrounds,
search/summarization outcomes, the read model and run results.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, Field, StrictInt, field_validator


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Short legal forms must stand alone ("Dagmar" is a person); the longer
# words also match inside compounds like "Verwaltungsgesellschaft".
CORPORATE_NAME_RE = re.compile(
    r"(?<![a-zäöüß])(?:gmbh|mbh|ag|kg|ohg)(?![a-zäöüß])"
    r"|e\.v\.|g\.m\.b\.h|holding|verwaltung|beteiligung",
    re.IGNORECASE,
)


def is_corporate_name(name: str, pattern: re.Pattern = CORPORATE_NAME_RE) -> bool:
    """True when a shareholder name looks like a legal entity rather than a person."""
    return bool(pattern.search(name))


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ResearchModule(str, Enum):
    website = "website"
    media = "media"
    shareholders = "shareholders"


class ModuleStatus(str, Enum):
    not_started = "not_started"
    in_progress = "in_progress"
    completed = "completed"


class OverallStatus(str, Enum):
    not_started = "not_started"
    in_progress = "in_progress"
    completed = "completed"
    partial = "partial"
    failed = "failed"


class CrawlStatus(str, Enum):
    pending = "pending"
    crawling = "crawling"
    completed = "completed"
    failed = "failed"
    not_found = "not_found"


class MediaSearchState(str, Enum):
    pending = "pending"
    searching = "searching"
    completed = "completed"
    failed = "failed"


class MentionType(str, Enum):
    company = "company"
    shareholder = "shareholder"
    industry = "industry"


class Sentiment(str, Enum):
    positive = "positive"
    neutral = "neutral"
    negative = "negative"
    unknown = "unknown"


class EnrichmentStatus(str, Enum):
    pending = "pending"
    enriching = "enriching"
    completed = "completed"
    failed = "failed"
    is_company = "is_company"


class ResolutionMethod(str, Enum):
    known = "known"
    name_match = "name_match"
    non_aggregator = "non_aggregator"
    first_result = "first_result"


class SearchMode(str, Enum):
    organic = "organic"
    news = "news"


class ServiceStatus(str, Enum):
    ok = "ok"
    no_results = "no_results"
    unavailable = "unavailable"
    transient_error = "transient_error"


# ---------------------------------------------------------------------------
# Company (external record, consumed read-only)
# ---------------------------------------------------------------------------

class ShareholderDetail(BaseModel):
    name: str | None = None
    dob: str | None = None
    percentage: float | None = None


class Company(BaseModel):
    id: int
    company_name: str | None = None
    address_city: str | None = None
    address_country: str | None = None
    shareholder_details: list[ShareholderDetail] | None = None
    shareholder_names: str | None = None
    shareholder_dobs: str | None = None
    wz_description: str | None = None
    tel: str | None = None
    fax: str | None = None
    email: str | None = None
    website: str | None = None

    @property
    def name(self) -> str:
        return self.company_name or ""

    @property
    def city(self) -> str:
        return self.address_city or ""

    def shareholder_list(self) -> list[str]:
        """Shareholder names, preferring the structured details over the text field."""
        if self.shareholder_details is not None:
            return [d.name for d in self.shareholder_details if d.name]
        if not self.shareholder_names:
            return []
        return [n.strip() for n in self.shareholder_names.split(",") if n.strip()]

    def shareholder_dob(self, name: str) -> str | None:
        for detail in self.shareholder_details or []:
            if detail.name == name and detail.dob:
                return detail.dob
        return None


# ---------------------------------------------------------------------------
# Search / summarization
# ---------------------------------------------------------------------------

class Sitelink(BaseModel):
    title: str = ""
    link: str = ""


class SearchResult(BaseModel):
    title: str = ""
    link: str = ""
    snippet: str = ""
    source: str = ""
    date: str | None = None


class OrganicResult(BaseModel):
    title: str = ""
    link: str = ""
    snippet: str = ""
    position: int = 0
    sitelinks: list[Sitelink] = Field(default_factory=list)


class RawSearchResponse(BaseModel):
    organic: list[OrganicResult] = Field(default_factory=list)
    knowledge_graph: dict[str, Any] | None = None
    status: ServiceStatus = ServiceStatus.ok


class SearchOutcome(BaseModel):
    status: ServiceStatus
    results: list[SearchResult] = Field(default_factory=list)
    error: str | None = None


class SummaryOutcome(BaseModel):
    status: ServiceStatus
    text: str | None = None
    error: str | None = None


# ---------------------------------------------------------------------------
# Research status
# ---------------------------------------------------------------------------

class ResearchStatus(BaseModel):
    company_id: int
    website_status: ModuleStatus = ModuleStatus.not_started
    media_status: ModuleStatus = ModuleStatus.not_started
    shareholders_status: ModuleStatus = ModuleStatus.not_started
    overall_status: OverallStatus = OverallStatus.not_started
    triggered_at: datetime | None = None
    completed_at: datetime | None = None


# ---------------------------------------------------------------------------
# Website profile
# ---------------------------------------------------------------------------

class TeamMember(BaseModel):
    name: str
    role: str | None = None


class ImpressumData(BaseModel):
    geschaeftsfuehrer: str | None = None
    hrb_number: str | None = None
    amtsgericht: str | None = None
    ust_id: str | None = None
    steuernummer: str | None = None


class RawPage(BaseModel):
    url: str
    title: str
    text_excerpt: str = ""


class SearchResultEntry(BaseModel):
    title: str = ""
    link: str = ""
    snippet: str = ""
    position: int = 0
    sitelinks: list[Sitelink] = Field(default_factory=list)


class WebsiteProfile(BaseModel):
    company_id: int
    website_url: str | None = None
    domain: str | None = None
    resolution_method: ResolutionMethod | None = None
    impressum_url: str | None = None
    company_description: str | None = None
    products_services: list[str] = Field(default_factory=list)
    team_members: list[TeamMember] = Field(default_factory=list)
    contact_email: str | None = None
    contact_phone: str | None = None
    contact_fax: str | None = None
    social_links: dict[str, str] = Field(default_factory=dict)
    impressum_data: ImpressumData = Field(default_factory=ImpressumData)
    search_results: list[SearchResultEntry] = Field(default_factory=list)
    crawl_status: CrawlStatus = CrawlStatus.pending
    crawl_error: str | None = None
    raw_pages: list[RawPage] = Field(default_factory=list)
    crawled_at: datetime | None = None

    @field_validator("raw_pages")
    @classmethod
    def _at_most_four_pages(cls, v: list[RawPage]) -> list[RawPage]:
        if len(v) > 4:
            raise ValueError("raw_pages holds at most 4 excerpts")
        return v


# ---------------------------------------------------------------------------
# Media
# ---------------------------------------------------------------------------

class MediaSearchStatus(BaseModel):
    company_id: int
    search_status: MediaSearchState = MediaSearchState.pending
    search_error: str | None = None
    mentions_found: int = 0
    media_summary: str | None = None
    last_searched_at: datetime | None = None


class MediaMention(BaseModel):
    id: int | None = None
    company_id: int
    title: str = ""
    url: str
    source: str | None = None
    published_at: str | None = None
    snippet: str | None = None
    sentiment: Sentiment = Sentiment.unknown
    mention_type: MentionType = MentionType.company
    related_shareholder: str | None = None
    search_query: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Shareholder background
# ---------------------------------------------------------------------------

class OtherCompany(BaseModel):
    name: str
    role: str | None = None
    hrb_number: str | None = None
    status: str | None = None
    source_url: str | None = None
    snippet: str | None = None


class HandelsregisterEntry(BaseModel):
    hrb_number: str
    court: str | None = None
    company_name: str | None = None
    role: str | None = None
    source: str | None = None
    context: str | None = None


class CrossReference(BaseModel):
    id: int | None = None
    company_id: int | None = None
    company_name: str | None = None


class ShareholderBackground(BaseModel):
    company_id: int
    shareholder_name: str = Field(..., min_length=1)
    shareholder_dob: str | None = None
    other_companies: list[OtherCompany] = Field(default_factory=list)
    handelsregister_entries: list[HandelsregisterEntry] = Field(default_factory=list)
    linkedin_url: str | None = None
    xing_url: str | None = None
    public_roles: list[str] = Field(default_factory=list)
    bio_summary: str | None = None
    cross_references: list[CrossReference] = Field(default_factory=list)
    enrichment_status: EnrichmentStatus = EnrichmentStatus.pending
    enrichment_error: str | None = None
    enriched_at: datetime | None = None


# ---------------------------------------------------------------------------
# Read model
# ---------------------------------------------------------------------------

class CompanyResearchData(BaseModel):
    status: ResearchStatus | None = None
    website: WebsiteProfile | None = None
    media_mentions: list[MediaMention] = Field(default_factory=list)
    media_search: MediaSearchStatus | None = None
    shareholder_backgrounds: list[ShareholderBackground] = Field(default_factory=list)

    def is_stale(self, max_age_days: int = 7, now: datetime | None = None) -> bool:
        completed_at = self.status.completed_at if self.status else None
        if completed_at is None:
            return True
        now = now or utcnow()
        return now - completed_at > timedelta(days=max_age_days)


# ---------------------------------------------------------------------------
# Orchestration results
# ---------------------------------------------------------------------------

class ResearchRunResult(BaseModel):
    success: bool = True
    company_id: int
    results: dict[str, str] = Field(default_factory=dict)


class ResearchRequest(BaseModel):
    """Body of ``POST /research-company``.

    ``company_id`` must be a positive JSON integer (booleans and numeric
    strings are rejected). A ``modules`` value that is not a list means all
    modules.
    """

    company_id: Annotated[StrictInt, Field(gt=0)] | None = None
    modules: list[str] | None = None

    @field_validator("modules", mode="before")
    @classmethod
    def _module_names(cls, v: Any) -> list[str] | None:
        if not isinstance(v, list):
            return None
        return [str(m) for m in v]
