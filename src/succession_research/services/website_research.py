"""Website discovery and crawl for a single company.

Resolves the company's own website (known URL or heuristic pick from search
results), crawls homepage, Impressum, About and Contact pages, parses the
German registry fields out of the Impressum, asks the LLM for a structured
summary and persists one WebsiteProfile row per company.

The row always ends in a terminal crawl status: completed, not_found or failed.
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

import structlog
from pydantic import ValidationError

from succession_research.database import Database
from succession_research.models import (
    Company,
    CrawlStatus,
    ImpressumData,
    OrganicResult,
    RawPage,
    ResolutionMethod,
    SearchResultEntry,
    Sitelink,
    TeamMember,
    WebsiteProfile,
)
from succession_research.services.clients import ResearchClients
from succession_research.services.search import hostname

logger = structlog.get_logger()


# ---------------------------------------------------------------------------
# Rules (passed into the functions below; override in tests or callers)
# ---------------------------------------------------------------------------

AGGREGATOR_DOMAINS: tuple[str, ...] = (
    "northdata.de", "northdata.com", "facebook.com", "xing.com",
    "linkedin.com", "instagram.com", "youtube.com", "twitter.com",
    "handelsregister.de", "unternehmensregister.de", "firmenwissen.de",
    "wlw.de", "gelbeseiten.de", "yelp.de", "kununu.com", "glassdoor.de",
    "heinze.de", "google.com", "google.de", "wikipedia.org",
)

LEGAL_FORM_RE = re.compile(
    r"(?<!\w)(?:g\.m\.b\.h\.|gmbh|mbh|ag|kg|ohg|e\.v\.|co\.)(?!\w)|&",
    re.IGNORECASE,
)

IMPRESSUM_PATTERNS: Mapping[str, re.Pattern] = {
    # "Geschäftsführer: Max Mustermann, ..." -> "Max Mustermann"
    "geschaeftsfuehrer": re.compile(
        r"(?:Geschäftsführ(?:er|ung)|Managing Director|Vertretungsberechtig)[\s:]*([^\n,;]+)",
        re.IGNORECASE,
    ),
    # "HRB 12345", "HR B 12345", "Handelsregister: B 12345"
    "hrb_number": re.compile(r"(?:HRB|HR B|Handelsregister[\s:]*B?)[\s:]*(\d+)", re.IGNORECASE),
    # "Amtsgericht Hamburg, ..." / "Registergericht: Hamburg HRB ..."
    "amtsgericht": re.compile(
        r"(?:Amtsgericht|Registergericht|AG)[\s:]*([A-ZÄÖÜa-zäöü\s]+?)(?:\s*[,;.]|\s*HRB)",
        re.IGNORECASE,
    ),
    # "USt-IdNr.: DE 123456789"
    "ust_id": re.compile(
        r"(?:USt-?Id(?:Nr)?\.?|Umsatzsteuer-?Identifikationsnummer)[\s.:]*([A-Z]{2}\s*\d[\d\s]*)",
        re.IGNORECASE,
    ),
    # "Steuernummer: 12/345/67890"
    "steuernummer": re.compile(r"(?:Steuernummer|St\.?\s*Nr\.?)[\s.:]*(\d[\d\s/]+)", re.IGNORECASE),
}

SOCIAL_PATTERNS: Mapping[str, re.Pattern] = {
    "linkedin": re.compile(r"linkedin\.com/(?:company|in)/[\w-]+", re.IGNORECASE),
    "xing": re.compile(r"xing\.com/(?:companies|profile)/[\w-]+", re.IGNORECASE),
    "facebook": re.compile(r"facebook\.com/[\w.-]+", re.IGNORECASE),
    "instagram": re.compile(r"instagram\.com/[\w.-]+", re.IGNORECASE),
    "youtube": re.compile(r"youtube\.com/(?:channel/|c/|@)[\w.-]+", re.IGNORECASE),
}

_EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+")
_PHONE_RE = re.compile(r"(?:\+49|0049|0)\s*[\d\s/()-]{6,20}")

_ABOUT_TITLE_RE = re.compile(r"über uns|about|unternehmen|geschäftsleitung|team", re.IGNORECASE)
_CONTACT_TITLE_RE = re.compile(r"kontakt|contact", re.IGNORECASE)
_CODE_FENCE_RE = re.compile(r"```json|```")

MIN_PAGE_CHARS = 100
MIN_SUMMARY_INPUT_CHARS = 50
MAX_PRODUCTS = 8
EXCERPT_CHARS = 500

SUMMARY_SYSTEM_PROMPT = """You are analyzing a German company's website. Extract and return a JSON object with these fields:
- "description": A 2-3 sentence summary of what the company does (in English)
- "products_services": Array of up to 8 specific products or services they offer
- "team_members": Array of objects {name, role} for any team members/leadership mentioned
Return ONLY valid JSON, no markdown fences."""


# ---------------------------------------------------------------------------
# Website resolution
# ---------------------------------------------------------------------------

def normalize_website_url(url: str) -> str:
    url = url.strip()
    return url if url.startswith("http") else f"https://{url}"


def name_tokens(company_name: str, legal_form_re: re.Pattern = LEGAL_FORM_RE) -> list[str]:
    """Lower-cased name words longer than two characters, legal forms removed."""
    cleaned = legal_form_re.sub(" ", company_name.lower())
    return [part for part in cleaned.split() if len(part) > 2]


def is_aggregator(host: str, aggregator_domains: Iterable[str] = AGGREGATOR_DOMAINS) -> bool:
    return any(domain in host for domain in aggregator_domains)


def pick_website(
    results: list[OrganicResult],
    company_name: str,
    aggregator_domains: Iterable[str] = AGGREGATOR_DOMAINS,
    legal_form_re: re.Pattern = LEGAL_FORM_RE,
) -> tuple[OrganicResult, ResolutionMethod]:
    """Choose the result most likely to be the company's own site.

    First non-aggregator whose hostname contains a name token wins; failing
    that, an aggregator default is swapped for the first non-aggregator; the
    first result is the last resort.
    """
    if not results:
        raise ValueError("pick_website needs at least one search result")

    domains = tuple(aggregator_domains)
    tokens = name_tokens(company_name, legal_form_re)

    for result in results:
        host = hostname(result.link)
        if not is_aggregator(host, domains) and any(token in host for token in tokens):
            return result, ResolutionMethod.name_match

    best = results[0]
    if is_aggregator(hostname(best.link), domains):
        for result in results:
            if not is_aggregator(hostname(result.link), domains):
                return result, ResolutionMethod.non_aggregator
    return best, ResolutionMethod.first_result


def find_sitelink(sitelinks: list[Sitelink], pattern: re.Pattern) -> Sitelink | None:
    for sitelink in sitelinks:
        if pattern.search(sitelink.title):
            return sitelink
    return None


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

def extract_impressum_data(
    text: str, patterns: Mapping[str, re.Pattern] = IMPRESSUM_PATTERNS
) -> ImpressumData:
    """Apply each field pattern and keep the trimmed first group of any match."""
    found: dict[str, str] = {}
    for field, pattern in patterns.items():
        match = pattern.search(text)
        if match:
            found[field] = match.group(1).strip()
    return ImpressumData(**found)


def extract_social_links(
    text: str, patterns: Mapping[str, re.Pattern] = SOCIAL_PATTERNS
) -> dict[str, str]:
    links: dict[str, str] = {}
    for platform, pattern in patterns.items():
        match = pattern.search(text)
        if match:
            links[platform] = f"https://{match.group(0)}"
    return links


def extract_email(text: str) -> str | None:
    match = _EMAIL_RE.search(text)
    return match.group(0) if match else None


def extract_phone(text: str) -> str | None:
    match = _PHONE_RE.search(text)
    return match.group(0).strip() if match else None


def build_summary_input(
    main_text: str,
    about_text: str,
    contact_text: str,
    search_results: list[SearchResultEntry],
) -> str:
    snippet_context = "\n".join(f"{r.title}: {r.snippet}" for r in search_results)
    parts = [
        main_text[:3000],
        about_text[:2000],
        contact_text[:500],
        f"\n--- Search result snippets ---\n{snippet_context}" if snippet_context else "",
    ]
    return "\n\n---\n\n".join(part for part in parts if part)


def _as_text(value: Any) -> str | None:
    if isinstance(value, list):
        value = ", ".join(str(v) for v in value if v)
    if not value:
        return None
    return str(value).strip() or None


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def parse_summary(summary: str) -> tuple[str, list[str], list[TeamMember]]:
    """Parse the LLM's JSON answer.

    Output that is not a JSON object, or whose fields cannot be coerced,
    becomes a truncated description with no products or team.
    """
    try:
        data = json.loads(_CODE_FENCE_RE.sub("", summary).strip())
    except json.JSONDecodeError:
        return summary[:EXCERPT_CHARS], [], []
    if not isinstance(data, dict):
        return summary[:EXCERPT_CHARS], [], []

    try:
        description = _as_text(data.get("description")) or ""
        products = [str(p) for p in _as_list(data.get("products_services")) if p][:MAX_PRODUCTS]
        team: list[TeamMember] = []
        for member in _as_list(data.get("team_members")):
            if isinstance(member, dict) and _as_text(member.get("name")):
                team.append(TeamMember(name=_as_text(member["name"]), role=_as_text(member.get("role"))))
            elif isinstance(member, str) and member.strip():
                team.append(TeamMember(name=member.strip()))
    except ValidationError as exc:
        logger.warning("summary_fields_invalid", error=str(exc))
        return summary[:EXCERPT_CHARS], [], []
    return description, products, team


# ---------------------------------------------------------------------------
# Module entry point
# ---------------------------------------------------------------------------

def _now() -> datetime:
    return datetime.now(timezone.utc)


def _first_page(clients: ResearchClients, urls: Iterable[str]) -> tuple[str, str]:
    """Fetch candidate URLs in order; return the first with enough text."""
    for url in urls:
        text = clients.fetcher.fetch_text(url)
        if len(text) > MIN_PAGE_CHARS:
            return url, text
    return "", ""


def research_website(
    company: Company,
    db: Database,
    clients: ResearchClients,
    aggregator_domains: Iterable[str] = AGGREGATOR_DOMAINS,
    impressum_patterns: Mapping[str, re.Pattern] = IMPRESSUM_PATTERNS,
) -> CrawlStatus:
    log = logger.bind(company_id=company.id, module="website")
    db.upsert_website_profile(WebsiteProfile(company_id=company.id, crawl_status=CrawlStatus.crawling))

    try:
        profile = _crawl(company, clients, log, tuple(aggregator_domains), impressum_patterns)
    except Exception as exc:
        log.error("website_research_failed", error=str(exc))
        profile = WebsiteProfile(
            company_id=company.id,
            crawl_status=CrawlStatus.failed,
            crawl_error=str(exc),
            crawled_at=_now(),
        )

    db.upsert_website_profile(profile)
    log.info("website_research_finished", crawl_status=profile.crawl_status.value)
    return profile.crawl_status


def _crawl(
    company: Company,
    clients: ResearchClients,
    log: Any,
    aggregator_domains: tuple[str, ...],
    impressum_patterns: Mapping[str, re.Pattern],
) -> WebsiteProfile:
    query = f'"{company.name}" {company.city}'
    raw = clients.search.search_raw(query, 10)
    search_results = [SearchResultEntry(**r.model_dump()) for r in raw.organic]
    sitelinks: list[Sitelink] = []

    if company.website:
        website_url = normalize_website_url(company.website)
        domain = hostname(website_url)
        method = ResolutionMethod.known
        bare_domain = domain.replace("www.", "")
        for result in raw.organic:
            if bare_domain and bare_domain in hostname(result.link):
                sitelinks = result.sitelinks
                break
        log.info("website_known", url=website_url)
    else:
        if not raw.organic:
            log.info("website_not_found", query=query)
            return WebsiteProfile(
                company_id=company.id,
                crawl_status=CrawlStatus.not_found,
                crawl_error="No search results found",
                search_results=[],
                crawled_at=_now(),
            )
        best, method = pick_website(raw.organic, company.name, aggregator_domains)
        website_url = best.link
        domain = hostname(website_url)
        sitelinks = best.sitelinks
        log.info("website_resolved", url=website_url, method=method.value)

    main_text = clients.fetcher.fetch_text(website_url)
    raw_pages = [RawPage(url=website_url, title="Homepage", text_excerpt=main_text[:EXCERPT_CHARS])]

    # Impressum: sitelink first, then the usual paths
    impressum_url, impressum_text = "", ""
    impressum_link = next((sl for sl in sitelinks if "impressum" in sl.title.lower()), None)
    if impressum_link:
        impressum_url, impressum_text = _first_page(clients, [impressum_link.link])
    if not impressum_text:
        impressum_url, impressum_text = _first_page(clients, [
            f"https://{domain}/impressum",
            f"https://{domain}/impressum/",
            f"https://www.{domain.replace('www.', '')}/impressum",
        ])
    if impressum_url:
        raw_pages.append(RawPage(url=impressum_url, title="Impressum", text_excerpt=impressum_text[:EXCERPT_CHARS]))

    # About: sitelink text is used even when short, guesses only replace it below 100 chars
    about_url, about_title, about_text = "", "", ""
    about_link = find_sitelink(sitelinks, _ABOUT_TITLE_RE)
    if about_link:
        about_url, about_title = about_link.link, about_link.title
        about_text = clients.fetcher.fetch_text(about_link.link)
    if len(about_text) < MIN_PAGE_CHARS:
        guessed_url, guessed_text = _first_page(clients, [
            f"https://{domain}/ueber-uns",
            f"https://{domain}/about",
            f"https://{domain}/unternehmen",
            f"https://{domain}/ueber-uns/",
        ])
        if guessed_text:
            about_url, about_title, about_text = guessed_url, "About", guessed_text
    if about_url and about_text:
        raw_pages.append(RawPage(url=about_url, title=about_title, text_excerpt=about_text[:EXCERPT_CHARS]))

    contact_text = ""
    contact_link = find_sitelink(sitelinks, _CONTACT_TITLE_RE)
    if contact_link:
        contact_text = clients.fetcher.fetch_text(contact_link.link)
        raw_pages.append(RawPage(url=contact_link.link, title=contact_link.title, text_excerpt=contact_text[:EXCERPT_CHARS]))

    impressum_data = extract_impressum_data(impressum_text, impressum_patterns) if impressum_text else ImpressumData()

    description, products, team = "", [], []
    combined = build_summary_input(main_text, about_text, contact_text, search_results)
    log.debug("summary_input_built", length=len(combined), main_page=len(main_text), about=len(about_text))
    if len(combined) > MIN_SUMMARY_INPUT_CHARS:
        summary = clients.summarizer.summarize(
            f'Here is text extracted from the website of "{company.name}" ({company.city}, Germany):\n\n{combined}',
            SUMMARY_SYSTEM_PROMPT,
        )
        if summary:
            description, products, team = parse_summary(summary)

    page_text = " ".join([main_text, about_text, impressum_text, contact_text])
    social_links = extract_social_links(
        page_text + " " + " ".join(r.link for r in search_results)
    )

    return WebsiteProfile(
        company_id=company.id,
        website_url=website_url,
        domain=domain,
        resolution_method=method,
        impressum_url=impressum_url or None,
        company_description=description or None,
        products_services=products,
        team_members=team,
        contact_email=company.email or extract_email(page_text),
        contact_phone=company.tel or extract_phone(page_text),
        contact_fax=company.fax or None,
        social_links=social_links,
        impressum_data=impressum_data,
        search_results=search_results,
        crawl_status=CrawlStatus.completed,
        crawl_error=None,
        raw_pages=raw_pages,
        crawled_at=_now(),
    )
