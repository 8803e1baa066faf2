"""SQLite database layer with full schema, CRUD, and migration support.

All datetimes are stored as ISO 8601 strings in UTC.
List and mapping fields are stored as JSON text.
Research tables are keyed by company_id and written with upserts, so every
module run is repeatable; media mentions are the only rows ever deleted.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

import structlog

from succession_research.models import (
    Company,
    CrossReference,
    MediaMention,
    MediaSearchStatus,
    ResearchStatus,
    ShareholderBackground,
    WebsiteProfile,
)

logger = structlog.get_logger()


# ---------------------------------------------------------------------------
# Schema SQL
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA foreign_keys=ON;

CREATE TABLE IF NOT EXISTS companies (
    id INTEGER PRIMARY KEY,
    company_name TEXT,
    address_city TEXT,
    address_country TEXT,
    shareholder_details TEXT,
    shareholder_names TEXT,
    shareholder_dobs TEXT,
    wz_description TEXT,
    tel TEXT,
    fax TEXT,
    email TEXT,
    website TEXT
);

CREATE TABLE IF NOT EXISTS company_research_status (
    company_id INTEGER PRIMARY KEY REFERENCES companies(id) ON DELETE CASCADE,
    website_status TEXT NOT NULL DEFAULT 'not_started',
    media_status TEXT NOT NULL DEFAULT 'not_started',
    shareholders_status TEXT NOT NULL DEFAULT 'not_started',
    overall_status TEXT NOT NULL DEFAULT 'not_started',
    triggered_at TEXT,
    completed_at TEXT
);

CREATE TABLE IF NOT EXISTS company_website_profiles (
    company_id INTEGER PRIMARY KEY REFERENCES companies(id) ON DELETE CASCADE,
    website_url TEXT,
    domain TEXT,
    resolution_method TEXT,
    impressum_url TEXT,
    company_description TEXT,
    products_services TEXT,
    team_members TEXT,
    contact_email TEXT,
    contact_phone TEXT,
    contact_fax TEXT,
    social_links TEXT,
    impressum_data TEXT,
    search_results TEXT,
    crawl_status TEXT NOT NULL DEFAULT 'pending',
    crawl_error TEXT,
    raw_pages TEXT,
    crawled_at TEXT
);

CREATE TABLE IF NOT EXISTS company_media_searches (
    company_id INTEGER PRIMARY KEY REFERENCES companies(id) ON DELETE CASCADE,
    search_status TEXT NOT NULL DEFAULT 'pending',
    search_error TEXT,
    mentions_found INTEGER NOT NULL DEFAULT 0,
    media_summary TEXT,
    last_searched_at TEXT
);

CREATE TABLE IF NOT EXISTS company_media_mentions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    company_id INTEGER NOT NULL REFERENCES companies(id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    url TEXT NOT NULL,
    source TEXT,
    published_at TEXT,
    snippet TEXT,
    sentiment TEXT NOT NULL DEFAULT 'unknown',
    mention_type TEXT NOT NULL,
    related_shareholder TEXT,
    search_query TEXT,
    created_at TEXT NOT NULL,
    UNIQUE(company_id, url)
);

CREATE TABLE IF NOT EXISTS shareholder_backgrounds (
    company_id INTEGER NOT NULL REFERENCES companies(id) ON DELETE CASCADE,
    shareholder_name TEXT NOT NULL,
    shareholder_dob TEXT,
    other_companies TEXT,
    handelsregister_entries TEXT,
    linkedin_url TEXT,
    xing_url TEXT,
    public_roles TEXT,
    bio_summary TEXT,
    cross_references TEXT,
    enrichment_status TEXT NOT NULL DEFAULT 'pending',
    enrichment_error TEXT,
    enriched_at TEXT,
    PRIMARY KEY (company_id, shareholder_name)
);
"""

_INDEX_SQL = """
CREATE INDEX IF NOT EXISTS idx_companies_shareholder_names ON companies(shareholder_names);
CREATE INDEX IF NOT EXISTS idx_media_mentions_company_id ON company_media_mentions(company_id);
CREATE INDEX IF NOT EXISTS idx_media_mentions_published_at ON company_media_mentions(published_at);
CREATE INDEX IF NOT EXISTS idx_shareholder_backgrounds_status ON shareholder_backgrounds(enrichment_status);
"""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _dt_to_iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def _iso_to_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    dt = datetime.fromisoformat(val)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _json_dumps(val: list | dict | None) -> str | None:
    if val is None:
        return None
    return json.dumps(val, ensure_ascii=False)


def _json_loads(val: str | None) -> list | dict | None:
    if val is None:
        return None
    return json.loads(val)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# ---------------------------------------------------------------------------
# Database class
# ---------------------------------------------------------------------------

class Database:
    def __init__(self, db_path: str = "data/research.db"):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # --- Schema / Migration ---

    def init_db(self) -> None:
        with self.connection() as conn:
            conn.executescript(_SCHEMA_SQL)
            conn.executescript(_INDEX_SQL)
        logger.info("database_initialized", path=self.db_path)

    def run_migrations(self) -> list[str]:
        """Apply column patches for databases created before those columns existed.

        Returns the ``table.column`` names that were actually added.
        """
        migrations = [
            ("company_media_searches", "media_summary", "TEXT"),
            ("company_website_profiles", "contact_fax", "TEXT"),
            ("company_website_profiles", "resolution_method", "TEXT"),
        ]
        added: list[str] = []
        with self.connection() as conn:
            for table, column, col_type in migrations:
                existing = {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}
                if column not in existing:
                    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}")
                    added.append(f"{table}.{column}")
        logger.info("migrations_applied", added=added)
        return added

    # =======================================================================
    # Companies (external record)
    # =======================================================================

    def upsert_company(self, company: Company) -> int:
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO companies
                    (id, company_name, address_city, address_country, shareholder_details,
                     shareholder_names, shareholder_dobs, wz_description, tel, fax, email, website)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    company_name = excluded.company_name,
                    address_city = excluded.address_city,
                    address_country = excluded.address_country,
                    shareholder_details = excluded.shareholder_details,
                    shareholder_names = excluded.shareholder_names,
                    shareholder_dobs = excluded.shareholder_dobs,
                    wz_description = excluded.wz_description,
                    tel = excluded.tel,
                    fax = excluded.fax,
                    email = excluded.email,
                    website = excluded.website
                """,
                (
                    company.id,
                    company.company_name,
                    company.address_city,
                    company.address_country,
                    _json_dumps(
                        [d.model_dump() for d in company.shareholder_details]
                        if company.shareholder_details is not None else None
                    ),
                    company.shareholder_names,
                    company.shareholder_dobs,
                    company.wz_description,
                    company.tel,
                    company.fax,
                    company.email,
                    company.website,
                ),
            )
        return company.id

    def get_company(self, company_id: int) -> Company | None:
        with self.connection() as conn:
            row = conn.execute("SELECT * FROM companies WHERE id = ?", (company_id,)).fetchone()
        if row is None:
            return None
        return Company(
            id=row["id"],
            company_name=row["company_name"],
            address_city=row["address_city"],
            address_country=row["address_country"],
            shareholder_details=_json_loads(row["shareholder_details"]),
            shareholder_names=row["shareholder_names"],
            shareholder_dobs=row["shareholder_dobs"],
            wz_description=row["wz_description"],
            tel=row["tel"],
            fax=row["fax"],
            email=row["email"],
            website=row["website"],
        )

    def find_companies_by_shareholder(
        self, shareholder_name: str, exclude_company_id: int
    ) -> list[CrossReference]:
        """Other companies whose shareholder text contains the name (case-insensitive)."""
        pattern = f"%{_escape_like(shareholder_name)}%"
        with self.connection() as conn:
            rows = conn.execute(
                """
                SELECT id, company_name FROM companies
                WHERE id != ? AND shareholder_names LIKE ? ESCAPE '\\'
                ORDER BY id
                """,
                (exclude_company_id, pattern),
            ).fetchall()
        return [CrossReference(id=r["id"], company_name=r["company_name"]) for r in rows]

    # =======================================================================
    # Research status
    # =======================================================================

    def upsert_research_status(self, status: ResearchStatus) -> None:
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO company_research_status
                    (company_id, website_status, media_status, shareholders_status,
                     overall_status, triggered_at, completed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(company_id) DO UPDATE SET
                    website_status = excluded.website_status,
                    media_status = excluded.media_status,
                    shareholders_status = excluded.shareholders_status,
                    overall_status = excluded.overall_status,
                    triggered_at = excluded.triggered_at,
                    completed_at = excluded.completed_at
                """,
                (
                    status.company_id,
                    status.website_status.value,
                    status.media_status.value,
                    status.shareholders_status.value,
                    status.overall_status.value,
                    _dt_to_iso(status.triggered_at),
                    _dt_to_iso(status.completed_at),
                ),
            )

    _STATUS_COLUMNS = {
        "website_status", "media_status", "shareholders_status",
        "overall_status", "triggered_at", "completed_at",
    }

    def update_research_status(self, company_id: int, **kwargs: Any) -> None:
        unknown = set(kwargs) - self._STATUS_COLUMNS
        if unknown:
            raise ValueError(f"Unknown research status columns: {sorted(unknown)}")
        values = []
        for val in kwargs.values():
            if isinstance(val, datetime):
                val = _dt_to_iso(val)
            elif hasattr(val, "value"):
                val = val.value
            values.append(val)
        sets = ", ".join(f"{k} = ?" for k in kwargs)
        with self.connection() as conn:
            conn.execute(
                f"UPDATE company_research_status SET {sets} WHERE company_id = ?",
                values + [company_id],
            )

    def get_research_status(self, company_id: int) -> ResearchStatus | None:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM company_research_status WHERE company_id = ?", (company_id,)
            ).fetchone()
        if row is None:
            return None
        return ResearchStatus(
            company_id=row["company_id"],
            website_status=row["website_status"],
            media_status=row["media_status"],
            shareholders_status=row["shareholders_status"],
            overall_status=row["overall_status"],
            triggered_at=_iso_to_dt(row["triggered_at"]),
            completed_at=_iso_to_dt(row["completed_at"]),
        )

    # =======================================================================
    # Website profiles
    # =======================================================================

    def upsert_website_profile(self, profile: WebsiteProfile) -> None:
        """Write the whole profile row; nothing from a previous run survives."""
        data = profile.model_dump(mode="json")
        columns = [
            "company_id", "website_url", "domain", "resolution_method", "impressum_url",
            "company_description", "products_services", "team_members", "contact_email",
            "contact_phone", "contact_fax", "social_links", "impressum_data",
            "search_results", "crawl_status", "crawl_error", "raw_pages", "crawled_at",
        ]
        json_columns = {
            "products_services", "team_members", "social_links",
            "search_results", "raw_pages",
        }
        values = []
        for col in columns:
            if col in json_columns:
                values.append(_json_dumps(data[col]))
            elif col == "impressum_data":
                values.append(_json_dumps(profile.impressum_data.model_dump(exclude_none=True)))
            elif col == "crawled_at":
                values.append(_dt_to_iso(profile.crawled_at))
            else:
                values.append(data[col])
        updates = ", ".join(f"{c} = excluded.{c}" for c in columns[1:])
        with self.connection() as conn:
            conn.execute(
                f"""
                INSERT INTO company_website_profiles ({", ".join(columns)})
                VALUES ({", ".join("?" for _ in columns)})
                ON CONFLICT(company_id) DO UPDATE SET {updates}
                """,
                values,
            )

    def get_website_profile(self, company_id: int) -> WebsiteProfile | None:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM company_website_profiles WHERE company_id = ?", (company_id,)
            ).fetchone()
        if row is None:
            return None
        return WebsiteProfile(
            company_id=row["company_id"],
            website_url=row["website_url"],
            domain=row["domain"],
            resolution_method=row["resolution_method"],
            impressum_url=row["impressum_url"],
            company_description=row["company_description"],
            products_services=_json_loads(row["products_services"]) or [],
            team_members=_json_loads(row["team_members"]) or [],
            contact_email=row["contact_email"],
            contact_phone=row["contact_phone"],
            contact_fax=row["contact_fax"],
            social_links=_json_loads(row["social_links"]) or {},
            impressum_data=_json_loads(row["impressum_data"]) or {},
            search_results=_json_loads(row["search_results"]) or [],
            crawl_status=row["crawl_status"],
            crawl_error=row["crawl_error"],
            raw_pages=_json_loads(row["raw_pages"]) or [],
            crawled_at=_iso_to_dt(row["crawled_at"]),
        )

    # =======================================================================
    # Media searches & mentions
    # =======================================================================

    def upsert_media_search(self, search: MediaSearchStatus) -> None:
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO company_media_searches
                    (company_id, search_status, search_error, mentions_found,
                     media_summary, last_searched_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(company_id) DO UPDATE SET
                    search_status = excluded.search_status,
                    search_error = excluded.search_error,
                    mentions_found = excluded.mentions_found,
                    media_summary = excluded.media_summary,
                    last_searched_at = excluded.last_searched_at
                """,
                (
                    search.company_id,
                    search.search_status.value,
                    search.search_error,
                    search.mentions_found,
                    search.media_summary,
                    _dt_to_iso(search.last_searched_at),
                ),
            )

    def get_media_search(self, company_id: int) -> MediaSearchStatus | None:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM company_media_searches WHERE company_id = ?", (company_id,)
            ).fetchone()
        if row is None:
            return None
        return MediaSearchStatus(
            company_id=row["company_id"],
            search_status=row["search_status"],
            search_error=row["search_error"],
            mentions_found=row["mentions_found"],
            media_summary=row["media_summary"],
            last_searched_at=_iso_to_dt(row["last_searched_at"]),
        )

    def replace_media_mentions(self, company_id: int, mentions: list[MediaMention]) -> int:
        """Delete every mention of the company, then insert the new batch.

        Both statements share one transaction; an insert error rolls back the
        delete and propagates to the caller.
        """
        with self.connection() as conn:
            conn.execute("DELETE FROM company_media_mentions WHERE company_id = ?", (company_id,))
            conn.executemany(
                """
                INSERT INTO company_media_mentions
                    (company_id, title, url, source, published_at, snippet, sentiment,
                     mention_type, related_shareholder, search_query, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        company_id,
                        m.title,
                        m.url,
                        m.source,
                        m.published_at,
                        m.snippet,
                        m.sentiment.value,
                        m.mention_type.value,
                        m.related_shareholder,
                        m.search_query,
                        _dt_to_iso(m.created_at),
                    )
                    for m in mentions
                ],
            )
        return len(mentions)

    def get_media_mentions(self, company_id: int) -> list[MediaMention]:
        with self.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM company_media_mentions WHERE company_id = ?
                ORDER BY published_at IS NULL, published_at DESC, id
                """,
                (company_id,),
            ).fetchall()
        return [
            MediaMention(
                id=r["id"],
                company_id=r["company_id"],
                title=r["title"],
                url=r["url"],
                source=r["source"],
                published_at=r["published_at"],
                snippet=r["snippet"],
                sentiment=r["sentiment"],
                mention_type=r["mention_type"],
                related_shareholder=r["related_shareholder"],
                search_query=r["search_query"],
                created_at=_iso_to_dt(r["created_at"]) or datetime.now(timezone.utc),
            )
            for r in rows
        ]

    # =======================================================================
    # Shareholder backgrounds
    # =======================================================================

    def upsert_shareholder_background(self, bg: ShareholderBackground) -> None:
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO shareholder_backgrounds
                    (company_id, shareholder_name, shareholder_dob, other_companies,
                     handelsregister_entries, linkedin_url, xing_url, public_roles,
                     bio_summary, cross_references, enrichment_status, enrichment_error,
                     enriched_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(company_id, shareholder_name) DO UPDATE SET
                    shareholder_dob = excluded.shareholder_dob,
                    other_companies = excluded.other_companies,
                    handelsregister_entries = excluded.handelsregister_entries,
                    linkedin_url = excluded.linkedin_url,
                    xing_url = excluded.xing_url,
                    public_roles = excluded.public_roles,
                    bio_summary = excluded.bio_summary,
                    cross_references = excluded.cross_references,
                    enrichment_status = excluded.enrichment_status,
                    enrichment_error = excluded.enrichment_error,
                    enriched_at = excluded.enriched_at
                """,
                (
                    bg.company_id,
                    bg.shareholder_name,
                    bg.shareholder_dob,
                    _json_dumps([o.model_dump(exclude_none=True) for o in bg.other_companies]),
                    _json_dumps([h.model_dump(exclude_none=True) for h in bg.handelsregister_entries]),
                    bg.linkedin_url,
                    bg.xing_url,
                    _json_dumps(bg.public_roles),
                    bg.bio_summary,
                    _json_dumps([c.model_dump(exclude_none=True) for c in bg.cross_references]),
                    bg.enrichment_status.value,
                    bg.enrichment_error,
                    _dt_to_iso(bg.enriched_at),
                ),
            )

    def get_shareholder_backgrounds(self, company_id: int) -> list[ShareholderBackground]:
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM shareholder_backgrounds WHERE company_id = ? ORDER BY shareholder_name",
                (company_id,),
            ).fetchall()
        return [
            ShareholderBackground(
                company_id=r["company_id"],
                shareholder_name=r["shareholder_name"],
                shareholder_dob=r["shareholder_dob"],
                other_companies=_json_loads(r["other_companies"]) or [],
                handelsregister_entries=_json_loads(r["handelsregister_entries"]) or [],
                linkedin_url=r["linkedin_url"],
                xing_url=r["xing_url"],
                public_roles=_json_loads(r["public_roles"]) or [],
                bio_summary=r["bio_summary"],
                cross_references=_json_loads(r["cross_references"]) or [],
                enrichment_status=r["enrichment_status"],
                enrichment_error=r["enrichment_error"],
                enriched_at=_iso_to_dt(r["enriched_at"]),
            )
            for r in rows
        ]
