"""Tests for database layer."""

import sqlite3
from datetime import datetime, timezone

import pytest

from succession_research.database import Database
from succession_research.models import (
    Company,
    CrawlStatus,
    CrossReference,
    EnrichmentStatus,
    HandelsregisterEntry,
    ImpressumData,
    MediaMention,
    MediaSearchState,
    MediaSearchStatus,
    MentionType,
    ModuleStatus,
    OtherCompany,
    OverallStatus,
    RawPage,
    ResearchStatus,
    ResolutionMethod,
    ShareholderBackground,
    ShareholderDetail,
    WebsiteProfile,
)


def _mention(company_id, url, published_at=None, **kwargs):
    return MediaMention(
        company_id=company_id, title=f"Article {url}", url=url, published_at=published_at, **kwargs
    )


class TestSchemaInitialization:
    def test_all_tables_created(self, db):
        expected_tables = {
            "companies", "company_research_status", "company_website_profiles",
            "company_media_searches", "company_media_mentions", "shareholder_backgrounds",
        }
        with db.connection() as conn:
            rows = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
            ).fetchall()
        assert expected_tables.issubset({r["name"] for r in rows})

    def test_idempotent_init(self, db, company):
        db.init_db()
        assert db.get_company(42) is not None

    def test_migrations_on_current_schema_add_nothing(self, db):
        assert db.run_migrations() == []

    def test_migrations_patch_legacy_tables(self, tmp_path):
        db_path = str(tmp_path / "legacy.db")
        conn = sqlite3.connect(db_path)
        conn.executescript(
            """
            CREATE TABLE company_media_searches (
                company_id INTEGER PRIMARY KEY,
                search_status TEXT NOT NULL DEFAULT 'pending',
                search_error TEXT,
                mentions_found INTEGER NOT NULL DEFAULT 0,
                last_searched_at TEXT
            );
            """
        )
        conn.close()

        db = Database(db_path)
        db.init_db()
        assert db.run_migrations() == ["company_media_searches.media_summary"]
        assert db.run_migrations() == []


class TestCompanies:
    def test_round_trip_with_details(self, db):
        db.upsert_company(
            Company(
                id=7,
                company_name="Nord GmbH",
                address_city="Kiel",
                shareholder_details=[ShareholderDetail(name="Eva Nord", dob="1958-01-01", percentage=100)],
                fax="+49 431 99",
            )
        )
        stored = db.get_company(7)
        assert stored.company_name == "Nord GmbH"
        assert stored.shareholder_details[0].name == "Eva Nord"
        assert stored.shareholder_details[0].percentage == 100
        assert stored.fax == "+49 431 99"

    def test_missing_company(self, db):
        assert db.get_company(999) is None

    def test_find_by_shareholder_excludes_self(self, db):
        db.upsert_company(Company(id=1, company_name="A GmbH", shareholder_names="Otto Müller, Anna Schmidt"))
        db.upsert_company(Company(id=2, company_name="B GmbH", shareholder_names="otto müller"))
        db.upsert_company(Company(id=3, company_name="C GmbH", shareholder_names="Someone Else"))

        refs = db.find_companies_by_shareholder("Otto Müller", exclude_company_id=1)
        assert refs == [CrossReference(id=2, company_name="B GmbH")]

    def test_find_by_shareholder_escapes_wildcards(self, db):
        db.upsert_company(Company(id=1, company_name="A GmbH", shareholder_names="Otto Müller"))
        assert db.find_companies_by_shareholder("%", exclude_company_id=99) == []
        assert db.find_companies_by_shareholder("_", exclude_company_id=99) == []


class TestResearchStatus:
    def test_upsert_and_update(self, db, company):
        triggered = datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc)
        db.upsert_research_status(
            ResearchStatus(
                company_id=42,
                website_status=ModuleStatus.in_progress,
                overall_status=OverallStatus.in_progress,
                triggered_at=triggered,
            )
        )
        db.update_research_status(42, website_status=ModuleStatus.completed)
        db.update_research_status(
            42, overall_status=OverallStatus.completed, completed_at=datetime(2026, 1, 5, 9, 35, tzinfo=timezone.utc)
        )

        status = db.get_research_status(42)
        assert status.website_status == ModuleStatus.completed
        assert status.media_status == ModuleStatus.not_started
        assert status.overall_status == OverallStatus.completed
        assert status.triggered_at == triggered
        assert status.completed_at.minute == 35

    def test_unknown_column_rejected(self, db, company):
        with pytest.raises(ValueError):
            db.update_research_status(42, website_url="x")


class TestWebsiteProfiles:
    def test_round_trip(self, db, company):
        profile = WebsiteProfile(
            company_id=42,
            website_url="https://mueller-maschinenbau.de",
            domain="mueller-maschinenbau.de",
            resolution_method=ResolutionMethod.name_match,
            products_services=["Pumps"],
            social_links={"linkedin": "https://linkedin.com/company/mueller"},
            impressum_data=ImpressumData(hrb_number="12345"),
            raw_pages=[RawPage(url="https://mueller-maschinenbau.de", title="Homepage", text_excerpt="Hi")],
            crawl_status=CrawlStatus.completed,
        )
        db.upsert_website_profile(profile)
        stored = db.get_website_profile(42)
        assert stored.resolution_method == ResolutionMethod.name_match
        assert stored.products_services == ["Pumps"]
        assert stored.impressum_data.hrb_number == "12345"
        assert stored.raw_pages[0].title == "Homepage"

    def test_upsert_replaces_whole_row(self, db, company):
        db.upsert_website_profile(
            WebsiteProfile(company_id=42, website_url="https://old.de", crawl_status=CrawlStatus.completed)
        )
        db.upsert_website_profile(WebsiteProfile(company_id=42, crawl_status=CrawlStatus.crawling))
        stored = db.get_website_profile(42)
        assert stored.website_url is None
        assert stored.crawl_status == CrawlStatus.crawling


class TestMediaMentions:
    def test_replace_removes_previous_set(self, db, company):
        db.replace_media_mentions(42, [_mention(42, "https://a.de/1"), _mention(42, "https://a.de/2")])
        db.replace_media_mentions(42, [_mention(42, "https://b.de/1")])
        assert [m.url for m in db.get_media_mentions(42)] == ["https://b.de/1"]

    def test_failed_insert_keeps_previous_set(self, db, company):
        db.replace_media_mentions(42, [_mention(42, "https://a.de/1")])
        duplicate = [_mention(42, "https://b.de/1"), _mention(42, "https://b.de/1")]
        with pytest.raises(sqlite3.IntegrityError):
            db.replace_media_mentions(42, duplicate)
        assert [m.url for m in db.get_media_mentions(42)] == ["https://a.de/1"]

    def test_newest_first_undated_last(self, db, company):
        db.replace_media_mentions(42, [
            _mention(42, "https://a.de/undated"),
            _mention(42, "https://a.de/old", "2023-05-01"),
            _mention(42, "https://a.de/new", "2025-11-20", mention_type=MentionType.shareholder,
                     related_shareholder="Otto Müller"),
        ])
        mentions = db.get_media_mentions(42)
        assert [m.url for m in mentions] == [
            "https://a.de/new", "https://a.de/old", "https://a.de/undated",
        ]
        assert mentions[0].related_shareholder == "Otto Müller"

    def test_media_search_round_trip(self, db, company):
        db.upsert_media_search(
            MediaSearchStatus(
                company_id=42,
                search_status=MediaSearchState.completed,
                mentions_found=3,
                media_summary="Low media profile.",
            )
        )
        stored = db.get_media_search(42)
        assert stored.search_status == MediaSearchState.completed
        assert stored.mentions_found == 3
        assert stored.media_summary == "Low media profile."


class TestShareholderBackgrounds:
    def test_upsert_by_company_and_name(self, db, company):
        db.upsert_shareholder_background(
            ShareholderBackground(company_id=42, shareholder_name="Otto Müller",
                                  enrichment_status=EnrichmentStatus.enriching)
        )
        db.upsert_shareholder_background(
            ShareholderBackground(
                company_id=42,
                shareholder_name="Otto Müller",
                other_companies=[OtherCompany(name="Nord GmbH", role="Geschäftsführer")],
                handelsregister_entries=[HandelsregisterEntry(hrb_number="HRB 123")],
                cross_references=[CrossReference(id=2, company_name="B GmbH")],
                enrichment_status=EnrichmentStatus.completed,
            )
        )
        rows = db.get_shareholder_backgrounds(42)
        assert len(rows) == 1
        assert rows[0].enrichment_status == EnrichmentStatus.completed
        assert rows[0].other_companies[0].role == "Geschäftsführer"
        assert rows[0].handelsregister_entries[0].hrb_number == "HRB 123"
        assert rows[0].cross_references[0].id == 2

    def test_ordered_by_name(self, db, company):
        for name in ["Zora Ziegler", "Anna Schmidt"]:
            db.upsert_shareholder_background(ShareholderBackground(company_id=42, shareholder_name=name))
        assert [r.shareholder_name for r in db.get_shareholder_backgrounds(42)] == [
            "Anna Schmidt", "Zora Ziegler",
        ]
