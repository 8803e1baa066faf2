"""Tests for research run orchestration."""

import threading
import time

import pytest

from conftest import FakeSearch, FakeSummarizer
from succession_research.models import (
    EnrichmentStatus,
    ModuleStatus,
    OverallStatus,
    ResearchModule,
    SearchResult,
)
from succession_research.services.orchestrator import (
    MODULE_RUNNERS,
    CompanyNotFoundError,
    ResearchOrchestrator,
    parse_modules,
)


def _recording_runners(log, fail_on=None):
    def make(module):
        def runner(company, db, clients):
            log.append(module.value)
            if module == fail_on:
                raise RuntimeError(f"{module.value} infrastructure failure")
        return runner
    return {module: make(module) for module in MODULE_RUNNERS}


class TestParseModules:
    def test_default_is_all_in_order(self):
        assert parse_modules(None) == [
            ResearchModule.website, ResearchModule.media, ResearchModule.shareholders,
        ]

    def test_canonical_order_and_unknown_ignored(self):
        assert parse_modules(["shareholders", "bogus", "website"]) == [
            ResearchModule.website, ResearchModule.shareholders,
        ]

    def test_empty_list(self):
        assert parse_modules([]) == []


class TestRun:
    def test_unknown_company(self, db, make_clients):
        orchestrator = ResearchOrchestrator(db, make_clients())
        with pytest.raises(CompanyNotFoundError):
            orchestrator.run(999)
        assert db.get_research_status(999) is None

    def test_requested_modules_run_in_order(self, db, company, make_clients):
        calls = []
        orchestrator = ResearchOrchestrator(db, make_clients(), runners=_recording_runners(calls))

        result = orchestrator.run(42, ["shareholders", "website"])

        assert calls == ["website", "shareholders"]
        assert result.success is True
        assert result.results == {"website": "completed", "shareholders": "completed"}
        status = db.get_research_status(42)
        assert status.website_status == ModuleStatus.completed
        assert status.media_status == ModuleStatus.not_started
        assert status.shareholders_status == ModuleStatus.completed
        assert status.overall_status == OverallStatus.completed
        assert status.triggered_at is not None
        assert status.completed_at >= status.triggered_at

    def test_empty_module_list_still_finalizes(self, db, company, make_clients):
        calls = []
        orchestrator = ResearchOrchestrator(db, make_clients(), runners=_recording_runners(calls))

        result = orchestrator.run(42, ["nothing-known"])

        assert calls == []
        assert result.results == {}
        assert db.get_research_status(42).overall_status == OverallStatus.completed

    def test_unexpected_failure_marks_run_failed(self, db, company, make_clients):
        calls = []
        orchestrator = ResearchOrchestrator(
            db, make_clients(), runners=_recording_runners(calls, fail_on=ResearchModule.media)
        )

        with pytest.raises(RuntimeError, match="media infrastructure failure"):
            orchestrator.run(42)

        assert calls == ["website", "media"]
        status = db.get_research_status(42)
        assert status.overall_status == OverallStatus.failed
        assert status.completed_at is not None
        assert status.website_status == ModuleStatus.completed
        assert status.media_status == ModuleStatus.in_progress
        assert status.shareholders_status == ModuleStatus.in_progress

    def test_concurrency_bound(self, db, company, make_clients):
        active = []
        peak = []
        lock = threading.Lock()

        def runner(company, db, clients):
            with lock:
                active.append(1)
                peak.append(len(active))
            time.sleep(0.05)
            with lock:
                active.pop()

        runners = {module: runner for module in MODULE_RUNNERS}
        ResearchOrchestrator(db, make_clients(), module_concurrency=2, runners=runners).run(42)
        assert max(peak) <= 2

    def test_shareholders_end_to_end(self, db, company, make_clients):
        def handler(query, num, mode):
            if query.startswith('"Beta Holding GmbH"'):
                return [SearchResult(title="Beta Holding GmbH", link="https://www.northdata.de/beta",
                                     snippet="Holding in Hamburg")]
            return []

        clients = make_clients(search=FakeSearch(handler), summarizer=FakeSummarizer(None))
        result = ResearchOrchestrator(db, clients).run(42, ["shareholders"])

        assert result.results == {"shareholders": "completed"}
        rows = {r.shareholder_name: r for r in db.get_shareholder_backgrounds(42)}
        assert set(rows) == {"Otto Müller", "Beta Holding GmbH"}
        assert rows["Otto Müller"].enrichment_status in (EnrichmentStatus.completed, EnrichmentStatus.failed)
        assert rows["Beta Holding GmbH"].enrichment_status == EnrichmentStatus.is_company
        assert rows["Beta Holding GmbH"].other_companies[0].source_url == "https://www.northdata.de/beta"
        assert db.get_website_profile(42) is None
        assert db.get_media_search(42) is None


class TestModes:
    def test_migrate(self, db, make_clients):
        assert ResearchOrchestrator(db, make_clients()).migrate() == {"migrate": "success", "added": []}

    def test_migrate_failure_reported(self, db, make_clients, monkeypatch):
        def broken():
            raise RuntimeError("database is locked")

        monkeypatch.setattr(db, "run_migrations", broken)
        assert ResearchOrchestrator(db, make_clients()).migrate() == {
            "migrate": "failed", "error": "database is locked",
        }

    def test_diagnose(self, db, make_clients):
        report = ResearchOrchestrator(db, make_clients(search=FakeSearch(available=False))).diagnose()
        assert report["search_key_set"] is False
        assert report["llm_key_set"] is True


class TestLoadResearch:
    def test_empty(self, db, company, make_clients):
        data = ResearchOrchestrator(db, make_clients()).load_research(42)
        assert data.status is None
        assert data.website is None
        assert data.media_mentions == []
        assert data.is_stale() is True

    def test_after_run(self, db, company, make_clients):
        orchestrator = ResearchOrchestrator(db, make_clients())
        orchestrator.run(42, ["media", "shareholders"])
        data = orchestrator.load_research(42)
        assert data.status.overall_status == OverallStatus.completed
        assert data.media_search is not None
        assert len(data.shareholder_backgrounds) == 2
        assert data.is_stale() is False
