"""Research run orchestration.

One run handles one company: validate, load the company record, initialize
the status row, run the requested modules through a bounded work queue and
finalize the overall status. Modules record their own business failures;
only an exception escaping a module fails the run (and the status row).
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

import structlog

from succession_research.database import Database
from succession_research.models import (
    Company,
    CompanyResearchData,
    ModuleStatus,
    OverallStatus,
    ResearchModule,
    ResearchRunResult,
    ResearchStatus,
)
from succession_research.services.clients import ResearchClients
from succession_research.services.media_research import research_media
from succession_research.services.shareholder_research import research_shareholders
from succession_research.services.website_research import research_website

logger = structlog.get_logger()

DEFAULT_MODULES: tuple[ResearchModule, ...] = (
    ResearchModule.website,
    ResearchModule.media,
    ResearchModule.shareholders,
)

MIGRATE_MODE = "migrate"
DIAGNOSE_MODE = "diagnose"

ModuleRunner = Callable[[Company, Database, ResearchClients], Any]

MODULE_RUNNERS: dict[ResearchModule, ModuleRunner] = {
    ResearchModule.website: research_website,
    ResearchModule.media: research_media,
    ResearchModule.shareholders: research_shareholders,
}

STATUS_FIELDS: dict[ResearchModule, str] = {
    ResearchModule.website: "website_status",
    ResearchModule.media: "media_status",
    ResearchModule.shareholders: "shareholders_status",
}


class CompanyNotFoundError(Exception):
    """Raised when the company record for a research request does not exist."""


def parse_modules(requested: Iterable[str] | None) -> list[ResearchModule]:
    """Known module names in canonical run order; None means all modules."""
    if requested is None:
        return list(DEFAULT_MODULES)
    names = {str(m).strip().lower() for m in requested}
    return [module for module in DEFAULT_MODULES if module.value in names]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ResearchOrchestrator:
    """Runs research modules for one company at a time.

    ``module_concurrency`` sizes both the per-run worker pool and a semaphore
    shared by every run of this orchestrator, so the total number of modules
    hitting the rate-limited APIs at once never exceeds it.
    """

    def __init__(
        self,
        db: Database,
        clients: ResearchClients,
        module_concurrency: int = 1,
        runners: dict[ResearchModule, ModuleRunner] | None = None,
    ):
        self.db = db
        self.clients = clients
        self.module_concurrency = module_concurrency
        self.runners = runners or MODULE_RUNNERS
        self._slots = threading.BoundedSemaphore(module_concurrency)

    # --- Non-production modes ---

    def migrate(self) -> dict[str, Any]:
        try:
            added = self.db.run_migrations()
        except Exception as exc:
            logger.error("migration_failed", error=str(exc))
            return {"migrate": "failed", "error": str(exc)}
        return {"migrate": "success", "added": added}

    def diagnose(self) -> dict[str, Any]:
        report: dict[str, Any] = {"search_key_set": self.clients.search.available}
        report.update(self.clients.summarizer.diagnose())
        return report

    # --- Research ---

    def load_research(self, company_id: int) -> CompanyResearchData:
        """Everything stored for a company, for display."""
        return CompanyResearchData(
            status=self.db.get_research_status(company_id),
            website=self.db.get_website_profile(company_id),
            media_mentions=self.db.get_media_mentions(company_id),
            media_search=self.db.get_media_search(company_id),
            shareholder_backgrounds=self.db.get_shareholder_backgrounds(company_id),
        )

    def run(self, company_id: int, modules: Iterable[str] | None = None) -> ResearchRunResult:
        selected = parse_modules(modules)
        log = logger.bind(company_id=company_id)

        company = self.db.get_company(company_id)
        if company is None:
            raise CompanyNotFoundError(f"Company {company_id} not found")

        self.db.upsert_research_status(
            ResearchStatus(
                company_id=company_id,
                overall_status=OverallStatus.in_progress,
                triggered_at=_now(),
                **{
                    STATUS_FIELDS[m]: ModuleStatus.in_progress if m in selected else ModuleStatus.not_started
                    for m in DEFAULT_MODULES
                },
            )
        )
        log.info("research_started", modules=[m.value for m in selected])

        try:
            results = self._run_modules(company, selected)
        except Exception as exc:
            log.error("research_run_failed", error=str(exc))
            self.db.update_research_status(
                company_id, overall_status=OverallStatus.failed, completed_at=_now()
            )
            raise

        self.db.update_research_status(
            company_id, overall_status=OverallStatus.completed, completed_at=_now()
        )
        log.info("research_completed", results=results)
        return ResearchRunResult(success=True, company_id=company_id, results=results)

    def _run_modules(self, company: Company, selected: list[ResearchModule]) -> dict[str, str]:
        abort = threading.Event()
        with ThreadPoolExecutor(max_workers=self.module_concurrency) as pool:
            futures = [pool.submit(self._run_module, company, m, abort) for m in selected]
        errors = [f.exception() for f in futures if f.exception() is not None]
        if errors:
            raise errors[0]
        return {m.value: ModuleStatus.completed.value for m in selected}

    def _run_module(self, company: Company, module: ResearchModule, abort: threading.Event) -> None:
        # Modules queued behind an infrastructure failure are skipped
        with self._slots:
            if abort.is_set():
                logger.warning("module_skipped", company_id=company.id, module=module.value)
                return
            logger.info("module_started", company_id=company.id, module=module.value)
            try:
                self.runners[module](company, self.db, self.clients)
            except Exception:
                abort.set()
                raise
        self.db.update_research_status(company.id, **{STATUS_FIELDS[module]: ModuleStatus.completed})
