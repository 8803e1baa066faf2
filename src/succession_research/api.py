"""HTTP surface for triggering and reading company research."""

from __future__ import annotations

import json
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from succession_research.config import Config, configure_logging
from succession_research.database import Database
from succession_research.models import ResearchRequest
from succession_research.services.clients import ResearchClients, build_clients
from succession_research.services.orchestrator import (
    DIAGNOSE_MODE,
    MIGRATE_MODE,
    CompanyNotFoundError,
    ResearchOrchestrator,
)

logger = structlog.get_logger()


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


async def _read_body(request: Request) -> dict[str, Any]:
    raw = await request.body()
    try:
        body = json.loads(raw) if raw else {}
    except (ValueError, UnicodeDecodeError):
        return {}
    return body if isinstance(body, dict) else {}


def create_app(
    config: Config | None = None,
    db: Database | None = None,
    clients: ResearchClients | None = None,
) -> FastAPI:
    config = config or Config()
    configure_logging(config.log_level)

    if db is None:
        db = Database(config.database_path)
        db.init_db()
    orchestrator = ResearchOrchestrator(
        db, clients or build_clients(config), module_concurrency=config.module_concurrency
    )

    app = FastAPI(title="Succession Research")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.orchestrator = orchestrator

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/research-company")
    async def research_company(request: Request) -> JSONResponse:
        try:
            body = ResearchRequest.model_validate(await _read_body(request))
        except ValidationError as exc:
            logger.warning("research_request_invalid", errors=exc.error_count())
            return _error(400, "company_id is required")

        modules = body.modules
        if modules and MIGRATE_MODE in modules:
            return JSONResponse(content=await run_in_threadpool(orchestrator.migrate))
        if modules and DIAGNOSE_MODE in modules:
            return JSONResponse(content=await run_in_threadpool(orchestrator.diagnose))

        company_id = body.company_id
        if company_id is None:
            return _error(400, "company_id is required")

        try:
            result = await run_in_threadpool(orchestrator.run, company_id, modules)
        except CompanyNotFoundError:
            return _error(404, "Company not found")
        except Exception as exc:
            logger.error("research_request_failed", company_id=company_id, error=str(exc))
            return _error(500, "Internal server error", details=str(exc))
        return JSONResponse(content=result.model_dump(mode="json"))

    @app.get("/research/{company_id}")
    def get_research(company_id: int) -> dict[str, Any]:
        data = orchestrator.load_research(company_id)
        payload = data.model_dump(mode="json")
        payload["is_stale"] = data.is_stale()
        return payload

    return app
