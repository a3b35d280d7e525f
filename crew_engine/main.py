# crew_engine/main.py
"""
Crew Legality & Pay Engine - FastAPI main file.

Loads the rule tables from crew_engine/rules (or CREW_RULES_DIR) once at
startup; the app refuses to start when they are missing or invalid.

- GET  /              -> readiness + loaded ruleset
- GET  /rules         -> list rule summaries
- GET  /rules/{id}    -> full rule detail
- legality / compliance / duty / pay routes -> see api.py
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .api import router
from .compliance import ComplianceMonitor
from .errors import CrewNotFoundError, RuleTableError
from .legality import LegalityValidator
from .load_rules import load_rule_book
from .pay_calculator import PayCalculator
from .settings import Settings, configure_logging
from .store import CrewStore, InMemoryCrewStore

log = logging.getLogger("uvicorn.error")


# ---------- RESPONSE MODELS ----------
class RuleSummary(BaseModel):
    id: str
    title: Optional[str] = None
    regulatory_reference: Optional[Any] = None
    enabled: Optional[bool] = None
    version: Optional[str] = None
    logic_type: Optional[str] = None


class RuleDetail(RuleSummary):
    logic: Optional[Dict[str, Any]] = None
    notes: Optional[Dict[str, Any]] = None


def create_app(settings: Optional[Settings] = None, store: Optional[CrewStore] = None) -> FastAPI:
    settings = settings or Settings.from_env()

    # ---------- LIFESPAN STARTUP ----------
    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        try:
            book = load_rule_book(settings.rules_dir)
        except RuleTableError as e:
            log.error("Rule tables could not be loaded from %s: %s", settings.rules_dir, e)
            for item in e.invalid:
                log.error("  invalid: %s", item)
            raise

        crew_store = store
        if crew_store is None:
            if settings.data_file:
                crew_store = InMemoryCrewStore.from_json(settings.data_file)
            else:
                log.warning("No CREW_DATA_FILE configured; starting with an empty in-memory store")
                crew_store = InMemoryCrewStore()

        app.state.settings = settings
        app.state.rule_book = book
        app.state.store = crew_store
        app.state.validator = LegalityValidator(crew_store, book)
        app.state.compliance = ComplianceMonitor(crew_store, book)
        app.state.pay = PayCalculator(crew_store, book, settings.default_currency)

        log.info(
            "Rule loader startup: %d rules, ruleset %s",
            len(book.rules), book.provenance.get("ruleset_hash_sha256"),
        )
        yield

    app = FastAPI(title="Crew Legality & Pay Engine", lifespan=_lifespan)

    @app.exception_handler(CrewNotFoundError)
    async def _crew_not_found(request: Request, exc: CrewNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def _bad_value(request: Request, exc: ValueError):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    app.include_router(router)

    # ---------- ROOT ----------
    @app.get("/")
    def root(request: Request):
        book = request.app.state.rule_book
        return {
            "message": "Crew Legality Engine Ready!",
            "rules_loaded": len(book.rules),
            "ruleset": book.stamp,
        }

    # ---------- LIST RULES ----------
    @app.get("/rules", response_model=List[RuleSummary])
    def get_rules(request: Request):
        rules = request.app.state.rule_book.rules
        return [
            RuleSummary(
                id=r.id,
                title=r.title,
                regulatory_reference=r.regulatory_reference,
                enabled=r.enabled,
                version=r.version,
                logic_type=r.logic.get("type"),
            )
            for r in sorted(rules.values(), key=lambda x: x.id)
        ]

    # ---------- GET RULE DETAIL ----------
    @app.get("/rules/{rule_id}", response_model=RuleDetail)
    def get_rule_detail(rule_id: str, request: Request):
        rule = request.app.state.rule_book.rules.get(rule_id)
        if not rule:
            raise HTTPException(status_code=404, detail=f"Rule '{rule_id}' not found")
        return RuleDetail(
            id=rule.id,
            title=rule.title,
            regulatory_reference=rule.regulatory_reference,
            enabled=rule.enabled,
            version=rule.version,
            logic_type=rule.logic.get("type"),
            logic=rule.logic,
            notes=rule.notes,
        )

    return app


def _default_app() -> FastAPI:
    settings = Settings.from_env()
    configure_logging(settings)
    return create_app(settings)


app = _default_app()
