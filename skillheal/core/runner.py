'''Composition root and public entry points.

Builds the model catalog, chain selector, executor and router once per
process, wires them to the healing store, and exposes the operations the
scheduler and the CLI call:

- route / select_model: tiered LLM calls with fallback and cost tracking
- heal_failed_item / diagnose: failure handling for a failed work-item run
- confirm_fix: feedback after the retried run, feeds known fixes
'''

from __future__ import annotations

import logging
from dataclasses import dataclass

from skillheal.config import DEFAULT_POLICY, LLM_MAX_ATTEMPTS, MODEL_CATALOG_FILE
from skillheal.db_globals import close_db, get_db
from skillheal.healing import (
    Diagnosis,
    DiagnosisEngine,
    ErrorContext,
    HealingOrchestrator,
    HealingOutcome,
)
from skillheal.healing.notifier import default_notifier
from skillheal.healing_db import HealingDB
from skillheal.routing import (
    CallExecutor,
    CallOptions,
    FallbackChainSelector,
    ModelCatalog,
    RoutingPolicy,
    RoutingResult,
    TieredRouter,
)

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Wired components sharing one catalog and one store."""

    catalog: ModelCatalog
    selector: FallbackChainSelector
    executor: CallExecutor
    router: TieredRouter
    db: HealingDB
    engine: DiagnosisEngine
    orchestrator: HealingOrchestrator


_catalog: ModelCatalog | None = None
_services: Services | None = None


def get_catalog() -> ModelCatalog:
    """Model catalog for this process (MODEL_CATALOG_FILE or the built-in one)."""
    global _catalog
    if _catalog is None:
        if MODEL_CATALOG_FILE:
            _catalog = ModelCatalog.from_yaml(MODEL_CATALOG_FILE)
        else:
            _catalog = ModelCatalog.default()
    return _catalog


def build_services(db: HealingDB, catalog: ModelCatalog | None = None, **overrides) -> Services:
    """Wire all components around an initialized store.

    Args:
        db: Initialized HealingDB
        catalog: Model catalog (default: get_catalog())
        **overrides: Replace a component by name (executor, notifier, router, ...)

    Returns:
        Services

    """
    catalog = catalog or get_catalog()
    selector = overrides.get("selector") or FallbackChainSelector(catalog)
    executor = overrides.get("executor") or CallExecutor(catalog)
    router = overrides.get("router") or TieredRouter(
        catalog, selector, executor,
        call_recorder=db.record_llm_call,
        default_max_attempts=LLM_MAX_ATTEMPTS,
    )
    engine = overrides.get("engine") or DiagnosisEngine(router, db)
    orchestrator = HealingOrchestrator(
        db,
        engine,
        notifier=overrides.get("notifier") or default_notifier(),
    )
    return Services(catalog, selector, executor, router, db, engine, orchestrator)


async def get_services() -> Services:
    """Get or create the process-wide Services."""
    global _services
    if _services is None:
        db = await get_db()
        _services = build_services(db)
    return _services


async def route(
    messages: list[dict[str, str]],
    policy: RoutingPolicy | str = DEFAULT_POLICY,
    allow_uncensored: bool = True,
    allow_censored: bool = True,
    max_attempts: int | None = None,
    options: CallOptions | None = None,
) -> RoutingResult:
    """Route a chat request through the policy's fallback chain.

    Raises:
        ChainExhausted: every candidate failed

    """
    services = await get_services()
    return await services.router.route(
        messages,
        policy=policy,
        allow_uncensored=allow_uncensored,
        allow_censored=allow_censored,
        max_attempts=max_attempts,
        options=options,
    )


def select_model(
    policy: RoutingPolicy | str = DEFAULT_POLICY,
    allow_uncensored: bool = True,
    allow_censored: bool = True,
) -> str:
    """Model a routed call would try first."""
    return FallbackChainSelector(get_catalog()).select_model(policy, allow_uncensored, allow_censored)


async def heal_failed_item(context: ErrorContext) -> HealingOutcome:
    services = await get_services()
    return await services.orchestrator.heal_failed_item(context)


async def diagnose(context: ErrorContext) -> Diagnosis:
    services = await get_services()
    return await services.engine.diagnose(context)


async def confirm_fix(error_id: int, succeeded: bool) -> bool:
    services = await get_services()
    return await services.orchestrator.confirm_fix(error_id, succeeded)


async def cleanup() -> None:
    """Drop wired services and close the database connection."""
    global _services
    _services = None
    await close_db()
