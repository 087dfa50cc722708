"""Fix dispatch: one handler per FixStrategy.

Only ``restart`` mutates anything (the work item's enabled flag). Code
patches and config adjustments are recorded as recommendations and never
applied, so they count as failed fixes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from skillheal.config import RESTART_PAUSE_SECONDS
from skillheal.healing.models import (
    Diagnosis,
    ErrorContext,
    FailurePattern,
    FixResult,
    FixStrategy,
    HealingAction,
)

logger = logging.getLogger(__name__)

# known_fix value meaning "restart the work item"
RESTART_FIX = "restart"


class FixDispatcher:
    """Applies the fix a diagnosis asks for.

    Example:
        dispatcher = FixDispatcher(db)
        result = await dispatcher.apply(context, diagnosis)
        if result.success:
            # schedule a retry

    """

    HANDLERS: dict[FixStrategy, str] = {
        FixStrategy.RESTART: "_restart",
        FixStrategy.PATCH_CODE: "_recommend_patch",
        FixStrategy.ADJUST_CONFIG: "_recommend_config",
        FixStrategy.RETRY: "_retry",
        FixStrategy.ESCALATE: "_escalate",
    }

    def __init__(
        self,
        store: Any,
        restart_pause: float = RESTART_PAUSE_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize dispatcher.

        Args:
            store: Work-item store (HealingDB-compatible)
            restart_pause: Seconds between disable and re-enable on restart
            sleep: Awaitable sleep, replaceable in tests

        """
        self.store = store
        self.restart_pause = restart_pause
        self.sleep = sleep

    async def apply(self, context: ErrorContext, diagnosis: Diagnosis) -> FixResult:
        """Run the handler for diagnosis.fix_strategy."""
        handler = getattr(self, self.HANDLERS[diagnosis.fix_strategy])
        result = await handler(context, diagnosis)
        logger.info(
            "Fix %s for %s: %s",
            diagnosis.fix_strategy.value, context.item_id, "ok" if result.success else result.message,
        )
        return result

    async def apply_known_fix(self, context: ErrorContext, pattern: FailurePattern) -> FixResult:
        """Reapply a fix that was confirmed for this failure pattern before."""
        if pattern.known_fix == RESTART_FIX:
            result = await self._restart(context, None)
            result.action = HealingAction.KNOWN_FIX
            return result
        return FixResult(
            success=True,
            action=HealingAction.KNOWN_FIX,
            message=f"Known fix applied: {pattern.known_fix}",
            remediation=pattern.known_fix,
        )

    async def _restart(self, context: ErrorContext, diagnosis: Diagnosis | None) -> FixResult:
        schedule_id = context.schedule_id
        if not await self.store.set_work_item_enabled(schedule_id, False):
            return FixResult(False, HealingAction.RESTART, f"Work item {schedule_id} not found")

        await self.sleep(self.restart_pause)

        if not await self.store.set_work_item_enabled(schedule_id, True, status="idle"):
            return FixResult(False, HealingAction.RESTART, f"Work item {schedule_id} could not be re-enabled")

        logger.info("Restarted work item %s (%s)", schedule_id, context.item_id)
        return FixResult(True, HealingAction.RESTART, "Work item restarted", remediation=RESTART_FIX)

    async def _recommend_patch(self, context: ErrorContext, diagnosis: Diagnosis) -> FixResult:
        logger.warning("Code patch recommended for %s (not applied): %s", context.item_id, diagnosis.suggested_fix)
        return FixResult(
            False,
            HealingAction.RECOMMEND_PATCH,
            "Code patch recommended, not applied",
            remediation=diagnosis.suggested_fix,
        )

    async def _recommend_config(self, context: ErrorContext, diagnosis: Diagnosis) -> FixResult:
        logger.warning("Config change recommended for %s (not applied): %s", context.item_id, diagnosis.suggested_fix)
        return FixResult(
            False,
            HealingAction.RECOMMEND_CONFIG,
            "Configuration change recommended, not applied",
            remediation=diagnosis.suggested_fix,
        )

    async def _retry(self, context: ErrorContext, diagnosis: Diagnosis) -> FixResult:
        return FixResult(True, HealingAction.RETRY, "No fix needed, retrying")

    async def _escalate(self, context: ErrorContext, diagnosis: Diagnosis) -> FixResult:
        return FixResult(False, HealingAction.ESCALATE, "Requires manual intervention")


_missing = [s.value for s in FixStrategy if s not in FixDispatcher.HANDLERS]
if _missing:
    raise RuntimeError(f"FixDispatcher has no handler for: {', '.join(_missing)}")
