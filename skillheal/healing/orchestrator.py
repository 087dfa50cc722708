"""Healing orchestrator: one pass from a failed run to a terminal outcome.

RECORD the failure, MATCH it against known patterns, DIAGNOSE when no
confirmed fix exists, apply the fix, then either SCHEDULE a backoff retry or
ESCALATE to a human. The entry point always returns a HealingOutcome.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from skillheal.config import BACKOFF_CAP_MINUTES
from skillheal.healing.classifier import ErrorClassifier
from skillheal.healing.diagnosis import DiagnosisEngine
from skillheal.healing.fingerprint import fingerprint
from skillheal.healing.models import (
    Diagnosis,
    ErrorContext,
    FixResult,
    FixStrategy,
    HealingAction,
    HealingOutcome,
    StoreUnavailable,
)
from skillheal.healing.notifier import LoggingNotifier, Notifier
from skillheal.healing.strategies import FixDispatcher

logger = logging.getLogger(__name__)

# Recorded fix attempts that are not remediations worth remembering
_NON_REMEDIATIONS = frozenset({HealingAction.RETRY.value, HealingAction.ESCALATE.value})


def compute_backoff_minutes(attempt_number: int, cap: int = BACKOFF_CAP_MINUTES) -> int:
    """Delay before the next run: 1, 2, 4, ... minutes, capped."""
    exponent = max(attempt_number, 1) - 1
    if exponent >= cap.bit_length():
        return cap
    return min(2 ** exponent, cap)


class HealingOrchestrator:
    """Drives the healing state machine for a failed work-item run.

    Example:
        orchestrator = HealingOrchestrator(db, engine)
        outcome = await orchestrator.heal_failed_item(context)
        if outcome.escalated:
            ...

    """

    def __init__(
        self,
        store: Any,
        engine: DiagnosisEngine,
        dispatcher: FixDispatcher | None = None,
        notifier: Notifier | None = None,
        classifier: ErrorClassifier | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize orchestrator.

        Args:
            store: Work-item, error log and pattern store (HealingDB-compatible)
            engine: Diagnosis engine
            dispatcher: Fix dispatcher (default: FixDispatcher(store))
            notifier: Escalation channel (default: LoggingNotifier())
            classifier: Error categorizer (default: the engine's)
            clock: Source of the current time, epoch seconds

        """
        self.store = store
        self.engine = engine
        self.dispatcher = dispatcher or FixDispatcher(store)
        self.notifier = notifier or LoggingNotifier()
        self.classifier = classifier or engine.classifier
        self.clock = clock

    async def heal_failed_item(self, context: ErrorContext) -> HealingOutcome:
        """Handle one failed run.

        Args:
            context: The failure

        Returns:
            HealingOutcome; store failures and unexpected errors become an
            escalated outcome instead of an exception

        """
        logger.info(
            "Healing %s (schedule %s, attempt %d): %.200s",
            context.item_id, context.schedule_id, context.attempt_number, context.error_message,
        )
        error_id: int | None = None
        try:
            classified = self.classifier.classify(context.error_message)
            error_id = await self.store.log_error(context, fingerprint(context.error_message), classified.category.value)

            pattern = await self.engine.match_pattern(
                context, error_type=classified.category.value, error_id=error_id,
            )
            if pattern is not None and pattern.known_fix:
                diagnosis = self.engine.known_fix_diagnosis(pattern)
                fix = await self.dispatcher.apply_known_fix(context, pattern)
                await self._record_fix(error_id, fix, diagnosis)
                return await self._retry_outcome(context, error_id, fix, diagnosis)

            diagnosis = await self._diagnose(context, classified)
            fix = await self.dispatcher.apply(context, diagnosis)
            await self._record_fix(error_id, fix, diagnosis)

            if fix.success or diagnosis.fix_strategy == FixStrategy.RETRY:
                return await self._retry_outcome(context, error_id, fix, diagnosis)

            if diagnosis.requires_manual_intervention:
                await self._escalate(context, error_id, diagnosis, diagnosis.explanation)
                return HealingOutcome(
                    success=False,
                    action=HealingAction.ESCALATE,
                    diagnosis=diagnosis,
                    escalated=True,
                    message=f"Issue escalated: {diagnosis.explanation}",
                    error_id=error_id,
                )

            outcome = await self._retry_outcome(context, error_id, fix, diagnosis)
            outcome.message = f"{fix.message}. Retry scheduled with exponential backoff"
            return outcome

        except StoreUnavailable as e:
            logger.error("Store unavailable while healing %s: %s", context.item_id, e)
            return await self._abort(context, error_id, f"Store unavailable: {e}")
        except Exception as e:
            logger.exception("Healing %s failed unexpectedly", context.item_id)
            return await self._abort(context, error_id, f"Healing failed: {type(e).__name__}: {e}")

    async def _diagnose(self, context: ErrorContext, classified) -> Diagnosis:
        try:
            return await self.engine.ask_model(context, classified)
        except StoreUnavailable:
            raise
        except Exception as e:
            logger.error("Diagnosis engine failed for %s: %s", context.item_id, e)
            return Diagnosis(
                root_cause="Diagnosis failed",
                fix_strategy=FixStrategy.ESCALATE,
                confidence=0.0,
                explanation=f"Could not diagnose error: {e}",
                requires_manual_intervention=True,
            )

    async def _record_fix(self, error_id: int, fix: FixResult, diagnosis: Diagnosis) -> None:
        await self.store.record_fix_attempt(error_id, fix.remediation or fix.action.value, diagnosis)

    async def schedule_retry(self, context: ErrorContext) -> float | None:
        """Write the backoff-delayed next run to the work item.

        Returns:
            next_run_at, or None if the work item does not exist

        """
        delay = compute_backoff_minutes(context.attempt_number)
        next_run_at = self.clock() + delay * 60
        if not await self.store.schedule_next_run(context.schedule_id, next_run_at):
            logger.warning("Cannot schedule retry: work item %s not found", context.schedule_id)
            return None
        logger.info("Retry of %s scheduled in %d min", context.item_id, delay)
        return next_run_at

    async def _retry_outcome(
        self,
        context: ErrorContext,
        error_id: int,
        fix: FixResult,
        diagnosis: Diagnosis,
    ) -> HealingOutcome:
        next_run_at = await self.schedule_retry(context)
        scheduled = next_run_at is not None
        message = f"Fix applied: {fix.message}. Retry scheduled." if scheduled else f"{fix.message}. Work item missing, no retry."
        return HealingOutcome(
            success=fix.success,
            action=fix.action,
            diagnosis=diagnosis,
            retry_scheduled=scheduled,
            message=message,
            error_id=error_id,
            next_run_at=next_run_at,
        )

    async def _escalate(self, context: ErrorContext, error_id: int | None, diagnosis: Diagnosis, reason: str) -> None:
        logger.warning("Escalating %s: %s", context.item_id, reason)
        if error_id is not None:
            await self.store.mark_escalated(error_id, reason, diagnosis)
        try:
            await self.notifier.notify_escalation(context, diagnosis, reason)
        except Exception as e:
            logger.error("Escalation notice for %s not delivered: %s", context.item_id, e)

    async def _abort(self, context: ErrorContext, error_id: int | None, reason: str) -> HealingOutcome:
        diagnosis = Diagnosis(
            root_cause="Healing aborted",
            fix_strategy=FixStrategy.ESCALATE,
            confidence=0.0,
            explanation=reason,
            requires_manual_intervention=True,
        )
        if error_id is not None:
            try:
                await self.store.mark_escalated(error_id, reason, diagnosis)
            except Exception as e:
                logger.error("Could not flag error %s as escalated: %s", error_id, e)
        try:
            await self.notifier.notify_escalation(context, diagnosis, reason)
        except Exception as e:
            logger.error("Escalation notice for %s not delivered: %s", context.item_id, e)
        return HealingOutcome(
            success=False,
            action=HealingAction.ABORT,
            diagnosis=diagnosis,
            escalated=True,
            message=reason,
            error_id=error_id,
        )

    async def confirm_fix(self, error_id: int, succeeded: bool) -> bool:
        """Report whether the retried run after a fix succeeded.

        A confirmed remediation becomes the known fix of the error's failure
        pattern, if one exists. A failed confirmation never touches known fixes.

        Args:
            error_id: Error entry returned in HealingOutcome.error_id
            succeeded: Whether the retried run succeeded

        Returns:
            True if the error entry was found and updated

        """
        try:
            entry = await self.store.get_error(error_id)
            if entry is None:
                logger.warning("confirm_fix: error %s not found", error_id)
                return False
            await self.store.set_fix_successful(error_id, succeeded)

            remediation = entry.get("fix_attempted")
            if succeeded and remediation and remediation not in _NON_REMEDIATIONS:
                if await self.store.set_known_fix(entry["fingerprint"], remediation):
                    logger.info("Known fix recorded for pattern %s: %s", entry["fingerprint"][:12], remediation)
            return True
        except StoreUnavailable as e:
            logger.error("confirm_fix(%s) failed: %s", error_id, e)
            return False
