"""Data types shared by the healing engine."""

from __future__ import annotations

import math
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class StoreUnavailable(Exception):
    """The backing store cannot be reached or rejected the operation."""


class FixStrategy(str, Enum):
    """Remediation the diagnosis recommends. Closed set."""

    RESTART = "restart"  # disable, pause, re-enable the work item
    PATCH_CODE = "patch_code"  # recommendation only, never applied
    ADJUST_CONFIG = "adjust_config"  # recommendation only, never applied
    RETRY = "retry"  # nothing to do, just run again later
    ESCALATE = "escalate"  # needs a human


class HealingAction(str, Enum):
    """What the orchestrator ended up doing."""

    KNOWN_FIX = "known_fix"
    RESTART = "restart"
    RECOMMEND_PATCH = "recommend_patch"
    RECOMMEND_CONFIG = "recommend_config"
    RETRY = "retry"
    ESCALATE = "escalate"
    ABORT = "abort"  # store unavailable or internal failure


@dataclass(frozen=True)
class ErrorContext:
    """Everything known about one failed run of a work item.

    Attributes:
        schedule_id: Schedule (work item) that failed
        item_id: Skill the schedule runs
        error_message: Error text reported by the run
        error_stack: Stack trace, if captured
        attempt_number: 1-based number of this attempt
        timestamp: Failure time, epoch seconds
        source_snippet: Source code of the skill, if available
        environment: Free-form environment description

    """

    schedule_id: int
    item_id: str
    error_message: str
    error_stack: str | None = None
    attempt_number: int = 1
    timestamp: float = field(default_factory=time.time)
    source_snippet: str | None = None
    environment: dict[str, Any] | None = None


@dataclass
class Diagnosis:
    """Parsed root-cause analysis."""

    root_cause: str = "Unknown error"
    fix_strategy: FixStrategy = FixStrategy.ESCALATE
    confidence: float = 0.5
    suggested_fix: str | None = None
    explanation: str = "Unable to diagnose"
    requires_manual_intervention: bool = True

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["fix_strategy"] = self.fix_strategy.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Diagnosis":
        """Build from a dict, defaulting each missing or invalid field."""
        defaults = cls()

        root_cause = data.get("root_cause")
        if not isinstance(root_cause, str) or not root_cause.strip():
            root_cause = defaults.root_cause

        try:
            strategy = FixStrategy(str(data.get("fix_strategy", "")).strip().lower())
        except ValueError:
            strategy = defaults.fix_strategy

        confidence = data.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)) or not math.isfinite(confidence):
            confidence = defaults.confidence
        confidence = min(max(float(confidence), 0.0), 1.0)

        suggested_fix = data.get("suggested_fix")
        if not isinstance(suggested_fix, str) or not suggested_fix.strip():
            suggested_fix = None

        explanation = data.get("explanation")
        if not isinstance(explanation, str) or not explanation.strip():
            explanation = defaults.explanation

        manual = data.get("requires_manual_intervention")
        if not isinstance(manual, bool):
            manual = defaults.requires_manual_intervention

        return cls(
            root_cause=root_cause,
            fix_strategy=strategy,
            confidence=confidence,
            suggested_fix=suggested_fix,
            explanation=explanation,
            requires_manual_intervention=manual,
        )


@dataclass
class FailurePattern:
    """Recurring failure keyed by fingerprint."""

    fingerprint: str
    signature: str
    error_type: str
    occurrence_count: int
    last_occurrence: float
    created_at: float
    known_fix: str | None = None
    prevention_strategy: str | None = None
    id: int | None = None

    @classmethod
    def from_row(cls, row: Any) -> "FailurePattern":
        return cls(
            id=row["id"],
            fingerprint=row["fingerprint"],
            signature=row["signature"],
            error_type=row["error_type"],
            occurrence_count=row["occurrence_count"],
            last_occurrence=row["last_occurrence"],
            created_at=row["created_at"],
            known_fix=row["known_fix"],
            prevention_strategy=row["prevention_strategy"],
        )


@dataclass
class FixResult:
    """Outcome of dispatching one fix strategy."""

    success: bool
    action: HealingAction
    message: str
    # What to store as known fix if the fix is later confirmed
    remediation: str | None = None


@dataclass
class HealingOutcome:
    """Terminal result of one healing pass.

    Attributes:
        success: Whether the remediation was applied
        action: What was done
        diagnosis: Diagnosis the decision was based on
        retry_scheduled: A retry was written to the work item
        escalated: The failure was handed to a human
        message: Human-readable summary
        error_id: Recorded error entry, None if recording failed
        next_run_at: Scheduled retry time, epoch seconds

    """

    success: bool
    action: HealingAction
    diagnosis: Diagnosis | None = None
    retry_scheduled: bool = False
    escalated: bool = False
    message: str = ""
    error_id: int | None = None
    next_run_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "action": self.action.value,
            "diagnosis": self.diagnosis.to_dict() if self.diagnosis else None,
            "retry_scheduled": self.retry_scheduled,
            "escalated": self.escalated,
            "message": self.message,
            "error_id": self.error_id,
            "next_run_at": self.next_run_at,
        }
