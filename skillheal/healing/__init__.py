"""Self-healing engine for failed work-item runs.

This module provides failure recovery with:
- Error categorization and fingerprinting
- Recurring failure detection (patterns with confirmed fixes)
- Model-assisted diagnosis through the tiered router
- Fix dispatch, backoff retries and escalation

Architecture:
    ErrorClassifier → categorizes the error message
    DiagnosisEngine → known fix or routed model diagnosis
    FixDispatcher → applies the chosen FixStrategy
    HealingOrchestrator → records, decides, schedules or escalates
"""

from skillheal.healing.classifier import ClassifiedFailure, ErrorCategory, ErrorClassifier
from skillheal.healing.diagnosis import DiagnosisEngine, MalformedDiagnosis, parse_diagnosis
from skillheal.healing.fingerprint import fingerprint
from skillheal.healing.models import (
    Diagnosis,
    ErrorContext,
    FailurePattern,
    FixStrategy,
    HealingAction,
    HealingOutcome,
    StoreUnavailable,
)
from skillheal.healing.notifier import LoggingNotifier, Notifier, TelegramNotifier
from skillheal.healing.orchestrator import HealingOrchestrator, compute_backoff_minutes
from skillheal.healing.strategies import FixDispatcher

__all__ = [
    "ClassifiedFailure",
    "ErrorCategory",
    "ErrorClassifier",
    "DiagnosisEngine",
    "MalformedDiagnosis",
    "parse_diagnosis",
    "fingerprint",
    "Diagnosis",
    "ErrorContext",
    "FailurePattern",
    "FixStrategy",
    "HealingAction",
    "HealingOutcome",
    "StoreUnavailable",
    "LoggingNotifier",
    "Notifier",
    "TelegramNotifier",
    "HealingOrchestrator",
    "compute_backoff_minutes",
    "FixDispatcher",
]
