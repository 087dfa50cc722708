"""Diagnosis engine: known-pattern lookup first, model-assisted analysis second."""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Callable

from skillheal.config import (
    KNOWN_FIX_CONFIDENCE,
    PATTERN_THRESHOLD,
    PATTERN_WINDOW_DAYS,
    SOURCE_SNIPPET_LIMIT,
)
from skillheal.healing.classifier import ClassifiedFailure, ErrorClassifier
from skillheal.healing.fingerprint import fingerprint, signature
from skillheal.healing.models import Diagnosis, ErrorContext, FailurePattern, FixStrategy
from skillheal.routing.chains import RoutingPolicy
from skillheal.routing.router import ChainExhausted, TieredRouter

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a debugging expert. Respond only with valid JSON."

DIAGNOSIS_POLICY = RoutingPolicy.UNCENSORED_ONLY

_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")

# Models often answer in camelCase
_KEY_ALIASES = {
    "rootCause": "root_cause",
    "fixStrategy": "fix_strategy",
    "suggestedFix": "suggested_fix",
    "requiresManualIntervention": "requires_manual_intervention",
}


class MalformedDiagnosis(Exception):
    """Model output is not a JSON object."""


def parse_diagnosis(content: str) -> Diagnosis:
    """Decode a model response into a Diagnosis.

    Tolerates markdown code fences and prose around the JSON object. Fields
    that are missing or invalid get their defaults individually.

    Args:
        content: Raw model output

    Returns:
        Diagnosis

    Raises:
        MalformedDiagnosis: no JSON object could be decoded

    """
    text = _FENCE.sub("", (content or "").strip()).strip()
    if not text.startswith("{"):
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise MalformedDiagnosis(f"No JSON object in response: {text[:200]!r}")
        text = text[start:end + 1]

    try:
        data = json.loads(text)
    except ValueError as e:
        raise MalformedDiagnosis(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedDiagnosis(f"Expected a JSON object, got {type(data).__name__}")

    normalized = {_KEY_ALIASES.get(key, key): value for key, value in data.items()}
    return Diagnosis.from_dict(normalized)


def build_prompt(context: ErrorContext, classified: ClassifiedFailure | None = None) -> list[dict[str, str]]:
    """Build the chat messages asking a model to diagnose the failure."""
    lines = [
        "You are a debugging expert. Analyze this error and provide a diagnosis.",
        "",
        "ERROR CONTEXT:",
        f"- Skill ID: {context.item_id}",
        f"- Schedule ID: {context.schedule_id}",
        f"- Attempt Number: {context.attempt_number}",
    ]
    if classified is not None:
        lines.append(f"- Error Category: {classified.category.value} ({classified.hint})")
    lines.append(f"- Error Message: {context.error_message}")
    if context.error_stack:
        lines.append(f"- Stack Trace: {context.error_stack}")
    if context.source_snippet:
        lines.append(f"- Skill Code: {context.source_snippet[:SOURCE_SNIPPET_LIMIT]}")
    if context.environment:
        lines.append(f"- Environment: {json.dumps(context.environment, default=str, sort_keys=True)}")

    strategies = "|".join(s.value for s in FixStrategy)
    lines += [
        "",
        "Provide a JSON response with:",
        "{",
        '  "root_cause": "brief description of the root cause",',
        f'  "fix_strategy": "{strategies}",',
        '  "confidence": 0.0-1.0,',
        '  "suggested_fix": "specific fix to apply (if applicable)",',
        '  "explanation": "detailed explanation for the user",',
        '  "requires_manual_intervention": true|false',
        "}",
    ]
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": "\n".join(lines)},
    ]


class DiagnosisEngine:
    """Produces a Diagnosis for a failed run.

    Checks the failure pattern store first; a pattern with a confirmed fix
    short-circuits the model call. Otherwise the error is sent through the
    tiered router under the uncensored-only policy.

    Example:
        engine = DiagnosisEngine(router, db)
        diagnosis = await engine.diagnose(context)
        if diagnosis.fix_strategy == FixStrategy.RESTART:
            ...

    """

    def __init__(
        self,
        router: TieredRouter,
        store: Any,
        classifier: ErrorClassifier | None = None,
        clock: Callable[[], float] = time.time,
        window_days: int = PATTERN_WINDOW_DAYS,
        threshold: int = PATTERN_THRESHOLD,
    ):
        """Initialize engine.

        Args:
            router: Router used for the model call
            store: Failure pattern and error log store (HealingDB-compatible)
            classifier: Error categorizer (default: ErrorClassifier())
            clock: Source of the current time, epoch seconds
            window_days: Look-back window for counting recurrences
            threshold: Occurrences within the window that create a pattern

        """
        self.router = router
        self.store = store
        self.classifier = classifier or ErrorClassifier()
        self.clock = clock
        self.window_days = window_days
        self.threshold = threshold

    async def match_pattern(
        self,
        context: ErrorContext,
        recorded: bool = False,
        error_type: str | None = None,
        error_id: int | None = None,
    ) -> FailurePattern | None:
        """Track this occurrence against the failure pattern store.

        An existing pattern gains one occurrence. Without one, a pattern is
        created once the fingerprint has been seen ``threshold`` times within
        the window.

        Args:
            context: The failure
            recorded: Whether this occurrence is already in the error log
            error_type: Category stored on a newly created pattern
            error_id: Error entry of this occurrence (implies recorded)

        Returns:
            The pattern after the update, or None if the failure is not recurring

        """
        now = self.clock()
        if error_type is None:
            error_type = self.classifier.classify(context.error_message).category.value

        return await self.store.track_occurrence(
            fingerprint(context.error_message),
            signature(context.error_message),
            error_type,
            since=now - self.window_days * 86400,
            threshold=self.threshold,
            error_id=error_id,
            count_current=not recorded and error_id is None,
            now=now,
        )

    def known_fix_diagnosis(self, pattern: FailurePattern) -> Diagnosis:
        return Diagnosis(
            root_cause=f"Known failure pattern ({pattern.occurrence_count} occurrences)",
            fix_strategy=FixStrategy.PATCH_CODE,
            confidence=KNOWN_FIX_CONFIDENCE,
            suggested_fix=pattern.known_fix,
            explanation=f"Applying known fix: {pattern.known_fix}",
            requires_manual_intervention=False,
        )

    async def diagnose(self, context: ErrorContext, recorded: bool = False) -> Diagnosis:
        """Diagnose a failure.

        Args:
            context: The failure
            recorded: Whether this occurrence is already in the error log

        Returns:
            Diagnosis; never raises for model or parsing failures

        """
        classified = self.classifier.classify(context.error_message)
        pattern = await self.match_pattern(context, recorded=recorded, error_type=classified.category.value)
        if pattern is not None and pattern.known_fix:
            logger.info("Known fix found for %s", context.item_id)
            return self.known_fix_diagnosis(pattern)
        return await self.ask_model(context, classified)

    async def ask_model(self, context: ErrorContext, classified: ClassifiedFailure | None = None) -> Diagnosis:
        """Ask the routed model for a diagnosis, skipping the pattern store."""
        if classified is None:
            classified = self.classifier.classify(context.error_message)
        messages = build_prompt(context, classified)

        try:
            result = await self.router.route(messages, policy=DIAGNOSIS_POLICY)
        except ChainExhausted as e:
            logger.error("Diagnosis failed for %s: %s", context.item_id, e)
            return Diagnosis(
                root_cause="Diagnosis failed",
                fix_strategy=FixStrategy.ESCALATE,
                confidence=0.0,
                explanation=f"Could not diagnose error: {e}",
                requires_manual_intervention=True,
            )

        try:
            diagnosis = parse_diagnosis(result.content or "")
        except MalformedDiagnosis as e:
            logger.warning("Unparsable diagnosis from %s: %s", result.model_used, e)
            diagnosis = Diagnosis()

        logger.info(
            "Diagnosed %s via %s: %s (confidence %.2f)",
            context.item_id, result.model_used, diagnosis.fix_strategy.value, diagnosis.confidence,
        )
        return diagnosis
