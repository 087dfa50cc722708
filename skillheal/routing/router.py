"""Tiered router: walk a fallback chain until one model answers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from skillheal.config import LLM_MAX_ATTEMPTS
from skillheal.routing.catalog import ModelCatalog
from skillheal.routing.chains import FallbackChainSelector, RoutingPolicy
from skillheal.routing.executor import CallAttempt, CallExecutor, CallOptions, Message

logger = logging.getLogger(__name__)

CallRecorder = Callable[[CallAttempt], Awaitable[object]]


@dataclass
class RoutingResult:
    """Outcome of a routed call.

    Attributes:
        content: Text from the successful attempt, None if the chain was exhausted
        model_used: Model of the successful attempt (or the last one tried)
        total_cost: Sum of all attempt costs
        fallback_occurred: Whether more than the first candidate was involved
        attempts: Every attempt made, in order
        policy: Policy the chain was built from

    """

    content: str | None
    model_used: str | None
    total_cost: float = 0.0
    fallback_occurred: bool = False
    attempts: list[CallAttempt] = field(default_factory=list)
    policy: RoutingPolicy = RoutingPolicy.FREE_FIRST

    @property
    def succeeded(self) -> bool:
        return self.content is not None

    @property
    def error(self) -> str | None:
        """Failure label of the last attempt when exhausted."""
        if self.succeeded or not self.attempts:
            return None
        last = self.attempts[-1]
        return f"{last.outcome}: {last.error}" if last.error else last.outcome


class ChainExhausted(Exception):
    """Every candidate in the (truncated) chain failed."""

    def __init__(self, result: RoutingResult):
        self.result = result
        tried = ", ".join(a.model_id for a in result.attempts) or "none"
        super().__init__(f"All LLM models failed (tried: {tried}); last error: {result.error}")


class TieredRouter:
    """Drives the executor across the selector's chain.

    Attempts are strictly sequential: candidate N+1 is only called once
    candidate N has failed, so a cheap early success short-circuits the rest.

    Example:
        router = TieredRouter(catalog, selector, executor)
        try:
            result = await router.route(messages, policy="paid-first")
        except ChainExhausted as e:
            print("all failed:", e.result.error)

    """

    def __init__(
        self,
        catalog: ModelCatalog,
        selector: FallbackChainSelector,
        executor: CallExecutor,
        call_recorder: CallRecorder | None = None,
        default_max_attempts: int = LLM_MAX_ATTEMPTS,
    ):
        self.catalog = catalog
        self.selector = selector
        self.executor = executor
        self.call_recorder = call_recorder
        self.default_max_attempts = default_max_attempts

    async def route(
        self,
        messages: list[Message],
        policy: RoutingPolicy | str = RoutingPolicy.FREE_FIRST,
        allow_uncensored: bool = True,
        allow_censored: bool = True,
        max_attempts: int | None = None,
        options: CallOptions | None = None,
    ) -> RoutingResult:
        """Route a call through the fallback chain.

        Args:
            messages: Chat messages to send
            policy: Routing policy naming the chain
            allow_uncensored: Permit uncensored models
            allow_censored: Permit censored models
            max_attempts: Truncate the chain to this many candidates
                (default: min(default_max_attempts, chain length))
            options: Sampling parameters forwarded to every attempt

        Returns:
            RoutingResult of the first successful attempt

        Raises:
            ChainExhausted: every candidate failed; carries the RoutingResult

        """
        policy = RoutingPolicy.parse(policy)
        chain = self.selector.select_chain(policy, allow_uncensored, allow_censored)
        limit = max_attempts if max_attempts is not None else self.default_max_attempts
        candidates = chain[:max(1, min(limit, len(chain)))]

        result = RoutingResult(content=None, model_used=None, policy=policy)

        for model_id in candidates:
            if model_id not in self.catalog:
                logger.warning("Skipping %s: not in model catalog", model_id)
                continue

            attempt = await self.executor.execute(model_id, messages, options)
            result.attempts.append(attempt)
            result.total_cost += attempt.cost
            result.model_used = model_id
            await self._record(attempt)

            if attempt.succeeded:
                result.content = attempt.content
                result.fallback_occurred = len(result.attempts) > 1
                if result.fallback_occurred:
                    logger.warning(
                        "Fell back to %s after %d failed attempt(s)",
                        model_id, len(result.attempts) - 1,
                    )
                return result

        result.fallback_occurred = len(result.attempts) > 1
        logger.error(
            "Fallback chain %s exhausted after %d attempt(s): %s",
            policy.value, len(result.attempts), result.error,
        )
        raise ChainExhausted(result)

    async def _record(self, attempt: CallAttempt) -> None:
        if self.call_recorder is None:
            return
        try:
            await self.call_recorder(attempt)
        except Exception as e:
            logger.warning("Could not record call to %s: %s", attempt.model_id, e)
