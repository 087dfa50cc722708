"""Fallback chain selection per routing policy."""

from __future__ import annotations

import logging
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from skillheal.routing.catalog import ModelCatalog

logger = logging.getLogger(__name__)

# Used when filtering leaves nothing to try
DEFAULT_MODEL = "venice/uncensored:free"


class RoutingPolicy(str, Enum):
    """Named preference ordering over models."""

    FREE_FIRST = "free-first"
    PAID_FIRST = "paid-first"
    UNCENSORED_ONLY = "uncensored-only"
    CENSORED_ONLY = "censored-only"

    @classmethod
    def parse(cls, value: "RoutingPolicy | str | None") -> "RoutingPolicy":
        """Coerce a policy name; unknown names fall back to free-first."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            logger.warning("Unknown routing policy %r, using %s", value, cls.FREE_FIRST.value)
            return cls.FREE_FIRST


FALLBACK_CHAINS: Mapping[RoutingPolicy, tuple[str, ...]] = MappingProxyType({
    RoutingPolicy.FREE_FIRST: (
        "venice/uncensored:free",
        "cognitivecomputations/dolphin-mistral-24b-venice-edition:free",
        "mimo-v2-flash",
        "trinity-large-preview",
        "meta-llama/llama-3.3-70b-instruct",
    ),
    RoutingPolicy.PAID_FIRST: (
        "cognitivecomputations/dolphin-3.0",
        "deepseek/deepseek-v3.2",
        "nous-hermes-3",
        "venice/uncensored:free",
    ),
    RoutingPolicy.UNCENSORED_ONLY: (
        "venice/uncensored:free",
        "cognitivecomputations/dolphin-mistral-24b-venice-edition:free",
        "cognitivecomputations/dolphin-3.0",
        "nous-hermes-3",
    ),
    RoutingPolicy.CENSORED_ONLY: (
        "mimo-v2-flash",
        "trinity-large-preview",
        "meta-llama/llama-3.3-70b-instruct",
        "moonshot/kimi-k2.5",
        "google/gemini-2.5-pro",
        "deepseek/deepseek-v3.2",
    ),
})


class FallbackChainSelector:
    """Produces the ordered candidate list for a routing policy.

    The base ordering comes from a static per-policy table. Models missing from
    the catalog and models whose censorship flag is excluded by the caller are
    dropped. The result is never empty: if nothing survives filtering the
    chain is just the default model.
    """

    def __init__(
        self,
        catalog: ModelCatalog,
        chains: Mapping[RoutingPolicy, tuple[str, ...]] = FALLBACK_CHAINS,
        default_model: str = DEFAULT_MODEL,
    ):
        self.catalog = catalog
        self.chains = chains
        self.default_model = default_model

    def _allowed(self, model_id: str, allow_uncensored: bool, allow_censored: bool) -> bool:
        model = self.catalog.describe(model_id)
        if model is None:
            return False
        if model.censored and not allow_censored:
            return False
        if not model.censored and not allow_uncensored:
            return False
        return True

    def select_chain(
        self,
        policy: RoutingPolicy | str = RoutingPolicy.FREE_FIRST,
        allow_uncensored: bool = True,
        allow_censored: bool = True,
    ) -> list[str]:
        """Return the filtered, ordered candidate model ids for policy."""
        policy = RoutingPolicy.parse(policy)
        base = self.chains.get(policy) or self.chains.get(RoutingPolicy.FREE_FIRST, ())
        chain = [
            model_id for model_id in base
            if self._allowed(model_id, allow_uncensored, allow_censored)
        ]
        if not chain:
            logger.warning(
                "No model in %s chain passes filters (uncensored=%s, censored=%s), using %s",
                policy.value, allow_uncensored, allow_censored, self.default_model,
            )
            return [self.default_model]
        return chain

    def select_model(
        self,
        policy: RoutingPolicy | str = RoutingPolicy.FREE_FIRST,
        allow_uncensored: bool = True,
        allow_censored: bool = True,
    ) -> str:
        """Return the first candidate select_chain would try."""
        return self.select_chain(policy, allow_uncensored, allow_censored)[0]
