"""Tiered LLM call routing.

Routes a chat request to a model under a routing policy, falling back
through an ordered chain of models until one succeeds:
- Model catalog (tiers, censorship flag, per-token prices)
- Fallback chain selection per policy
- Single call execution with a hard timeout
- Sequential fallback loop with cost accounting

Architecture:
    ModelCatalog → describes models and prices calls
    FallbackChainSelector → ordered candidates for a policy
    CallExecutor → one HTTP call, outcome as CallAttempt
    TieredRouter → walks the chain, accumulates cost
"""

from skillheal.routing.catalog import ModelCatalog, ModelDescriptor, ModelTier
from skillheal.routing.chains import DEFAULT_MODEL, FallbackChainSelector, RoutingPolicy
from skillheal.routing.executor import CallAttempt, CallExecutor, CallOptions, FailureReason
from skillheal.routing.router import ChainExhausted, RoutingResult, TieredRouter

__all__ = [
    "ModelCatalog",
    "ModelDescriptor",
    "ModelTier",
    "DEFAULT_MODEL",
    "FallbackChainSelector",
    "RoutingPolicy",
    "CallAttempt",
    "CallExecutor",
    "CallOptions",
    "FailureReason",
    "ChainExhausted",
    "RoutingResult",
    "TieredRouter",
]
