"""Model catalog: the invocable model endpoints and their cost models.

Each model carries a capability tier (free/paid x censored/uncensored) and
per-million-token prices for input and output. The catalog is built once at
process start and shared read-only by the chain selector and the executor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping

import yaml

logger = logging.getLogger(__name__)


class ModelTier(str, Enum):
    """Capability tier of a model."""

    FREE_UNCENSORED = "free-uncensored"
    PAID_UNCENSORED = "paid-uncensored"
    FREE_CENSORED = "free-censored"
    PAID_CENSORED = "paid-censored"


@dataclass(frozen=True)
class ModelDescriptor:
    """A single invocable model.

    Attributes:
        model_id: Provider model identifier (e.g. "venice/uncensored:free")
        tier: Capability tier
        censored: Whether the model applies content-safety filtering
        cost_per_input_unit: Price per 1,000,000 prompt tokens
        cost_per_output_unit: Price per 1,000,000 completion tokens
        context_window: Maximum context in tokens, if known
        description: Free-text note

    """

    model_id: str
    tier: ModelTier
    censored: bool
    cost_per_input_unit: float = 0.0
    cost_per_output_unit: float = 0.0
    context_window: int | None = None
    description: str | None = None

    def cost(self, input_tokens: int, output_tokens: int) -> float:
        """Compute the price of a call with the given token usage."""
        input_cost = (input_tokens / 1_000_000) * self.cost_per_input_unit
        output_cost = (output_tokens / 1_000_000) * self.cost_per_output_unit
        return input_cost + output_cost

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ModelDescriptor":
        """Create from a catalog entry (YAML/JSON shaped)."""
        return cls(
            model_id=str(data["model_id"]),
            tier=ModelTier(data["tier"]),
            censored=bool(data["censored"]),
            cost_per_input_unit=float(data.get("cost_per_input_unit", 0.0)),
            cost_per_output_unit=float(data.get("cost_per_output_unit", 0.0)),
            context_window=data.get("context_window"),
            description=data.get("description"),
        )


def _model(model_id: str, tier: ModelTier, cost_in: float = 0.0, cost_out: float = 0.0) -> ModelDescriptor:
    censored = tier in (ModelTier.FREE_CENSORED, ModelTier.PAID_CENSORED)
    return ModelDescriptor(model_id, tier, censored, cost_in, cost_out)


# OpenRouter models available to skills
DEFAULT_MODELS: tuple[ModelDescriptor, ...] = (
    _model("venice/uncensored:free", ModelTier.FREE_UNCENSORED),
    _model("cognitivecomputations/dolphin-mistral-24b-venice-edition:free", ModelTier.FREE_UNCENSORED),
    _model("cognitivecomputations/dolphin-3.0", ModelTier.PAID_UNCENSORED, 0.0005, 0.0015),
    _model("venice/venice-ai-pro", ModelTier.PAID_UNCENSORED, 0.0008, 0.0024),
    _model("nous-hermes-3", ModelTier.PAID_UNCENSORED, 0.0006, 0.0018),
    _model("mimo-v2-flash", ModelTier.FREE_CENSORED),
    _model("trinity-large-preview", ModelTier.FREE_CENSORED),
    _model("meta-llama/llama-3.3-70b-instruct", ModelTier.FREE_CENSORED),
    _model("moonshot/kimi-k2.5", ModelTier.PAID_CENSORED, 0.001, 0.003),
    _model("google/gemini-2.5-pro", ModelTier.PAID_CENSORED, 0.0015, 0.006),
    _model("deepseek/deepseek-v3.2", ModelTier.PAID_CENSORED, 0.0002, 0.0006),
)


class ModelCatalog:
    """Read-only registry of model descriptors keyed by model id.

    Example:
        catalog = ModelCatalog.default()
        model = catalog.describe("nous-hermes-3")
        if model is not None:
            print(model.tier, model.cost(1200, 300))

    """

    def __init__(self, models: Iterable[ModelDescriptor]):
        entries: dict[str, ModelDescriptor] = {}
        for model in models:
            if model.model_id in entries:
                logger.warning("Duplicate catalog entry %s, keeping the first", model.model_id)
                continue
            entries[model.model_id] = model
        self._models: Mapping[str, ModelDescriptor] = MappingProxyType(entries)

    @classmethod
    def default(cls) -> "ModelCatalog":
        return cls(DEFAULT_MODELS)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "ModelCatalog":
        """Load a catalog from a YAML file.

        The file holds a top-level ``models`` list whose entries use the
        ModelDescriptor field names::

            models:
              - model_id: nous-hermes-3
                tier: paid-uncensored
                censored: false
                cost_per_input_unit: 0.0006
                cost_per_output_unit: 0.0018

        """
        content = Path(path).read_text(encoding="utf-8")
        data = yaml.safe_load(content) or {}
        entries = data.get("models", []) if isinstance(data, dict) else []
        models = [ModelDescriptor.from_dict(entry) for entry in entries]
        logger.info("Loaded %d models from %s", len(models), path)
        return cls(models)

    def describe(self, model_id: str) -> ModelDescriptor | None:
        """Return the descriptor for model_id, or None if unknown."""
        return self._models.get(model_id)

    def cost_for(self, model_id: str, input_tokens: int, output_tokens: int) -> float:
        """Price of a call against model_id (0 for unknown models)."""
        model = self._models.get(model_id)
        if model is None:
            return 0.0
        return model.cost(input_tokens, output_tokens)

    def by_tier(self, tier: ModelTier) -> list[ModelDescriptor]:
        return [m for m in self._models.values() if m.tier == tier]

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models

    def __iter__(self) -> Iterator[ModelDescriptor]:
        return iter(self._models.values())

    def __len__(self) -> int:
        return len(self._models)
