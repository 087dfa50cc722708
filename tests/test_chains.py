"""Tests for fallback chain selection."""

import itertools

import pytest

from skillheal.routing.catalog import ModelCatalog, ModelDescriptor, ModelTier
from skillheal.routing.chains import DEFAULT_MODEL, FALLBACK_CHAINS, FallbackChainSelector, RoutingPolicy


@pytest.fixture
def selector(catalog):
    return FallbackChainSelector(catalog)


@pytest.mark.parametrize(
    "policy,allow_uncensored,allow_censored",
    list(itertools.product(list(RoutingPolicy), [True, False], [True, False])),
)
def test_chain_never_empty(selector, policy, allow_uncensored, allow_censored):
    chain = selector.select_chain(policy, allow_uncensored, allow_censored)
    assert len(chain) >= 1


def test_free_first_order(selector):
    assert selector.select_chain(RoutingPolicy.FREE_FIRST) == list(FALLBACK_CHAINS[RoutingPolicy.FREE_FIRST])


def test_select_model_is_chain_head(selector):
    for policy in RoutingPolicy:
        assert selector.select_model(policy) == selector.select_chain(policy)[0]


def test_paid_first_head(selector):
    assert selector.select_model("paid-first") == "cognitivecomputations/dolphin-3.0"


def test_censored_only_head(selector):
    assert selector.select_model(RoutingPolicy.CENSORED_ONLY) == "mimo-v2-flash"


def test_filter_removes_uncensored(selector, catalog):
    chain = selector.select_chain(RoutingPolicy.FREE_FIRST, allow_uncensored=False)
    assert chain == ["mimo-v2-flash", "trinity-large-preview", "meta-llama/llama-3.3-70b-instruct"]
    assert all(catalog.describe(m).censored for m in chain)


def test_filter_removes_censored(selector, catalog):
    chain = selector.select_chain(RoutingPolicy.PAID_FIRST, allow_censored=False)
    assert "deepseek/deepseek-v3.2" not in chain
    assert all(not catalog.describe(m).censored for m in chain)


def test_empty_chain_degrades_to_default(selector):
    """uncensored-only with uncensored models disallowed leaves nothing."""
    chain = selector.select_chain(RoutingPolicy.UNCENSORED_ONLY, allow_uncensored=False)
    assert chain == [DEFAULT_MODEL]


def test_both_flags_off_degrades_to_default(selector):
    assert selector.select_model(RoutingPolicy.FREE_FIRST, False, False) == DEFAULT_MODEL


def test_unknown_policy_falls_back_to_free_first(selector):
    assert selector.select_chain("cheapest-possible") == selector.select_chain(RoutingPolicy.FREE_FIRST)


def test_models_missing_from_catalog_are_dropped():
    catalog = ModelCatalog([
        ModelDescriptor("nous-hermes-3", ModelTier.PAID_UNCENSORED, False, 0.0006, 0.0018),
    ])
    selector = FallbackChainSelector(catalog)
    assert selector.select_chain(RoutingPolicy.UNCENSORED_ONLY) == ["nous-hermes-3"]
