"""
conftest.py - Shared pytest fixtures for energy exchange tests

Provides common fixtures used across unit, functional and conformance tests:
- Stores and initialized markets
- The worked example market (one buyer, two sellers)
- A deployed contract
"""

import pytest

from energy_exchange import InMemoryStore, QueryFacade, EnergyTradingContract

from tests.market_helpers import make_market, seed_accounts


@pytest.fixture
def store():
    """Fresh store with nothing in it."""
    return InMemoryStore("test")


@pytest.fixture
def market(store):
    """Market initialized at a 10% fee, no accounts yet."""
    return make_market(store)


@pytest.fixture
def meters(market):
    return market[0]


@pytest.fixture
def config(market):
    return market[1]


@pytest.fixture
def engine(market):
    return market[2]


@pytest.fixture
def queries(meters, config):
    return QueryFacade(meters, config)


@pytest.fixture
def example_market(market):
    """Buyer A (-100 kWh @ 5), seller B (150 kWh @ 3), seller C (50 kWh @ 4), 10% fee."""
    meters, config, engine = market
    seed_accounts(meters, [("A", -100, 5), ("B", 150, 3), ("C", 50, 4)])
    return market


@pytest.fixture
def contract():
    """Contract deployed at a 10% exchange rate."""
    c = EnergyTradingContract(InMemoryStore("contract"))
    c.init(["0.10"])
    return c
