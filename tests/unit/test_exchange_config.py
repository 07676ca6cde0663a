"""
test_exchange_config.py - Unit tests for ExchangeConfig
"""

import logging
import pytest
from decimal import Decimal

from energy_exchange import (
    ExchangeConfig, ExchangeState, InMemoryStore, PutState,
    EXCHANGE_RATE_KEY, EXCHANGE_BALANCE_KEY, METERS_TABLE,
    ValidationError, PersistenceError,
)

from tests.fake_store import NoTableStore


class TestInitialize:

    def test_initialize_sets_rate_and_zero_pool(self, store):
        config = ExchangeConfig(store)
        state = config.initialize(Decimal("0.1"))
        assert state == ExchangeState(Decimal("0.1"), Decimal("0"))
        assert store.get_state(EXCHANGE_RATE_KEY) == "0.100000"
        assert store.get_state(EXCHANGE_BALANCE_KEY) == "0.000000"

    def test_initialize_creates_meter_table(self, store):
        ExchangeConfig(store).initialize(Decimal("0.1"))
        assert store.has_table(METERS_TABLE)

    def test_reinitialize_overwrites(self, store):
        config = ExchangeConfig(store)
        config.initialize(Decimal("0.1"))
        config.set_pool_balance(Decimal("55"))
        config.initialize(Decimal("0.2"))
        assert config.get_fee_rate() == Decimal("0.2")
        assert config.get_pool_balance() == Decimal("0")

    def test_reinitialize_keeps_accounts(self, market, store):
        meters, config, _ = market
        meters.enroll("m1", "Rooftop", 3)
        config.initialize(Decimal("0.05"))
        assert meters.exists("m1")

    def test_initialize_accepts_text(self, store):
        assert ExchangeConfig(store).initialize("0.25").fee_rate == Decimal("0.25")

    def test_initialize_rejects_non_finite(self, store):
        with pytest.raises(ValidationError):
            ExchangeConfig(store).initialize(Decimal("NaN"))
        assert store.get_state(EXCHANGE_RATE_KEY) is None

    def test_table_failure_leaves_state_unwritten(self):
        store = NoTableStore()
        with pytest.raises(PersistenceError, match="Meters"):
            ExchangeConfig(store).initialize(Decimal("0.1"))
        assert store.get_state(EXCHANGE_RATE_KEY) is None
        assert store.get_state(EXCHANGE_BALANCE_KEY) is None

    def test_initialize_rejects_oversized_rate(self, store):
        with pytest.raises(ValidationError, match="out of range"):
            ExchangeConfig(store).initialize(Decimal("1e60"))
        assert store.get_state(EXCHANGE_RATE_KEY) is None

    @pytest.mark.parametrize("rate", ["-0.5", "1.5"])
    def test_out_of_range_rate_accepted_with_warning(self, store, caplog, rate):
        with caplog.at_level(logging.WARNING, logger="energy_exchange.config"):
            state = ExchangeConfig(store).initialize(Decimal(rate))
        assert state.fee_rate == Decimal(rate)
        assert "outside [0, 1]" in caplog.text

    def test_rate_rounded_to_six_places(self, store):
        assert ExchangeConfig(store).initialize(Decimal("0.12345678")).fee_rate == Decimal("0.123457")


class TestReadsAndWrites:

    def test_set_pool_balance(self, config, store):
        config.set_pool_balance(Decimal("12.3"))
        assert config.get_pool_balance() == Decimal("12.3")
        assert store.get_state(EXCHANGE_BALANCE_KEY) == "12.300000"

    def test_load_state(self, config):
        config.set_pool_balance(Decimal("4"))
        assert config.load_state() == ExchangeState(Decimal("0.1"), Decimal("4"))

    def test_stage_does_not_write(self, config):
        writes = config.stage(ExchangeState(Decimal("0.3"), Decimal("9")))
        assert writes == [
            PutState(EXCHANGE_RATE_KEY, "0.300000"),
            PutState(EXCHANGE_BALANCE_KEY, "9.000000"),
        ]
        assert config.get_fee_rate() == Decimal("0.1")

    def test_uninitialized_reads_raise(self):
        config = ExchangeConfig(InMemoryStore())
        with pytest.raises(PersistenceError, match="exchange rate"):
            config.get_fee_rate()
        with pytest.raises(PersistenceError, match="exchange account balance"):
            config.get_pool_balance()

    def test_corrupt_value_raises(self, config, store):
        store.commit([PutState(EXCHANGE_BALANCE_KEY, "not-a-number")])
        with pytest.raises(PersistenceError, match="Invalid value"):
            config.get_pool_balance()
