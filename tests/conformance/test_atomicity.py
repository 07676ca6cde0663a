"""
Atomicity Conformance Tests

INVARIANT: A settlement is all-or-nothing.

    ∀ settlement S:
        S commits ⟹ every changed account and the pool balance are written
        S fails ⟹ the store is exactly as it was before S started

Every write of a cycle goes to the store in a single batch, so a failure on
any write (including the last one) discards the whole cycle.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from decimal import Decimal

from energy_exchange import PersistenceError, StaleRecordError

from tests.fake_store import FailingStore
from tests.market_helpers import make_market, seed_account, seed_accounts


def _failing_market(specs):
    store = FailingStore()
    meters, config, engine = make_market(store)
    seed_accounts(meters, specs)
    return store, meters, config, engine


class TestAtomicityProperties:
    """Property-based atomicity tests."""

    @given(
        st.lists(st.tuples(st.integers(-100, 100), st.integers(1, 6)), min_size=2, max_size=8),
        st.integers(min_value=0, max_value=30),
    )
    @settings(max_examples=60, deadline=None)
    def test_failure_anywhere_leaves_store_unchanged(self, specs, fail_at):
        """
        PROPERTY: Whichever write of the batch fails, nothing is applied.
        """
        store, meters, config, engine = _failing_market(
            [(f"m{i}", kwh, rate) for i, (kwh, rate) in enumerate(specs)]
        )
        before = store.snapshot()
        commits = store.commit_count

        store.fail_on_write(fail_at)
        try:
            result = engine.settle()
        except PersistenceError:
            assert store.snapshot() == before
            assert store.commit_count == commits
            assert engine.settlement_log == []
        else:
            # Batch shorter than fail_at, or nothing to settle
            writes = len(result.accounts) + 2 if not result.is_empty() else 0
            assert writes <= fail_at

    @given(st.integers(min_value=0, max_value=3))
    @settings(max_examples=10, deadline=None)
    def test_retry_after_failure_settles_normally(self, fail_at):
        """
        PROPERTY: A discarded cycle can be rerun and produces the full outcome.
        """
        store, meters, config, engine = _failing_market(
            [("A", -100, 5), ("B", 150, 3), ("C", 50, 4)]
        )
        store.fail_on_write(fail_at)
        with pytest.raises(PersistenceError):
            engine.settle()

        result = engine.settle()
        assert len(result.trades) == 1
        assert meters.get("A").balance == Decimal("-300")
        assert meters.get("B").balance == Decimal("270")
        assert config.get_pool_balance() == Decimal("30")


class TestAtomicityExamples:
    """Explicit atomicity examples."""

    def test_failing_pool_write_rolls_back_accounts(self):
        store, meters, config, engine = _failing_market(
            [("A", -100, 5), ("B", 150, 3), ("C", 50, 4)]
        )
        before = store.snapshot()
        # A and B change, then exchange rate and pool balance: index 3 is the pool
        store.fail_on_write(3)

        with pytest.raises(PersistenceError, match="Injected failure"):
            engine.settle()

        assert store.snapshot() == before
        assert meters.get("A").net_energy == -100
        assert meters.get("B").balance == Decimal("0")
        assert config.get_pool_balance() == Decimal("0")

    def test_failing_first_account_write(self):
        store, meters, config, engine = _failing_market([("A", -10, 5), ("B", 10, 5)])
        before = store.snapshot()
        store.fail_on_write(0)
        with pytest.raises(PersistenceError):
            engine.settle()
        assert store.snapshot() == before

    def test_empty_settlement_writes_nothing(self):
        store, meters, config, engine = _failing_market([("A", -10, 2), ("B", 10, 5)])
        commits = store.commit_count
        store.fail_on_write(0)
        result = engine.settle()
        assert result.is_empty()
        assert store.commit_count == commits


class TestConcurrentModification:
    """A record that changes between snapshot and commit aborts the cycle."""

    def test_stale_account_aborts_settlement(self, monkeypatch):
        meters, config, engine = make_market()
        seed_accounts(meters, [("A", -100, 5), ("B", 150, 3)])
        store = meters.store
        read_snapshot = engine.snapshot

        def racing_snapshot():
            snapshot = read_snapshot()
            # another invocation reports energy after the snapshot was taken
            meters.accumulate_energy("A", -5)
            return snapshot

        monkeypatch.setattr(engine, "snapshot", racing_snapshot)
        commits = store.commit_count
        with pytest.raises(StaleRecordError):
            engine.settle()

        # only the racing report landed
        assert store.commit_count == commits + 1
        assert meters.get("A").net_energy == -105
        assert meters.get("A").balance == Decimal("0")
        assert meters.get("B").net_energy == 150
        assert config.get_pool_balance() == Decimal("0")
        assert engine.settlement_log == []

    def test_stale_is_a_persistence_error(self):
        assert issubclass(StaleRecordError, PersistenceError)

    def test_deleted_account_aborts_settlement(self, monkeypatch):
        meters, config, engine = make_market()
        seed_account(meters, "A", -20, 5)
        seed_account(meters, "B", 20, 5)
        read_snapshot = engine.snapshot

        def racing_snapshot():
            snapshot = read_snapshot()
            meters.delete("B")
            return snapshot

        monkeypatch.setattr(engine, "snapshot", racing_snapshot)
        with pytest.raises(PersistenceError):
            engine.settle()

        assert meters.get("A").net_energy == -20
        assert not meters.exists("B")
        assert config.get_pool_balance() == Decimal("0")
