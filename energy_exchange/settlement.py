"""
settlement.py - Double-Auction Settlement

Clears the market: buyers (accounts with an energy deficit) are matched against
sellers (accounts with a surplus), cheapest seller first, and pay the seller's
rate. The exchange keeps fee_rate of every trade's value.

Two layers:
    - compute_settlement(): pure function from a snapshot to a SettlementResult
    - SettlementEngine.settle(): takes the snapshot, runs the match in memory
      and commits every changed record plus the pool in one batch
"""

from __future__ import annotations
from dataclasses import replace
from decimal import Decimal
from typing import Dict, Iterable, List, Tuple
import logging

from .core import (
    MeterAccount, ExchangeState, Trade, SettlementResult, StoreWrite,
    ValidationError, PersistenceError,
    format_decimal, quantize_balance,
)
from .meters import MeterLedger
from .config import ExchangeConfig

logger = logging.getLogger(__name__)


def book_order(account: MeterAccount) -> Tuple[int, str]:
    """Sort key for both sides of the book: rate ascending, then id for ties."""
    return (account.rate_per_kwh, account.id)


def compute_settlement(
    accounts: Iterable[MeterAccount],
    state: ExchangeState,
) -> SettlementResult:
    """
    Match buyers against sellers and compute the resulting balances.

    Buyers are served in ascending order of their bid. Each buyer takes energy
    from the cheapest sellers first, as long as the seller's ask does not exceed
    the buyer's bid, until its deficit is covered or no eligible seller remains.
    Every fill is priced at the seller's rate:

        value  = quantity * seller.rate_per_kwh
        fee    = value * fee_rate
        credit = value - fee

    Deficits and surpluses that find no counterpart carry over unchanged.
    Accounts with zero net energy never trade.

    Sellers are drained strictly in book order, so the exhausted sellers always
    form a prefix of the book. A cursor past that prefix gives the same fills as
    rescanning the whole book for every buyer.

    Args:
        accounts: Snapshot of every enrolled account
        state: Exchange state at the start of the cycle

    Returns:
        SettlementResult with the trades, the changed accounts (versions as read)
        and the new exchange state

    Raises:
        ValidationError: If the snapshot contains the same id twice
    """
    snapshot: Dict[str, MeterAccount] = {}
    for account in accounts:
        if account.id in snapshot:
            raise ValidationError(f"Duplicate account {account.id} in snapshot")
        snapshot[account.id] = account

    buyers = sorted((a for a in snapshot.values() if a.net_energy < 0), key=book_order)
    sellers = sorted((a for a in snapshot.values() if a.net_energy > 0), key=book_order)
    logger.info("Number of buyers: %d, number of sellers: %d", len(buyers), len(sellers))

    energy = {a.id: a.net_energy for a in snapshot.values()}
    balances = {a.id: a.balance for a in snapshot.values()}
    pool = state.pool_balance
    trades: List[Trade] = []

    cursor = 0
    for buyer in buyers:
        logger.debug("Finding sellers for buyer:%s with rate up to %d for %d KWH",
                     buyer.id, buyer.rate_per_kwh, -energy[buyer.id])
        for seller in sellers[cursor:]:
            if energy[buyer.id] == 0:
                break
            if seller.rate_per_kwh > buyer.rate_per_kwh:
                break
            have = energy[seller.id]
            if have <= 0:
                continue

            quantity = min(-energy[buyer.id], have)
            value = Decimal(quantity * seller.rate_per_kwh)
            fee = quantize_balance(value * state.fee_rate)
            credit = value - fee

            energy[seller.id] -= quantity
            energy[buyer.id] += quantity
            balances[buyer.id] = quantize_balance(balances[buyer.id] - value)
            balances[seller.id] = quantize_balance(balances[seller.id] + credit)
            pool = quantize_balance(pool + fee)

            trade = Trade(
                sequence=len(trades),
                buyer_id=buyer.id,
                seller_id=seller.id,
                quantity=quantity,
                price=seller.rate_per_kwh,
                value=value,
                fee=fee,
                credit=credit,
            )
            trades.append(trade)
            logger.debug("Buyer %s takes %d KWH from seller %s: debited %s, credited %s, fee %s",
                         buyer.id, quantity, seller.id, format_decimal(value),
                         format_decimal(credit), format_decimal(fee))

        while cursor < len(sellers) and energy[sellers[cursor].id] == 0:
            cursor += 1
        if energy[buyer.id] != 0:
            logger.debug("Total unsatisfied energy need for buyer:%s is %d", buyer.id, -energy[buyer.id])

    changed = tuple(
        replace(a, net_energy=energy[a.id], balance=balances[a.id])
        for a in sorted(snapshot.values(), key=lambda a: a.id)
        if energy[a.id] != a.net_energy or balances[a.id] != a.balance
    )
    return SettlementResult(
        trades=tuple(trades),
        accounts=changed,
        state_before=state,
        state_after=replace(state, pool_balance=pool),
    )


class SettlementEngine:
    """
    Runs a clearing cycle against the store.

    settle() reads one snapshot, computes the whole outcome in memory and only
    then writes. All account writes and the pool balance go to the store as a
    single batch, each account write guarded by the version in the snapshot.
    If the store rejects the batch, nothing changes and the error propagates.

    Example:
        engine = SettlementEngine(MeterLedger(store), ExchangeConfig(store))
        result = engine.settle()
        for trade in result.trades:
            print(trade)
    """

    def __init__(self, meters: MeterLedger, config: ExchangeConfig, verbose: bool = False):
        """
        Args:
            meters: Repository the snapshot is read from and written back to
            config: Exchange state reader/writer
            verbose: Print a settlement report after every cycle that traded
        """
        self.meters = meters
        self.config = config
        self.verbose = verbose
        self.settlement_log: List[SettlementResult] = []

    def snapshot(self) -> Tuple[Tuple[MeterAccount, ...], ExchangeState]:
        """Read every account and the exchange state."""
        accounts = tuple(self.meters.list_all())
        logger.info("Number of rows in table:%d", len(accounts))
        return accounts, self.config.load_state()

    def settle(self) -> SettlementResult:
        """
        Run one clearing cycle.

        Returns:
            The committed SettlementResult (empty if nothing could trade)

        Raises:
            PersistenceError: If the snapshot cannot be read or the batch is rejected
        """
        logger.info("Settling accounts")
        accounts, state = self.snapshot()
        result = compute_settlement(accounts, state)

        if result.is_empty():
            logger.info("Done settling: no trades")
            return result

        writes: List[StoreWrite] = [self.meters.stage(a) for a in result.accounts]
        writes.extend(self.config.stage(result.state_after))
        try:
            self.meters.store.commit(writes)
        except PersistenceError as e:
            logger.error("Settlement %s discarded: %s", result.settlement_id, e)
            raise

        self.settlement_log.append(result)
        logger.info("Done settling: %d trades, %d KWH, fees %s",
                    len(result.trades), result.total_quantity, format_decimal(result.total_fees))
        if self.verbose:
            print(repr(result))
        return result
