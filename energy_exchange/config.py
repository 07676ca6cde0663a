"""
config.py - Exchange Configuration

The market's two scalar parameters: the fee rate charged on every trade and the
balance of the exchange pool that collects those fees. Both are stored as
fixed 6-decimal text under their own keys.
"""

from __future__ import annotations
from decimal import Decimal
from typing import List
import logging

from .core import (
    ExchangeState, MeterStore, PutState,
    EXCHANGE_RATE_KEY, EXCHANGE_BALANCE_KEY,
    ValidationError, PersistenceError,
    format_decimal, parse_decimal, quantize_balance,
)
from .meters import ensure_meters_table

logger = logging.getLogger(__name__)


class ExchangeConfig:
    """
    Reads and writes the exchange state.

    Example:
        config = ExchangeConfig(store)
        config.initialize(Decimal("0.10"))
        config.get_fee_rate()        # Decimal("0.100000")
    """

    def __init__(self, store: MeterStore):
        self.store = store

    def initialize(self, fee_rate: Decimal) -> ExchangeState:
        """
        Create the Meters table if missing, then set the fee rate and reset the pool to zero.

        Calling this again overwrites both values. Fee rates outside [0, 1] are
        accepted and logged.

        Raises:
            ValidationError: If fee_rate is not a finite number or is out of range
            PersistenceError: If the table cannot be created; the exchange state is not written
        """
        if not isinstance(fee_rate, Decimal):
            fee_rate = parse_decimal(fee_rate, "exchange rate")
        if not fee_rate.is_finite():
            raise ValidationError(f"Invalid value {fee_rate} for exchange rate")
        if fee_rate < 0 or fee_rate > 1:
            logger.warning("Exchange rate %s is outside [0, 1]", fee_rate)

        state = ExchangeState(
            fee_rate=quantize_balance(fee_rate),
            pool_balance=quantize_balance(Decimal("0")),
        )
        ensure_meters_table(self.store)
        self.store.commit(self.stage(state))
        logger.info("Initialized exchange with rate %s", format_decimal(state.fee_rate))
        return state

    def _read(self, key: str, what: str) -> Decimal:
        text = self.store.get_state(key)
        if text is None:
            logger.error("Failed to retrieve %s", what)
            raise PersistenceError(f"Failed to retrieve {what}")
        try:
            return parse_decimal(text, what)
        except ValidationError as e:
            logger.error("Invalid value %s for %s", text, what)
            raise PersistenceError(f"Invalid value for {what}: {text!r}") from e

    def get_fee_rate(self) -> Decimal:
        """
        Raises:
            PersistenceError: If the exchange was never initialized or the value is corrupt
        """
        return self._read(EXCHANGE_RATE_KEY, "exchange rate")

    def get_pool_balance(self) -> Decimal:
        """
        Raises:
            PersistenceError: If the exchange was never initialized or the value is corrupt
        """
        return self._read(EXCHANGE_BALANCE_KEY, "exchange account balance")

    def set_pool_balance(self, value: Decimal) -> None:
        """Overwrite the exchange pool balance."""
        self.store.commit([PutState(EXCHANGE_BALANCE_KEY, format_decimal(value))])
        logger.debug("New balance for exchange account: %s", format_decimal(value))

    def load_state(self) -> ExchangeState:
        return ExchangeState(
            fee_rate=self.get_fee_rate(),
            pool_balance=self.get_pool_balance(),
        )

    def stage(self, state: ExchangeState) -> List[PutState]:
        """Build the writes that persist an exchange state, without applying them."""
        return [
            PutState(EXCHANGE_RATE_KEY, format_decimal(state.fee_rate)),
            PutState(EXCHANGE_BALANCE_KEY, format_decimal(state.pool_balance)),
        ]
