"""
Core types and pure functions for the energy exchange.

This module provides the foundational data structures and protocols for the market:
1. Protocols: MeterStore for the persisted key/table store the market runs on
2. Immutable data structures: MeterAccount, ExchangeState, Trade, SettlementResult
3. Store writes: PutState, InsertRow, ReplaceRow, DeleteRow
4. Exceptions: ExchangeError and domain-specific error types
5. Decimal helpers: parsing and fixed 6-place formatting of currency amounts

Nothing in this module touches a store. Mutation happens in meters.py, config.py
and settlement.py, always through MeterStore.commit().
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN, getcontext
import hashlib
import re
from typing import (
    Dict, Iterator, List, Optional, Any, Protocol, Sequence, Tuple, Union,
    runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Settlement must be reproducible bit-for-bit across runs, so the global
# Decimal context is pinned at import time.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
#   - prec=50: far beyond any balance the market can reach
#   - rounding=ROUND_HALF_EVEN: banker's rounding for fee quantization
#
_EXCHANGE_DECIMAL_CONTEXT = getcontext()
_EXCHANGE_DECIMAL_CONTEXT.prec = 50
_EXCHANGE_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Currency amounts are persisted as text with a fixed number of decimals.
BALANCE_DECIMAL_PLACES = 6
BALANCE_QUANTUM = Decimal(10) ** -BALANCE_DECIMAL_PLACES

# Scalar keys holding the exchange state.
EXCHANGE_RATE_KEY = "exchange_rate"
EXCHANGE_BALANCE_KEY = "exchange_account_balance"

# Meter table and its columns.
METERS_TABLE = "Meters"
COL_ACCOUNT_ID = "AccountId"
COL_ACCOUNT_NAME = "AccountName"
COL_REPORTED_KWH = "ReportedKWH"
COL_ACCOUNT_BALANCE = "AccountBalance"
COL_RATE_PER_KWH = "RatePerKWH"
COL_VERSION = "Version"

METER_COLUMNS = (
    COL_ACCOUNT_ID,
    COL_ACCOUNT_NAME,
    COL_REPORTED_KWH,
    COL_ACCOUNT_BALANCE,
    COL_RATE_PER_KWH,
    COL_VERSION,
)

_INTEGER_PATTERN = re.compile(r"^[+-]?[0-9]+$")

# ReportedKWH and RatePerKWH are 64-bit signed columns.
INT64_MIN = -2 ** 63
INT64_MAX = 2 ** 63 - 1


# ============================================================================
# TYPE ALIASES
# ============================================================================

# A table row: column name -> value.
Row = Dict[str, Any]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class ExchangeError(Exception):
    """Base exception for all exchange-related errors."""
    pass


class ValidationError(ExchangeError, ValueError):
    """Raised for malformed input: wrong argument count, unparsable numbers, bad ids."""
    pass


class UnknownOperationError(ValidationError):
    """Raised when a caller invokes a function name the contract does not implement."""
    pass


class NotFoundError(ExchangeError, LookupError):
    """Raised when an operation references an account id that is not enrolled."""
    pass


class AlreadyExistsError(ExchangeError):
    """Raised when enrolling an account id that is already taken."""
    pass


class PersistenceError(ExchangeError):
    """Raised when the underlying store cannot be read or written, or holds a corrupt value."""
    pass


class StaleRecordError(PersistenceError):
    """Raised when a write carries a version that no longer matches the stored row."""
    pass


# ============================================================================
# DECIMAL HELPERS
# ============================================================================

def quantize_balance(value: Decimal) -> Decimal:
    """
    Round a currency amount to BALANCE_DECIMAL_PLACES with banker's rounding.

    Negative zero is folded to zero so that "-0.000000" is never persisted.

    Raises:
        ValidationError: If the amount has too many integer digits to be held
            at 6 places under the pinned context
    """
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    try:
        quantized = value.quantize(BALANCE_QUANTUM, rounding=ROUND_HALF_EVEN)
    except InvalidOperation:
        raise ValidationError(f"Amount {value} is out of range") from None
    if quantized.is_zero():
        return Decimal(0).quantize(BALANCE_QUANTUM)
    return quantized


def format_decimal(value: Decimal) -> str:
    """Format a currency amount as fixed-point text with 6 decimals, e.g. "12.500000"."""
    return format(quantize_balance(value), "f")


def parse_decimal(text: str, what: str = "value") -> Decimal:
    """
    Parse a signed decimal amount.

    Raises:
        ValidationError: If the text is not a finite decimal number, or has
            more integer digits than a 6-place balance can carry
    """
    try:
        value = Decimal(str(text).strip())
    except InvalidOperation:
        raise ValidationError(f"Invalid {what}: {text!r}") from None
    if not value.is_finite():
        raise ValidationError(f"Invalid {what}: {text!r} is not finite")
    if not value.is_zero() and value.adjusted() + BALANCE_DECIMAL_PLACES >= _EXCHANGE_DECIMAL_CONTEXT.prec:
        raise ValidationError(f"Invalid {what}: {text!r} is out of range")
    return value


def check_int64(value: int, what: str = "value") -> int:
    """
    Raises:
        ValidationError: If value does not fit a 64-bit signed column
    """
    if not INT64_MIN <= value <= INT64_MAX:
        raise ValidationError(f"{what} {value} is out of the 64-bit range")
    return value


def parse_int(text: str, what: str = "value") -> int:
    """
    Parse a signed base-10 integer that fits in 64 bits.

    Only an optional sign followed by digits is accepted.

    Raises:
        ValidationError: If the text is not an integer or is out of range
    """
    stripped = str(text).strip()
    if not _INTEGER_PATTERN.match(stripped):
        raise ValidationError(f"Invalid {what}: {text!r}")
    return check_int64(int(stripped), what)


# ============================================================================
# DATA MODEL
# ============================================================================

@dataclass(frozen=True, slots=True)
class MeterAccount:
    """
    A participant's ledger record.

    Attributes:
        id: Unique, immutable account identifier (primary key).
        name: Display name.
        net_energy: Signed kWh. Positive is surplus (seller), negative is deficit
            (buyer), zero sits out the settlement cycle.
        balance: Signed currency amount. May go negative; solvency is not enforced.
        rate_per_kwh: Ask (seller) or bid (buyer) per kWh.
        version: Optimistic concurrency token, bumped on every persisted write.
    """
    id: str
    name: str
    net_energy: int = 0
    balance: Decimal = Decimal("0")
    rate_per_kwh: int = 0
    version: int = 0

    def __post_init__(self):
        if not self.id or not self.id.strip():
            raise ValidationError("Account id cannot be empty")
        if isinstance(self.net_energy, bool) or not isinstance(self.net_energy, int):
            raise ValidationError(f"net_energy must be int, got {type(self.net_energy)}")
        if isinstance(self.rate_per_kwh, bool) or not isinstance(self.rate_per_kwh, int):
            raise ValidationError(f"rate_per_kwh must be int, got {type(self.rate_per_kwh)}")
        check_int64(self.net_energy, "net_energy")
        check_int64(self.rate_per_kwh, "rate_per_kwh")
        if not isinstance(self.balance, Decimal):
            raise ValidationError(f"balance must be Decimal, got {type(self.balance)}")
        if not self.balance.is_finite():
            raise ValidationError(f"balance must be finite, got {self.balance}")

    @property
    def is_buyer(self) -> bool:
        return self.net_energy < 0

    @property
    def is_seller(self) -> bool:
        return self.net_energy > 0

    def __repr__(self) -> str:
        return (f"MeterAccount({self.id}: {self.net_energy} kWh @ {self.rate_per_kwh}, "
                f"balance={format_decimal(self.balance)})")


@dataclass(frozen=True, slots=True)
class ExchangeState:
    """
    Market-wide parameters persisted next to the meter table.

    Attributes:
        fee_rate: Fraction of every trade's value retained by the exchange.
            Conceptually within [0, 1]; not enforced.
        pool_balance: Fees collected so far.
    """
    fee_rate: Decimal
    pool_balance: Decimal = Decimal("0")

    def __post_init__(self):
        for name in ("fee_rate", "pool_balance"):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                raise ValidationError(f"{name} must be Decimal, got {type(value)}")
            if not value.is_finite():
                raise ValidationError(f"{name} must be finite, got {value}")


@dataclass(frozen=True, slots=True)
class Trade:
    """
    One fill between a buyer and a seller during settlement.

    The price is always the seller's rate. value == fee + credit holds exactly.
    """
    sequence: int
    buyer_id: str
    seller_id: str
    quantity: int
    price: int
    value: Decimal
    fee: Decimal
    credit: Decimal

    def __post_init__(self):
        if self.quantity <= 0:
            raise ValidationError(f"Trade quantity must be positive, got {self.quantity}")
        if self.buyer_id == self.seller_id:
            raise ValidationError("Buyer and seller must be different")

    def __repr__(self) -> str:
        return (f"Trade(#{self.sequence} {self.quantity} kWh {self.seller_id}→{self.buyer_id} "
                f"@ {self.price}, fee={format_decimal(self.fee)})")


# ============================================================================
# STORE WRITES
# ============================================================================

@dataclass(frozen=True, slots=True)
class PutState:
    """Overwrite a scalar key."""
    key: str
    value: str


@dataclass(frozen=True, slots=True)
class InsertRow:
    """Insert a row; the store rejects it if the key is already present."""
    table: str
    row: Row


@dataclass(frozen=True, slots=True)
class ReplaceRow:
    """
    Replace an existing row.

    When expected_version is set, the store rejects the write unless the stored
    row still carries that version.
    """
    table: str
    row: Row
    expected_version: Optional[int] = None


@dataclass(frozen=True, slots=True)
class DeleteRow:
    """Delete an existing row, optionally guarded by its version."""
    table: str
    key: str
    expected_version: Optional[int] = None


StoreWrite = Union[PutState, InsertRow, ReplaceRow, DeleteRow]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class MeterStore(Protocol):
    """
    The persisted key/table substrate the market runs on.

    Reads are individual. Writes are only ever submitted through commit(), which
    must apply the whole batch or none of it. InMemoryStore is the reference
    implementation; a host ledger provides its own.
    """

    def get_state(self, key: str) -> Optional[str]:
        """Return the value of a scalar key, or None if it was never written."""
        ...

    def has_table(self, table: str) -> bool:
        ...

    def create_table(self, table: str, key_column: str, version_column: Optional[str] = None) -> None:
        """Create an empty table keyed on key_column."""
        ...

    def get_row(self, table: str, key: str) -> Optional[Row]:
        """Return a copy of the row with the given key, or None."""
        ...

    def rows(self, table: str) -> Iterator[Row]:
        """Iterate over copies of every row. Order is unspecified."""
        ...

    def commit(self, writes: Sequence[StoreWrite]) -> None:
        """
        Apply a batch of writes atomically.

        Raises:
            PersistenceError: If any write fails; no write in the batch is applied
        """
        ...


# ============================================================================
# SETTLEMENT RESULT
# ============================================================================

def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Decimals are normalized so that 1.0 and 1.000000 hash identically.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        normalized = value.normalize()
        if normalized == normalized.to_integral_value():
            return f"D:{int(normalized)}"
        return f"D:{format(normalized, 'f')}"
    if isinstance(value, int):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(item) for item in value) + "]"
    return f"R:{value!r}"


def compute_settlement_id(
    trades: Tuple[Trade, ...],
    accounts: Tuple[MeterAccount, ...],
    state_after: ExchangeState,
) -> str:
    """
    Compute a deterministic content hash for a settlement outcome.

    Two settlements of identical snapshots produce the same id.
    """
    parts: List[str] = []
    for t in trades:
        parts.append(
            f"trade:{t.sequence}|{t.buyer_id}|{t.seller_id}|{t.quantity}|{t.price}|"
            f"{_canonicalize(t.value)}|{_canonicalize(t.fee)}"
        )
    for a in sorted(accounts, key=lambda a: a.id):
        parts.append(f"account:{a.id}|{a.net_energy}|{_canonicalize(a.balance)}")
    parts.append(f"pool:{_canonicalize(state_after.pool_balance)}")
    return hashlib.sha256("|".join(parts).encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class SettlementResult:
    """
    Outcome of one clearing cycle.

    Attributes:
        trades: Fills in execution order
        accounts: Post-settlement records of every account that traded, carrying
            the versions read at snapshot time
        state_before: Exchange state the cycle started from
        state_after: Exchange state after fees were collected
        settlement_id: Content hash of the outcome (auto-computed)
    """
    trades: Tuple[Trade, ...]
    accounts: Tuple[MeterAccount, ...]
    state_before: ExchangeState
    state_after: ExchangeState
    settlement_id: str = field(default="")

    def __post_init__(self):
        if not self.settlement_id:
            object.__setattr__(
                self, 'settlement_id',
                compute_settlement_id(self.trades, self.accounts, self.state_after)
            )

    def is_empty(self) -> bool:
        """Return True if no trade happened."""
        return not self.trades

    @property
    def total_quantity(self) -> int:
        return sum(t.quantity for t in self.trades)

    @property
    def total_value(self) -> Decimal:
        return sum((t.value for t in self.trades), Decimal("0"))

    @property
    def total_fees(self) -> Decimal:
        return self.state_after.pool_balance - self.state_before.pool_balance

    def __repr__(self) -> str:
        w = 90
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Settlement: ' + self.settlement_id)}│",
            f"├{bar}┤",
            f"│{pad('   fee_rate       : ' + format_decimal(self.state_before.fee_rate))}│",
            f"│{pad('   pool before    : ' + format_decimal(self.state_before.pool_balance))}│",
            f"│{pad('   pool after     : ' + format_decimal(self.state_after.pool_balance))}│",
            f"│{pad('   energy cleared : ' + str(self.total_quantity) + ' kWh')}│",
            f"├{bar}┤",
            f"│{pad(' Trades (' + str(len(self.trades)) + '):')}│",
        ]
        for t in self.trades:
            lines.append(f"│{pad(f'   [{t.sequence}] {t.quantity} kWh {t.seller_id} → {t.buyer_id} @ {t.price}  value={format_decimal(t.value)} fee={format_decimal(t.fee)}')}│")
        if self.accounts:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Accounts (' + str(len(self.accounts)) + '):')}│")
            for a in self.accounts:
                lines.append(f"│{pad(f'   {a.id}: {a.net_energy} kWh, balance {format_decimal(a.balance)}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)
