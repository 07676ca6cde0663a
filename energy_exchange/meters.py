"""
meters.py - Meter Account Repository

MeterLedger is the only module that knows how a MeterAccount maps onto the
Meters table. Everything above it works with typed records.

Every write carries the version the caller read, so a record changed behind
the caller's back is rejected instead of silently overwritten.
"""

from __future__ import annotations
from dataclasses import replace
from decimal import Decimal
from typing import List, Optional
import logging

from .core import (
    MeterAccount, MeterStore, Row,
    InsertRow, ReplaceRow, DeleteRow,
    METERS_TABLE, COL_ACCOUNT_ID, COL_ACCOUNT_NAME, COL_REPORTED_KWH,
    COL_ACCOUNT_BALANCE, COL_RATE_PER_KWH, COL_VERSION,
    INT64_MIN, INT64_MAX,
    ValidationError, NotFoundError, AlreadyExistsError, PersistenceError,
    format_decimal, parse_decimal, quantize_balance,
)

logger = logging.getLogger(__name__)


def ensure_meters_table(store: MeterStore) -> bool:
    """
    Create the Meters table if it does not exist yet.

    Returns:
        True if the table was created, False if it was already there
    """
    if store.has_table(METERS_TABLE):
        logger.warning("Table %s already exists", METERS_TABLE)
        return False
    store.create_table(METERS_TABLE, key_column=COL_ACCOUNT_ID, version_column=COL_VERSION)
    logger.info("Created table %s", METERS_TABLE)
    return True


def account_to_row(account: MeterAccount) -> Row:
    return {
        COL_ACCOUNT_ID: account.id,
        COL_ACCOUNT_NAME: account.name,
        COL_REPORTED_KWH: account.net_energy,
        COL_ACCOUNT_BALANCE: format_decimal(account.balance),
        COL_RATE_PER_KWH: account.rate_per_kwh,
        COL_VERSION: account.version,
    }


def account_from_row(row: Row) -> MeterAccount:
    """
    Rebuild a MeterAccount from a stored row.

    Raises:
        PersistenceError: If the row is missing columns or holds an unparsable balance
    """
    try:
        balance_text = row[COL_ACCOUNT_BALANCE]
        balance = parse_decimal(balance_text, "account balance")
        return MeterAccount(
            id=row[COL_ACCOUNT_ID],
            name=row[COL_ACCOUNT_NAME],
            net_energy=row[COL_REPORTED_KWH],
            balance=quantize_balance(balance),
            rate_per_kwh=row[COL_RATE_PER_KWH],
            version=row.get(COL_VERSION, 0),
        )
    except KeyError as e:
        raise PersistenceError(f"Meter row is missing column {e}") from e
    except ValidationError as e:
        logger.error("Corrupt meter row %s: %s", row.get(COL_ACCOUNT_ID), e)
        raise PersistenceError(f"Corrupt meter row {row.get(COL_ACCOUNT_ID)}: {e}") from e


class MeterLedger:
    """
    CRUD over meter account records.

    Example:
        meters = MeterLedger(store)
        meters.enroll("m1", "Alice's rooftop", 3)
        meters.accumulate_energy("m1", 150)
        meters.adjust_balance("m1", Decimal("25.50"))
    """

    def __init__(self, store: MeterStore):
        self.store = store

    # ========================================================================
    # READS
    # ========================================================================

    def _find(self, account_id: str) -> Optional[MeterAccount]:
        row = self.store.get_row(METERS_TABLE, account_id)
        return account_from_row(row) if row is not None else None

    def exists(self, account_id: str) -> bool:
        return self.store.get_row(METERS_TABLE, account_id) is not None

    def get(self, account_id: str) -> MeterAccount:
        """
        Raises:
            NotFoundError: If no account with this id is enrolled
        """
        account = self._find(account_id)
        if account is None:
            raise NotFoundError(f"Account {account_id} not found")
        return account

    def list_all(self) -> List[MeterAccount]:
        """Return every enrolled account. Order is unspecified."""
        return [account_from_row(row) for row in self.store.rows(METERS_TABLE)]

    # ========================================================================
    # WRITES
    # ========================================================================

    def enroll(self, account_id: str, name: str, rate_per_kwh: int) -> MeterAccount:
        """
        Enroll a new meter with zero energy and zero balance.

        Raises:
            ValidationError: If the id is empty or the rate is not a positive integer
            AlreadyExistsError: If the id is taken
        """
        if not account_id or not account_id.strip():
            raise ValidationError("Account id cannot be empty")
        if isinstance(rate_per_kwh, bool) or not isinstance(rate_per_kwh, int):
            raise ValidationError(f"Rate per kwh must be an integer, got {rate_per_kwh!r}")
        if rate_per_kwh <= 0:
            raise ValidationError(f"Rate per kwh must be positive, got {rate_per_kwh}")
        if self.exists(account_id):
            raise AlreadyExistsError(f"Account {account_id} already exists")

        logger.info("Enrolling meter with id:%s, name:%s and target rate:%d",
                    account_id, name, rate_per_kwh)
        account = MeterAccount(
            id=account_id,
            name=name,
            net_energy=0,
            balance=quantize_balance(Decimal("0")),
            rate_per_kwh=rate_per_kwh,
        )
        self.store.commit([InsertRow(METERS_TABLE, account_to_row(account))])
        return account

    def delete(self, account_id: str) -> None:
        """
        Raises:
            NotFoundError: If no account with this id is enrolled
        """
        account = self.get(account_id)
        self.store.commit([DeleteRow(METERS_TABLE, account_id, expected_version=account.version)])
        logger.info("Deleted account %s", account_id)

    def stage(self, account: MeterAccount) -> ReplaceRow:
        """
        Build the write that persists an updated record, without applying it.

        The write is guarded by the record's current version and stores the next one.
        """
        row = account_to_row(replace(account, version=account.version + 1))
        return ReplaceRow(METERS_TABLE, row, expected_version=account.version)

    def put(self, account: MeterAccount) -> MeterAccount:
        """
        Replace an existing record.

        Returns:
            The record as stored, carrying its new version

        Raises:
            NotFoundError: If no account with this id is enrolled
            StaleRecordError: If the record was written since it was read
        """
        if not self.exists(account.id):
            raise NotFoundError(f"Account {account.id} not found")
        self.store.commit([self.stage(account)])
        return replace(account, version=account.version + 1)

    def adjust_balance(self, account_id: str, delta: Decimal) -> MeterAccount:
        """
        Add delta to an account's balance. Positive is a deposit, negative a withdrawal.

        Raises:
            ValidationError: If the new balance is out of range
            NotFoundError: If no account with this id is enrolled
        """
        if not isinstance(delta, Decimal):
            delta = Decimal(str(delta))
        account = self.get(account_id)
        new_balance = quantize_balance(account.balance + delta)
        logger.debug("Balance for account:%s goes from %s to %s",
                     account_id, format_decimal(account.balance), format_decimal(new_balance))
        updated = self.put(replace(account, balance=new_balance))
        logger.info("Changed account balance for account: %s", account_id)
        return updated

    def accumulate_energy(self, account_id: str, delta: int) -> MeterAccount:
        """
        Add delta kWh to an account's net energy. Positive is produced, negative consumed.

        Raises:
            ValidationError: If delta is not an integer or the total leaves the 64-bit range
            NotFoundError: If no account with this id is enrolled
        """
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise ValidationError(f"Energy delta must be an integer, got {delta!r}")
        account = self.get(account_id)
        new_energy = account.net_energy + delta
        if not INT64_MIN <= new_energy <= INT64_MAX:
            raise ValidationError(
                f"Reported kwh for account {account_id} would leave the 64-bit range: {new_energy}"
            )
        logger.debug("Reported kwh for account:%s goes from %d to %d",
                     account_id, account.net_energy, new_energy)
        updated = self.put(replace(account, net_energy=new_energy))
        logger.info("Changed reported kwh for account: %s", account_id)
        return updated
