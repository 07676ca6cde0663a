"""
contract.py - Energy Trading Contract

The invocation surface of the market. A host hands over a function name and a
list of string arguments; the contract checks the argument count, parses the
numbers and routes the call to MeterLedger, ExchangeConfig, SettlementEngine or
QueryFacade.

Mutating functions (invoke): enroll, delete, changeAccountBalance, reportDelta, settle
Read-only functions (query): balance, reportedKwh, exchangeRate,
    exchangeAccountBalance, meterInfo, meters
"""

from __future__ import annotations
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Sequence
import json
import logging

from .core import (
    MeterStore,
    ValidationError, UnknownOperationError,
    format_decimal, parse_decimal, parse_int,
)
from .store import InMemoryStore
from .meters import MeterLedger
from .config import ExchangeConfig
from .settlement import SettlementEngine
from .query import QueryFacade

logger = logging.getLogger(__name__)


def _check_args(function: str, args: Sequence[str], expected: int, hint: str) -> None:
    if len(args) != expected:
        logger.error("Incorrect number of arguments for %s: %d", function, len(args))
        raise ValidationError(f"Incorrect number of arguments. {hint}")


def _json_default(value: Any) -> Any:
    """
    Emit Decimal balances as JSON numbers.

    The float conversion keeps about 15 significant digits. Larger balances lose
    their low-order digits in meterInfo/meters; the balance query returns the
    exact 6-place text.
    """
    if isinstance(value, Decimal):
        return float(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_json(payload: Any) -> str:
    return json.dumps(payload, default=_json_default)


class EnergyTradingContract:
    """
    Lets smart meters enroll and report their production or consumption of
    energy, then settles accounts by moving funds from consumers to producers.

    Example:
        contract = EnergyTradingContract()
        contract.init(["0.10"])
        contract.invoke("enroll", ["m1", "Rooftop", "3"])
        contract.invoke("reportDelta", ["m1", "150"])
        contract.query("reportedKwh", ["m1"])     # "150"
    """

    def __init__(self, store: Optional[MeterStore] = None, verbose: bool = False):
        self.store = store if store is not None else InMemoryStore()
        self.meters = MeterLedger(self.store)
        self.config = ExchangeConfig(self.store)
        self.engine = SettlementEngine(self.meters, self.config, verbose=verbose)
        self.queries = QueryFacade(self.meters, self.config)

        self._invocations: Dict[str, Callable[[Sequence[str]], Optional[str]]] = {
            "enroll": self._enroll,
            "delete": self._delete,
            "changeAccountBalance": self._change_account_balance,
            "reportDelta": self._report_delta,
            "settle": self._settle,
        }
        self._queries: Dict[str, Callable[[Sequence[str]], str]] = {
            "balance": self._balance,
            "reportedKwh": self._reported_kwh,
            "exchangeRate": self._exchange_rate,
            "exchangeAccountBalance": self._exchange_account_balance,
            "meterInfo": self._meter_info,
            "meters": self._meters,
        }

    # ========================================================================
    # ENTRY POINTS
    # ========================================================================

    def init(self, args: Sequence[str]) -> None:
        """Deploy the market with the exchange rate given as the only argument."""
        _check_args("init", args, 1, "Specify the exchange rate for this smart contract.")
        fee_rate = parse_decimal(args[0], "exchange rate")
        self.config.initialize(fee_rate)
        logger.info("Successfully deployed energy trading contract")

    def invoke(self, function: str, args: Sequence[str]) -> Optional[str]:
        handler = self._invocations.get(function)
        if handler is None:
            logger.error("Unimplemented method :%s called", function)
            raise UnknownOperationError(f"Unimplemented '{function}' invoked")
        return handler(args)

    def query(self, function: str, args: Sequence[str]) -> str:
        handler = self._queries.get(function)
        if handler is None:
            logger.error("Invalid query function name :%s", function)
            raise UnknownOperationError(f"Invalid query function name '{function}'")
        return handler(args)

    # ========================================================================
    # INVOCATIONS
    # ========================================================================

    def _enroll(self, args: Sequence[str]) -> None:
        _check_args("enroll", args, 3, "Specify account number, name and rate per kwh")
        rate = parse_int(args[2], "rate per kwh")
        self.meters.enroll(args[0], args[1], rate)

    def _delete(self, args: Sequence[str]) -> None:
        _check_args("delete", args, 1, "Specify account number to be deleted")
        self.meters.delete(args[0])

    def _change_account_balance(self, args: Sequence[str]) -> None:
        _check_args("changeAccountBalance", args, 2,
                    "Specify account number and amount to be deposited")
        amount = parse_decimal(args[1], "amount to be deposited")
        self.meters.adjust_balance(args[0], amount)

    def _report_delta(self, args: Sequence[str]) -> None:
        _check_args("reportDelta", args, 2, "Specify account number and kwh reported")
        delta = parse_int(args[1], "reported kwh to be accumulated")
        self.meters.accumulate_energy(args[0], delta)

    def _settle(self, args: Sequence[str]) -> None:
        _check_args("settle", args, 0, "No arguments required")
        self.engine.settle()

    # ========================================================================
    # QUERIES
    # ========================================================================

    def _balance(self, args: Sequence[str]) -> str:
        _check_args("balance", args, 1, "Specify account number")
        return format_decimal(self.queries.balance(args[0]))

    def _reported_kwh(self, args: Sequence[str]) -> str:
        _check_args("reportedKwh", args, 1, "Specify account number")
        return str(self.queries.reported_kwh(args[0]))

    def _exchange_rate(self, args: Sequence[str]) -> str:
        _check_args("exchangeRate", args, 0, "No arguments necessary")
        return format_decimal(self.queries.exchange_rate())

    def _exchange_account_balance(self, args: Sequence[str]) -> str:
        _check_args("exchangeAccountBalance", args, 0, "No arguments necessary")
        return format_decimal(self.queries.exchange_account_balance())

    def _meter_info(self, args: Sequence[str]) -> str:
        _check_args("meterInfo", args, 1, "Specify account number")
        return to_json(self.queries.meter_info(args[0]))

    def _meters(self, args: Sequence[str]) -> str:
        _check_args("meters", args, 0, "No arguments required")
        return to_json(self.queries.meters_info())
