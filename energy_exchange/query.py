"""
query.py - Read-Only Projections

Everything an external caller can ask about the market without changing it.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Any, Dict, List

from .core import MeterAccount
from .meters import MeterLedger
from .config import ExchangeConfig


def project_account(account: MeterAccount) -> Dict[str, Any]:
    """Structured view of an account: id, name, kwh, account_balance, rate_per_kwh."""
    return {
        "id": account.id,
        "name": account.name,
        "kwh": account.net_energy,
        "account_balance": account.balance,
        "rate_per_kwh": account.rate_per_kwh,
    }


class QueryFacade:
    """Pure reads over MeterLedger and ExchangeConfig."""

    def __init__(self, meters: MeterLedger, config: ExchangeConfig):
        self.meters = meters
        self.config = config

    def balance(self, account_id: str) -> Decimal:
        return self.meters.get(account_id).balance

    def reported_kwh(self, account_id: str) -> int:
        return self.meters.get(account_id).net_energy

    def meter_info(self, account_id: str) -> Dict[str, Any]:
        return project_account(self.meters.get(account_id))

    def meters_info(self) -> List[Dict[str, Any]]:
        """All accounts, sorted by id."""
        accounts = sorted(self.meters.list_all(), key=lambda a: a.id)
        return [project_account(a) for a in accounts]

    def exchange_rate(self) -> Decimal:
        return self.config.get_fee_rate()

    def exchange_account_balance(self) -> Decimal:
        return self.config.get_pool_balance()
