"""
energy_exchange - Peer-to-Peer Energy Micro-Market

Smart meters enroll, report the energy they produce or consume, and settle
periodically: consumers pay producers at the producer's rate, and the exchange
keeps a fee on every trade.

Usage:
    from decimal import Decimal
    from energy_exchange import (
        InMemoryStore, MeterLedger, ExchangeConfig, SettlementEngine,
    )

    store = InMemoryStore()
    config = ExchangeConfig(store)
    config.initialize(Decimal("0.10"))

    meters = MeterLedger(store)
    meters.enroll("house", "House", 5)
    meters.enroll("solar", "Solar farm", 3)
    meters.accumulate_energy("house", -100)
    meters.accumulate_energy("solar", 150)

    result = SettlementEngine(meters, config).settle()
    # house paid 300, solar received 270, exchange pool collected 30
"""

# Core types
from .core import (
    MeterAccount,
    ExchangeState,
    Trade,
    SettlementResult,
    MeterStore,
    Row,
    PutState,
    InsertRow,
    ReplaceRow,
    DeleteRow,
    StoreWrite,
    ExchangeError,
    ValidationError,
    UnknownOperationError,
    NotFoundError,
    AlreadyExistsError,
    PersistenceError,
    StaleRecordError,
    quantize_balance,
    format_decimal,
    parse_decimal,
    parse_int,
    check_int64,
    BALANCE_DECIMAL_PLACES,
    INT64_MIN,
    INT64_MAX,
    EXCHANGE_RATE_KEY,
    EXCHANGE_BALANCE_KEY,
    METERS_TABLE,
)

# Store
from .store import InMemoryStore

# Meter accounts
from .meters import MeterLedger, ensure_meters_table

# Exchange configuration
from .config import ExchangeConfig

# Settlement
from .settlement import SettlementEngine, compute_settlement, book_order

# Queries
from .query import QueryFacade, project_account

# Invocation surface
from .contract import EnergyTradingContract


__all__ = [
    # Core
    'MeterAccount', 'ExchangeState', 'Trade', 'SettlementResult',
    'MeterStore', 'Row', 'PutState', 'InsertRow', 'ReplaceRow', 'DeleteRow', 'StoreWrite',
    'quantize_balance', 'format_decimal', 'parse_decimal', 'parse_int', 'check_int64',
    'BALANCE_DECIMAL_PLACES', 'INT64_MIN', 'INT64_MAX',
    'EXCHANGE_RATE_KEY', 'EXCHANGE_BALANCE_KEY', 'METERS_TABLE',
    # Exceptions
    'ExchangeError', 'ValidationError', 'UnknownOperationError', 'NotFoundError',
    'AlreadyExistsError', 'PersistenceError', 'StaleRecordError',
    # Components
    'InMemoryStore', 'MeterLedger', 'ensure_meters_table', 'ExchangeConfig',
    'SettlementEngine', 'compute_settlement', 'book_order',
    'QueryFacade', 'project_account',
    'EnergyTradingContract',
]

__version__ = '1.0.0'
