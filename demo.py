#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Learn the Energy Exchange Step by Step

This is a pedagogical demonstration of the peer-to-peer energy market.
Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:   Foundation      - Deploying the exchange, enrolling meters, reporting energy
  4-6:   Settlement      - The double auction, conservation, carry-forward
  7-8:   Safety          - Stale snapshots, settling twice
  9:     Queries         - Reading balances and meter info
  10:    Load Test       - Settling a large market

Run:
    python demo.py             # Interactive mode (press Enter for each step)
    python demo.py --quick     # Run all steps without pausing
    python demo.py --verbose   # Also show the exchange's log output
"""

from dataclasses import dataclass
from decimal import Decimal
import json
import logging
import random
import sys
import time

from energy_exchange import (
    # Invocation surface
    EnergyTradingContract,
    # Components
    InMemoryStore, MeterLedger, ExchangeConfig, SettlementEngine,
    compute_settlement,
    # Errors
    ValidationError, StaleRecordError,
    format_decimal,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    exchange_rate: str = "0.10"

    # Day one reports (kWh)
    house_consumption: int = 100
    solar_production: int = 150
    wind_production: int = 50

    # Rates (per kWh)
    house_rate: int = 5
    solar_rate: int = 3
    wind_rate: int = 4

    # Load test parameters (Step 10)
    load_test_meters: int = 10_000
    load_test_max_kwh: int = 500
    load_test_max_rate: int = 20
    load_test_seed: int = 42


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv
VERBOSE_MODE = "--verbose" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    """Print a section header within a step."""
    print(f"\n--- {text} ---\n")


def print_meters(contract: EnergyTradingContract):
    for meter in json.loads(contract.query("meters", [])):
        print(f"  {meter['id']:<8} {meter['kwh']:>6} kWh  "
              f"balance {format_decimal(Decimal(str(meter['account_balance']))):>14}  "
              f"rate {meter['rate_per_kwh']}")
    print(f"  {'pool':<8} {'':>10}  balance {contract.query('exchangeAccountBalance', []):>14}")


def total_money(contract: EnergyTradingContract) -> Decimal:
    total = sum(
        (Decimal(contract.query("balance", [m["id"]])) for m in json.loads(contract.query("meters", []))),
        Decimal("0"),
    )
    return total + Decimal(contract.query("exchangeAccountBalance", []))


# ============================================================================
# PHASE 1: FOUNDATION (Steps 1-3)
# ============================================================================

def step_01_deploy():
    """Deploy the exchange with its fee rate."""
    step_header(1, "Deploying the Exchange",
        "Understand the two numbers the exchange itself keeps.")

    print("""
    The exchange stores two values:

    1. EXCHANGE RATE    - The fee fraction kept from every trade
    2. POOL BALANCE     - Where those fees accumulate (starts at zero)

    Deploying also creates the Meters table that holds every account.
    """)

    print('>>> contract = EnergyTradingContract()')
    print(f'>>> contract.init(["{CONFIG.exchange_rate}"])')
    contract = EnergyTradingContract(InMemoryStore("demo"))
    contract.init([CONFIG.exchange_rate])

    print(f"\nexchangeRate           = {contract.query('exchangeRate', [])}")
    print(f"exchangeAccountBalance = {contract.query('exchangeAccountBalance', [])}")
    return contract


def step_02_enroll(contract: EnergyTradingContract):
    """Enroll a consumer and two producers."""
    step_header(2, "Enrolling Meters",
        "Every participant is a meter with a rate per kWh.")

    print("""
    A meter's rate means different things depending on which side it ends up on:

    - For a BUYER it is the most it will pay per kWh
    - For a SELLER it is the price it asks per kWh

    New meters start with zero energy and zero balance.
    """)

    wait_for_enter()

    for account_id, name, rate in [
        ("house", "Family house", CONFIG.house_rate),
        ("solar", "Solar farm", CONFIG.solar_rate),
        ("wind", "Wind turbine", CONFIG.wind_rate),
    ]:
        print(f'>>> contract.invoke("enroll", ["{account_id}", "{name}", "{rate}"])')
        contract.invoke("enroll", [account_id, name, str(rate)])

    section_header("Rejected Enrollment")
    print('>>> contract.invoke("enroll", ["free", "Free lunch", "0"])')
    try:
        contract.invoke("enroll", ["free", "Free lunch", "0"])
    except ValidationError as e:
        print(f"ValidationError: {e}")

    section_header("Meters")
    print_meters(contract)
    return contract


def step_03_report(contract: EnergyTradingContract):
    """Meters report the energy they produced or consumed."""
    step_header(3, "Reporting Energy",
        "Net energy is a running total: positive produced, negative consumed.")

    reports = [
        ("house", -CONFIG.house_consumption),
        ("solar", CONFIG.solar_production),
        ("wind", CONFIG.wind_production),
    ]
    for account_id, delta in reports:
        print(f'>>> contract.invoke("reportDelta", ["{account_id}", "{delta}"])')
        contract.invoke("reportDelta", [account_id, str(delta)])

    section_header("Meters")
    print_meters(contract)

    print("""
    Accounts below zero are BUYERS. Accounts above zero are SELLERS.
    Accounts at exactly zero sit this cycle out.
    """)
    return contract


# ============================================================================
# PHASE 2: SETTLEMENT (Steps 4-6)
# ============================================================================

def step_04_first_settlement(contract: EnergyTradingContract):
    """Run the double auction."""
    step_header(4, "The Double Auction",
        "Buyers take energy from the cheapest sellers they can afford.")

    print("""
    The rules:

    - Buyers are served in ascending order of their rate (ties by id)
    - Each buyer walks the sellers from cheapest to most expensive
    - A seller is eligible only if its rate does not exceed the buyer's
    - The trade is priced at the SELLER's rate
    - The exchange keeps value * exchange_rate as a fee
    """)

    wait_for_enter()

    print('>>> engine = SettlementEngine(contract.meters, contract.config, verbose=True)')
    print('>>> engine.settle()')
    engine = SettlementEngine(contract.meters, contract.config, verbose=True)
    engine.settle()

    section_header("Meters After")
    print_meters(contract)

    print("""
    The house bid 5. Solar (asking 3) is the cheapest eligible seller and covers
    the whole deficit, so wind is never touched.
    """)
    return contract


def step_05_conservation(contract: EnergyTradingContract):
    """Show that settlement only moves money."""
    step_header(5, "Conservation",
        "Balances plus the pool always add up to what they were before.")

    total = total_money(contract)
    print(f"Σ balances + pool = {format_decimal(total)}")
    print("""
    Every buyer debit is split between the seller's credit and the exchange fee.
    Nothing is minted and nothing disappears. Deposits via changeAccountBalance
    are the only way money enters.
    """)
    return contract


def step_06_carry_forward(contract: EnergyTradingContract):
    """Unmatched energy waits for the next cycle."""
    step_header(6, "Carry-Forward",
        "Whatever could not be matched simply stays on the account.")

    print('>>> contract.invoke("enroll", ["shop", "Corner shop", "2"])')
    contract.invoke("enroll", ["shop", "Corner shop", "2"])
    print('>>> contract.invoke("reportDelta", ["shop", "-30"])')
    contract.invoke("reportDelta", ["shop", "-30"])
    print('>>> contract.invoke("settle", [])')
    contract.invoke("settle", [])

    section_header("Meters")
    print_meters(contract)

    print("""
    The shop bids 2 but every seller asks at least 3: no trade, and its
    -30 kWh carries over until a cheap enough seller shows up.
    """)
    return contract


# ============================================================================
# PHASE 3: SAFETY (Steps 7-8)
# ============================================================================

def step_07_stale_snapshot(contract: EnergyTradingContract):
    """A record that changes between read and write is never overwritten."""
    step_header(7, "Stale Snapshots",
        "Settlement writes are guarded by the version of the record they read.")

    meters: MeterLedger = contract.meters
    config: ExchangeConfig = contract.config
    contract.invoke("reportDelta", ["house", "-20"])

    print(">>> accounts, state = engine.snapshot()")
    accounts, state = contract.engine.snapshot()
    result = compute_settlement(accounts, state)
    print(f"computed {len(result.trades)} trade(s) from the snapshot")

    print('>>> contract.invoke("reportDelta", ["house", "-5"])   # arrives mid-cycle')
    meters.accumulate_energy("house", -5)

    writes = [meters.stage(a) for a in result.accounts] + config.stage(result.state_after)
    try:
        contract.store.commit(writes)
    except StaleRecordError as e:
        print(f"StaleRecordError: {e}")

    print("""
    The batch was rejected as a whole: no account and no pool write landed.
    The late report is intact. A fresh cycle picks it up.
    """)
    print('>>> contract.invoke("settle", [])')
    contract.invoke("settle", [])
    print(f"house reportedKwh = {contract.query('reportedKwh', ['house'])}")
    return contract


def step_08_settle_twice(contract: EnergyTradingContract):
    """Settling again without new reports changes nothing."""
    step_header(8, "Settling Twice",
        "A second cycle with no new activity has nothing to match.")

    before = contract.store.snapshot()
    commits = contract.store.commit_count
    contract.invoke("settle", [])
    print(f"store unchanged: {contract.store.snapshot() == before}")
    print(f"new commits:     {contract.store.commit_count - commits}")
    return contract


# ============================================================================
# PHASE 4: QUERIES (Step 9)
# ============================================================================

def step_09_queries(contract: EnergyTradingContract):
    """The read side of the contract."""
    step_header(9, "Queries",
        "Every value is readable as text or JSON without writing anything.")

    for function, args in [
        ("balance", ["solar"]),
        ("reportedKwh", ["wind"]),
        ("exchangeRate", []),
        ("exchangeAccountBalance", []),
        ("meterInfo", ["house"]),
    ]:
        print(f'>>> contract.query("{function}", {args})')
        print(contract.query(function, args))
    return contract


# ============================================================================
# PHASE 5: SCALABILITY (Step 10)
# ============================================================================

def step_10_load_test():
    """Settle a market with many meters."""
    step_header(10, "Load Test",
        f"Settle {CONFIG.load_test_meters:,} meters in one cycle.")

    rng = random.Random(CONFIG.load_test_seed)
    store = InMemoryStore("load")
    config = ExchangeConfig(store)
    config.initialize(Decimal(CONFIG.exchange_rate))
    meters = MeterLedger(store)

    start = time.perf_counter()
    for i in range(CONFIG.load_test_meters):
        account_id = f"m{i:05d}"
        meters.enroll(account_id, account_id, rng.randint(1, CONFIG.load_test_max_rate))
        kwh = rng.randint(-CONFIG.load_test_max_kwh, CONFIG.load_test_max_kwh)
        if kwh:
            meters.accumulate_energy(account_id, kwh)
    setup = time.perf_counter() - start

    before = sum((a.balance for a in meters.list_all()), Decimal("0")) + config.get_pool_balance()

    start = time.perf_counter()
    result = SettlementEngine(meters, config).settle()
    elapsed = time.perf_counter() - start

    after = sum((a.balance for a in meters.list_all()), Decimal("0")) + config.get_pool_balance()

    print(f"setup:          {setup:.2f}s")
    print(f"settle:         {elapsed:.2f}s")
    print(f"trades:         {len(result.trades):,}")
    print(f"energy cleared: {result.total_quantity:,} kWh")
    print(f"fees collected: {format_decimal(result.total_fees)}")
    print(f"conserved:      {before == after}")


def main():
    """Run the complete tutorial."""
    if VERBOSE_MODE:
        logging.basicConfig(level=logging.INFO, format="%(name)s %(levelname)s %(message)s")

    print("=" * 70)
    print("       ENERGY EXCHANGE - INTERACTIVE TUTORIAL")
    print("=" * 70)
    print("""
    Welcome! This tutorial shows how meters trade energy with each other.

    PHASES:
      1-3:   Foundation      - Deploy, enroll, report
      4-6:   Settlement      - Double auction, conservation, carry-forward
      7-8:   Safety          - Stale snapshots, settling twice
      9:     Queries         - Text and JSON reads
      10:    Load Test       - A large market in one cycle
    """)

    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")

    wait_for_enter()

    contract = step_01_deploy()
    wait_for_enter()

    contract = step_02_enroll(contract)
    wait_for_enter()

    contract = step_03_report(contract)
    wait_for_enter()

    contract = step_04_first_settlement(contract)
    wait_for_enter()

    contract = step_05_conservation(contract)
    wait_for_enter()

    contract = step_06_carry_forward(contract)
    wait_for_enter()

    contract = step_07_stale_snapshot(contract)
    wait_for_enter()

    contract = step_08_settle_twice(contract)
    wait_for_enter()

    step_09_queries(contract)
    wait_for_enter()

    step_10_load_test()

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    You've learned:

      - Meters are buyers or sellers depending on the sign of their net energy
      - Trades clear cheapest seller first, at the seller's rate
      - The exchange fee flows into the pool, so money is conserved
      - Unmatched energy carries forward
      - A cycle commits completely or not at all

    Next steps:
      - See energy_exchange/settlement.py for the matching rules
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
