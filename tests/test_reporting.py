"""
Report tables built from live engine and ledger state.
Run with: python3 -m pytest tests/test_reporting.py -v
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from presale_app.services.events import EventLog
from presale_app.services.ledger import AssetLedger
from presale_app.services.oracle import StaticPriceFeed
from presale_app.services.presale import PresaleEngine
from presale_app.services.reporting import compute_distribution_report, compute_stage_report
from presale_app.services.runtime import ManualClock, NativeBank
from presale_app.services.units import DEAD_ADDRESS, WAD, normalize_address, parse_ether, parse_units


def addr(n: int) -> str:
    return normalize_address("0x" + f"{n:040x}")


OWNER = addr(1)
ENGINE = addr(2)
BUYER1 = addr(20)
BUYER2 = addr(21)


def make_deployment():
    clock = ManualClock()
    bank = NativeBank()
    events = EventLog(clock)
    feed = StaticPriceFeed(parse_units("2000", 8), clock=clock)
    engine = PresaleEngine(ENGINE, OWNER, feed, bank=bank, clock=clock, events=events)
    ledger = AssetLedger(OWNER, ENGINE, addr(3), addr(4), addr(5), addr(6), DEAD_ADDRESS, events=events)
    engine.set_token(OWNER, ledger)
    ledger.set_lock_exemption(OWNER, ENGINE, True)
    bank.credit(BUYER1, WAD)
    bank.credit(BUYER2, WAD)
    return engine, ledger


# ── Stage report ─────────────────────────────────────────────────────────────

def test_stage_report_empty():
    engine, _ = make_deployment()
    report = compute_stage_report(engine)
    assert report["rows"] == []
    assert report["summary"]["stages"] == 0
    assert report["summary"]["total_tokens_sold"] == 0.0
    assert report["summary"]["avg_price"] == 0.0
    assert report["summary"]["inventory"] == pytest.approx(550_000_000.0)


def test_stage_report_totals():
    engine, _ = make_deployment()
    engine.create_next_stage(OWNER, parse_ether("0.0025"))
    engine.purchase(BUYER1, 1000 * WAD, parse_ether("0.00125"))
    engine.create_next_stage(OWNER, parse_ether("0.005"))
    engine.purchase(BUYER2, 2000 * WAD, parse_ether("0.005"))

    report = compute_stage_report(engine)
    rows = report["rows"]
    summary = report["summary"]

    assert [r["stage_id"] for r in rows] == [1, 2]
    assert [r["active"] for r in rows] == [False, True]
    assert [r["price_formatted"] for r in rows] == ["0.0025", "0.005"]
    assert rows[0]["quote_raised"] == pytest.approx(2.5)
    assert rows[1]["quote_raised"] == pytest.approx(10.0)
    assert rows[1]["native_raised"] == pytest.approx(0.005)
    assert rows[1]["cumulative_tokens_sold"] == pytest.approx(3000.0)
    assert rows[0]["share_of_sold_pct"] == pytest.approx(100 / 3)
    assert all(r["buyers"] == 1 for r in rows)

    assert summary["total_tokens_sold"] == pytest.approx(3000.0)
    assert summary["total_quote_raised"] == pytest.approx(12.5)
    assert summary["total_native_raised"] == pytest.approx(0.00625)
    assert summary["avg_price"] == pytest.approx(12.5 / 3000)
    assert summary["peak_stage_id"] == 2
    assert summary["outstanding_entitlements"] == pytest.approx(3000.0)
    assert summary["native_in_custody"] == pytest.approx(0.00625)
    print(f"  [PASS] avg price={summary['avg_price']:.6f}")


# ── Distribution report ──────────────────────────────────────────────────────

def test_distribution_report_percentages():
    _, ledger = make_deployment()
    report = compute_distribution_report(ledger)
    pct = {k: v["pct_of_initial_supply"] for k, v in report["reserves"].items()}

    assert pct == pytest.approx({
        "presale": 55.0,
        "marketing": 12.0,
        "exchange": 10.0,
        "rewards": 18.0,
        "team": 5.0,
        "burn": 0.0,
    })
    assert report["reserves"]["presale"]["address"] == ENGINE
    assert report["summary"]["reserved_pct"] == pytest.approx(100.0)
    assert report["summary"]["transfer_locked"] is True
    assert report["summary"]["burned"] == 0.0
    assert report["summary"]["holders"] == 5


def test_distribution_report_after_burn():
    _, ledger = make_deployment()
    ledger.set_transfer_lock(OWNER, False)
    ledger.burn(addr(3), 1_000_000 * WAD)

    report = compute_distribution_report(ledger)
    assert report["summary"]["burned"] == pytest.approx(1_000_000.0)
    assert report["summary"]["total_supply"] == pytest.approx(999_000_000.0)
    assert report["reserves"]["marketing"]["pct_of_initial_supply"] == pytest.approx(11.9)


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
