import numpy as np

from presale_app.services.ledger import AssetLedger
from presale_app.services.presale import PresaleEngine
from presale_app.services.units import format_ether, to_float


def compute_stage_report(engine: PresaleEngine):
    """Per-stage sales table in human units (tokens, quote currency, native)."""
    stages = engine.stages()
    n = len(stages)

    tokens = np.zeros(n, dtype=float)
    quote = np.zeros(n, dtype=float)
    native = np.zeros(n, dtype=float)
    prices = np.zeros(n, dtype=float)
    buyers = np.zeros(n, dtype=int)

    for i, stage in enumerate(stages):
        sales = engine.stage_sales(stage.id)
        tokens[i] = to_float(sales.tokens_sold)
        quote[i] = to_float(sales.quote_raised)
        native[i] = to_float(sales.native_raised)
        prices[i] = to_float(stage.price)
        buyers[i] = len(sales.buyers)

    cumulative_tokens = np.cumsum(tokens)
    total_tokens = float(cumulative_tokens[-1]) if n > 0 else 0.0

    rows = []
    for i, stage in enumerate(stages):
        rows.append({
            "stage_id": stage.id,
            "label": f"Stage {stage.id}",
            "active": stage.active,
            "price": float(prices[i]),
            "price_formatted": format_ether(stage.price),
            "tokens_sold": float(tokens[i]),
            "quote_raised": float(quote[i]),
            "native_raised": float(native[i]),
            "buyers": int(buyers[i]),
            "cumulative_tokens_sold": float(cumulative_tokens[i]),
            "share_of_sold_pct": (float(tokens[i]) / total_tokens * 100) if total_tokens > 0 else 0.0,
        })

    total_quote = float(np.sum(quote)) if n > 0 else 0.0
    peak_idx = int(np.argmax(tokens)) if n > 0 else 0

    return {
        "rows": rows,
        "summary": {
            "stages": n,
            "current_stage_id": engine.current_stage_id,
            "total_tokens_sold": total_tokens,
            "total_quote_raised": total_quote,
            "total_native_raised": float(np.sum(native)) if n > 0 else 0.0,
            "avg_price": (total_quote / total_tokens) if total_tokens > 0 else 0.0,
            "peak_stage_id": stages[peak_idx].id if n > 0 else 0,
            "outstanding_entitlements": to_float(engine.outstanding_entitlements()),
            "inventory": to_float(engine.token_balance()),
            "native_in_custody": to_float(engine.native_balance()),
        },
    }


def compute_distribution_report(ledger: AssetLedger):
    """Reserve balances and their share of the initial supply."""
    labels = list(ledger.reserves)
    balances = np.array([to_float(ledger.balance_of(ledger.reserves[k])) for k in labels], dtype=float)
    initial = to_float(ledger.initial_supply)
    shares = balances / initial * 100 if initial > 0 else np.zeros(len(labels), dtype=float)

    return {
        "reserves": {
            label: {
                "address": ledger.reserves[label],
                "balance": float(balances[i]),
                "pct_of_initial_supply": float(shares[i]),
            }
            for i, label in enumerate(labels)
        },
        "summary": {
            "symbol": ledger.symbol,
            "initial_supply": initial,
            "total_supply": to_float(ledger.total_supply),
            "burned": to_float(ledger.burned),
            "holders": len(ledger.holders()),
            "reserved_pct": float(np.sum(shares)),
            "transfer_locked": ledger.transfer_locked,
        },
    }
