from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

# Ensure repo root is on sys.path so "import src" works when running this file directly.
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from src.backtest.metrics import metrics_to_dict
from src.backtest.simulator import simulate_from_ledger, simulate_with_prices
from src.config.loader import DEFAULT_CONFIG, load_yaml, simulation_params
from src.config.settings import Settings
from src.data.provider import InMemoryPriceProvider
from src.data.yfinance_provider import YFinancePriceProvider
from src.db.engine import get_engine
from src.ledger.store import SqlLedgerStore


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--user", required=True)
    ap.add_argument("--config", default=str(DEFAULT_CONFIG))
    ap.add_argument("--mode", choices=["ledger", "prices"], default="ledger")
    ap.add_argument("--bars-dir", default=None, help="directory of <SYMBOL>.csv bars (offline)")
    ap.add_argument("--db-url", default=None)
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    settings = Settings()
    params = simulation_params(load_yaml(args.config))
    trades = SqlLedgerStore(get_engine(args.db_url)).closed_trades(args.user)

    if args.mode == "ledger":
        result = simulate_from_ledger(
            trades, stop_loss_pct=params["stop_loss_pct"], target_pct=params["target_pct"]
        )
    else:
        provider = (
            InMemoryPriceProvider.from_csv_dir(args.bars_dir)
            if args.bars_dir
            else YFinancePriceProvider(suffix=settings.symbol_suffix, timeout=settings.price_timeout_seconds)
        )
        result = simulate_with_prices(
            trades,
            provider,
            stop_loss_pct=params["stop_loss_pct"],
            target_pct=params["target_pct"],
            trailing_pct=params["trailing_pct"],
            max_workers=settings.price_max_workers,
            timeout=settings.price_timeout_seconds,
        )

    payload = {
        "config_path": str(args.config),
        "mode": args.mode,
        "params": params,
        "original_pl": result.original_pl,
        "simulated_pl": result.simulated_pl,
        "difference": result.difference,
        "difference_percent": result.difference_percent,
        "trades_affected": result.trades_affected,
        "total_trades": result.total_trades,
        "fallbacks": result.fallbacks,
        "original_metrics": metrics_to_dict(result.original_metrics),
        "simulated_metrics": metrics_to_dict(result.simulated_metrics),
        "details": [asdict(d) for d in result.details],
    }
    print(json.dumps(payload, indent=2, default=str))


if __name__ == "__main__":
    main()
