from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

# Ensure repo root is on sys.path so "import src" works when running this file directly.
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from src.config.settings import Settings
from src.data.provider import InMemoryPriceProvider
from src.data.yfinance_provider import YFinancePriceProvider
from src.signals.scan import scan_symbols


def build_provider(bars_dir: str | None, settings: Settings):
    if bars_dir:
        return InMemoryPriceProvider.from_csv_dir(bars_dir)
    return YFinancePriceProvider(suffix=settings.symbol_suffix, timeout=settings.price_timeout_seconds)


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("symbols", nargs="+")
    ap.add_argument("--bars-dir", default=None, help="directory of <SYMBOL>.csv bars (offline)")
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    settings = Settings()
    provider = build_provider(args.bars_dir, settings)

    results = scan_symbols(
        [s.upper() for s in args.symbols],
        provider,
        max_workers=settings.price_max_workers,
        timeout=settings.price_timeout_seconds,
    )

    rows = []
    for sym, snap in results.items():
        rows.append(
            {
                "symbol": sym,
                "stage": snap.stage.stage,
                "ma200": round(snap.stage.ma200, 2),
                "price": round(snap.stage.current_price, 2),
                "ma_slope": snap.stage.ma_slope.value,
                "insight": snap.stage.insight,
                "bullish": snap.flags.bullish,
                "bearish": snap.flags.bearish,
                "summary": snap.flags.summary,
                "error": snap.stage.error or snap.flags.error,
            }
        )
    print(json.dumps(rows, indent=2))


if __name__ == "__main__":
    main()
