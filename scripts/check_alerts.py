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

from src.alerts.evaluator import evaluate_alerts
from src.alerts.notify import LogNotificationSender, SmtpNotificationSender
from src.alerts.store import SqlRuleStore
from src.config.settings import Settings
from src.data.provider import InMemoryPriceProvider
from src.data.yfinance_provider import YFinancePriceProvider
from src.db.engine import get_engine


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--db-url", default=None)
    ap.add_argument("--bars-dir", default=None, help="directory of <SYMBOL>.csv bars (offline)")
    ap.add_argument("--email-to", default=None, help="send notifications by SMTP to this address")
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    settings = Settings()
    provider = (
        InMemoryPriceProvider.from_csv_dir(args.bars_dir)
        if args.bars_dir
        else YFinancePriceProvider(suffix=settings.symbol_suffix, timeout=settings.price_timeout_seconds)
    )

    if args.email_to and settings.smtp_host:
        sender = SmtpNotificationSender.from_settings(settings, resolve_address=lambda _uid: args.email_to)
    else:
        sender = LogNotificationSender()

    summary = evaluate_alerts(
        SqlRuleStore(get_engine(args.db_url)),
        provider,
        sender,
        max_workers=settings.price_max_workers,
        timeout=settings.price_timeout_seconds,
    )
    print(json.dumps(asdict(summary), indent=2))


if __name__ == "__main__":
    main()
