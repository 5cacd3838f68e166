from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

import pandas as pd

# Ensure repo root is on sys.path so "import src" works when running this file directly.
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from src.config.settings import Settings
from src.db.engine import get_engine
from src.db.schema import create_all
from src.errors import InvalidExecution
from src.ledger.importer import LedgerImporter
from src.ledger.store import SqlLedgerStore
from src.ledger.types import execution_from_mapping

logger = logging.getLogger("import_executions")


def load_executions(path: Path):
    """Normalises a broker tradebook CSV; malformed rows are logged and counted."""
    df = pd.read_csv(path)
    executions = []
    bad = 0
    for i, row in enumerate(df.to_dict(orient="records")):
        try:
            executions.append(execution_from_mapping(row))
        except InvalidExecution as e:
            logger.warning("row %d skipped: %s", i, e)
            bad += 1

    # stable: same-timestamp executions keep file order
    executions.sort(key=lambda ex: ex.timestamp)
    return executions, bad


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--csv", required=True)
    ap.add_argument("--user", required=True)
    ap.add_argument("--db-url", default=None)
    ap.add_argument("--batch-size", type=int, default=None)
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    settings = Settings()
    engine = get_engine(args.db_url)
    create_all(engine)

    executions, bad = load_executions(Path(args.csv))

    importer = LedgerImporter(
        SqlLedgerStore(engine),
        batch_size=args.batch_size or settings.import_batch_size,
    )
    summary = importer.import_executions(args.user, executions)

    payload = asdict(summary)
    payload["unparsed_rows"] = bad
    print(json.dumps(payload, indent=2))


if __name__ == "__main__":
    main()
