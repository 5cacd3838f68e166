from datetime import datetime

import numpy as np
import pandas as pd
import pytest

from src.config.loader import DEFAULT_CONFIG, load_sector_map, load_yaml, simulation_params
from src.data.provider import InMemoryPriceProvider
from src.data.yfinance_provider import normalize_symbol
from src.signals.scan import scan_symbols


def test_default_config_loads():
    cfg = load_yaml(DEFAULT_CONFIG)
    sectors = load_sector_map(cfg)

    assert sectors["TCS"] == "IT"
    assert sectors["RELIANCE"] == "Energy"
    assert simulation_params(cfg) == {"stop_loss_pct": 8.0, "target_pct": 20.0, "trailing_pct": None}


def test_sector_map_accepts_symbol_to_sector(tmp_path):
    p = tmp_path / "c.yaml"
    p.write_text("sectors:\n  tcs: IT\n  sbin: Finance\n")
    assert load_sector_map(load_yaml(p)) == {"TCS": "IT", "SBIN": "Finance"}


def test_config_must_be_mapping(tmp_path):
    p = tmp_path / "c.yaml"
    p.write_text("- a\n- b\n")
    with pytest.raises(ValueError):
        load_yaml(p)


def test_normalize_symbol():
    assert normalize_symbol("reliance", ".NS") == "RELIANCE.NS"
    assert normalize_symbol("RELIANCE.NS", ".NS") == "RELIANCE.NS"
    assert normalize_symbol("AAPL") == "AAPL"


def test_scan_isolates_failing_symbols():
    n = 260
    close = np.linspace(100, 200, n)
    bars = pd.DataFrame(
        {
            "ts": pd.date_range("2024-01-01", periods=n, freq="D"),
            "open": close,
            "high": close + 1,
            "low": close - 1,
            "close": close,
            "volume": np.full(n, 1000.0),
        }
    )
    provider = InMemoryPriceProvider({"UP": bars})

    out = scan_symbols(["UP", "NOPE", "UP"], provider, as_of=datetime(2024, 9, 20))

    assert list(out) == ["UP", "NOPE"]
    assert out["UP"].stage.stage == 2
    assert out["UP"].flags.summary == "Bullish"
    assert out["NOPE"].stage.stage is None
    assert out["NOPE"].flags.error
