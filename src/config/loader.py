from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "configs" / "analytics.yaml"


def load_yaml(path: str | Path) -> dict[str, Any]:
    p = Path(path)
    data = yaml.safe_load(p.read_text())
    if not isinstance(data, dict):
        raise ValueError("Config must be a YAML mapping at the top level.")
    return data


def load_sector_map(cfg: dict[str, Any]) -> dict[str, str]:
    """
    Flattens the `sectors` section into symbol -> sector.

    Accepts either {sector: [symbols...]} or {symbol: sector}.
    """
    raw = cfg.get("sectors", {}) or {}
    if not isinstance(raw, dict):
        raise ValueError("`sectors` must be a mapping.")

    out: dict[str, str] = {}
    for key, value in raw.items():
        if isinstance(value, (list, tuple)):
            for sym in value:
                out[str(sym).upper()] = str(key)
        else:
            out[str(key).upper()] = str(value)
    return out


def simulation_params(cfg: dict[str, Any]) -> dict[str, float | None]:
    sim = cfg.get("simulation", {}) or {}

    def _opt(name: str) -> float | None:
        v = sim.get(name)
        return None if v in (None, "null") else float(v)

    return {
        "stop_loss_pct": _opt("stop_loss_pct"),
        "target_pct": _opt("target_pct"),
        "trailing_pct": _opt("trailing_pct"),
    }
