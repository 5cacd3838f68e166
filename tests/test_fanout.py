import time

from src.data.fanout import run_bounded
from src.errors import DataUnavailable, InsufficientData


def test_results_keep_key_order():
    out = run_bounded({k: (lambda k=k: k * 2) for k in [3, 1, 2]}, max_workers=2)
    assert list(out) == [3, 1, 2]
    assert out == {3: 6, 1: 2, 2: 4}


def test_errors_are_isolated_per_key():
    def boom():
        raise RuntimeError("provider down")

    def short():
        raise InsufficientData("too short")

    out = run_bounded({"ok": lambda: 1, "boom": boom, "short": short})

    assert out["ok"] == 1
    assert isinstance(out["boom"], DataUnavailable)
    assert isinstance(out["short"], InsufficientData)


def test_slow_call_times_out_without_blocking_others():
    t0 = time.monotonic()
    out = run_bounded(
        {"slow": lambda: time.sleep(2.0), "fast": lambda: "x"},
        max_workers=2,
        timeout=0.2,
    )

    assert out["fast"] == "x"
    assert isinstance(out["slow"], DataUnavailable)
    assert time.monotonic() - t0 < 1.5


def test_empty_batch():
    assert run_bounded({}) == {}
