import importlib.util
import os
import sys

from conftest import DAY1_MS, ROOT_DIR

_spec = importlib.util.spec_from_file_location("daily_pnl", os.path.join(ROOT_DIR, "scripts", "daily_pnl.py"))
daily_pnl = importlib.util.module_from_spec(_spec)
_spec.loader.exec_module(daily_pnl)

DAY_MS = 86_400_000


def test_daily_table(tmp_path, monkeypatch, capsys):
    path = tmp_path / "smc_BTCUSDT.csv"
    path.write_text(
        "side,exit_time,pnl\n"
        f"LONG,{DAY1_MS + 1000},10\n"
        f"SHORT,{DAY1_MS + 2000},-5\n"
        f"LONG,{DAY1_MS + DAY_MS + 10},4\n"
        "LONG,,7\n",
        encoding="utf-8",
    )
    monkeypatch.setattr(sys, "argv", ["daily_pnl.py", str(path), "1000"])
    assert daily_pnl.main() == 0
    out = capsys.readouterr().out.splitlines()
    assert out[0] == "day,trades,winrate%,net_pnl,profit_factor"
    assert out[1] == "2024-01-01,2,50.00,5.0000,2.000"
    assert out[2] == "2024-01-02,1,100.00,4.0000,inf"
    assert "overall_trades=3 overall_net=+9.0000" in out[-1]


def test_usage_without_args(monkeypatch, capsys):
    monkeypatch.setattr(sys, "argv", ["daily_pnl.py"])
    assert daily_pnl.main() == 1
    assert "Usage" in capsys.readouterr().out
