import json

import market_admin
from run_market import run


def test_run_loop_stops_after_n_ticks(live_market, capsys):
    assert run(live_market, max_ticks=3, tick_interval=0.0) == 3
    assert "[TICK 3]" in capsys.readouterr().out


def test_run_loop_counts_only_active_ticks(engine):
    assert run(engine, max_ticks=2, tick_interval=0.0) == 0


def test_admin_session_flow(tmp_path, capsys):
    db = f"sqlite:///{tmp_path / 'db' / 'market.db'}"
    out_file = tmp_path / "export.json"

    def admin(*args):
        return market_admin.main(["--db", db, *args])

    assert admin("init-db") == 0
    assert admin("claim", "alice") == 0
    assert admin("claim", "bob") == 1
    assert admin("start", "alice") == 0
    assert admin("inject-news", "alice", "Chip shortage", "--sentiment", "-0.6",
                 "--optics", "0.9", "--target", "TECH") == 0
    assert admin("inject-news", "alice", "Bad", "--sentiment", "3") == 1
    assert admin("trade", "bob", "TECH", "25", "buy") == 0
    assert admin("tick") == 0
    assert admin("status") == 0
    assert admin("pause", "alice") == 0
    assert admin("export", "--out", str(out_file)) == 0

    out = capsys.readouterr().out
    assert "REJECTED: controller already held by alice" in out
    assert "tick: ok" in out

    data = json.loads(out_file.read_text())
    assert data["metadata"]["totalTrades"] == 1
    assert data["trades"][0]["sentiment"] == -0.6


def test_admin_sweeps_fail_on_dead_store(tmp_path, capsys):
    db = f"sqlite:///{tmp_path / 'missing' / 'market.db'}"

    assert market_admin.main(["--db", db, "retention"]) == 1
    assert market_admin.main(["--db", db, "sweep"]) == 1
    assert market_admin.main(["--db", db, "tick"]) == 1

    out = capsys.readouterr().out
    assert "retention: error" in out
    assert "sweep: error" in out
