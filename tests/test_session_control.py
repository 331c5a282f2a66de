from sqlalchemy.exc import OperationalError

import market_store as store
import session_control as control
from sim_config import BASELINE_PRICES, STALE_HEARTBEAT_MS
from tick_engine import NO_SESSION, NOT_ACTIVE, OK, TickEngine
from trade_desk import submit_trade


def market_status(engine):
    with engine.begin() as conn:
        return store.load_market_state(conn)


def test_claim_is_exclusive(engine):
    first = control.claim(engine, "alice", now=0)
    second = control.claim(engine, "bob", now=1)
    assert first.ok
    assert not second.ok
    assert "alice" in second.reason
    assert market_status(engine).controller_id == "alice"


def test_claim_requires_admin_role(engine):
    res = control.claim(engine, "mallory", role="participant", now=0)
    assert not res.ok
    with engine.begin() as conn:
        assert store.fetch_active_session(conn) is None


def test_reclaim_by_controller_refreshes_lease(engine):
    control.claim(engine, "alice", now=0)
    res = control.claim(engine, "alice", now=500)
    assert res.ok
    assert res.session.last_heartbeat == 500


def test_start_is_controller_only(engine):
    control.claim(engine, "alice", now=0)
    assert not control.start(engine, "bob", now=1).ok
    assert control.start(engine, "alice", now=1).ok
    state = market_status(engine)
    assert state.session_status == control.ACTIVE
    assert {s: st.price for s, st in state.prices.items()} == BASELINE_PRICES


def test_start_without_claim_is_rejected(engine):
    res = control.start(engine, "alice", now=0)
    assert not res.ok
    assert "claim" in res.reason


def test_pause_and_resume(live_market):
    engine = live_market
    TickEngine(engine).tick(1000)
    moved = {s: st.price for s, st in market_status(engine).prices.items()}

    assert control.pause(engine, "alice", now=2000).ok
    assert not control.pause(engine, "alice", now=2001).ok
    assert TickEngine(engine).tick(3000).status == NOT_ACTIVE

    # resuming from paused keeps prices
    assert control.start(engine, "alice", now=4000).ok
    assert {s: st.price for s, st in market_status(engine).prices.items()} == moved


def test_start_twice_is_rejected(live_market):
    res = control.start(live_market, "alice", now=5)
    assert not res.ok
    assert "active" in res.reason


def test_reset_restores_baseline(live_market):
    engine = live_market
    control.inject_news(engine, "alice", "Rate cut", sentiment=0.9, optics=1.0, now=10)
    submit_trade(engine, "bob", "TECH", 10, "buy", now=20)
    ticker = TickEngine(engine)
    for t in range(1, 6):
        ticker.tick(t * 1000)

    assert control.reset(engine, "alice", now=9000).ok

    state = market_status(engine)
    assert state.session_status == control.IDLE
    assert state.controller_id is None
    assert state.news == []
    assert {s: st.price for s, st in state.prices.items()} == BASELINE_PRICES
    with engine.begin() as conn:
        trades = store.fetch_trades(conn)
        assert store.fetch_active_session(conn) is None
    assert len(trades) == 1
    assert trades[0]["archived"]

    # lease released: anyone may claim again
    assert control.claim(engine, "bob", now=9500).ok


def test_end_requires_reset_before_restart(live_market):
    engine = live_market
    assert control.end(engine, "alice", now=100).ok
    assert market_status(engine).session_status == control.ENDED
    assert TickEngine(engine).tick(200).status == NO_SESSION

    assert control.claim(engine, "bob", now=300).ok
    assert not control.start(engine, "bob", now=301).ok
    assert control.reset(engine, "bob", now=302).ok
    assert control.claim(engine, "bob", now=303).ok
    assert control.start(engine, "bob", now=304).ok


def test_heartbeat_controller_only(live_market):
    assert control.heartbeat(live_market, "alice", now=60_000).ok
    assert not control.heartbeat(live_market, "bob", now=60_000).ok


def test_inject_news_validation(live_market):
    engine = live_market
    assert not control.inject_news(engine, "bob", "x", sentiment=0.1, now=1).ok
    assert not control.inject_news(engine, "alice", "x", sentiment=1.5, now=1).ok
    assert not control.inject_news(engine, "alice", "x", sentiment=0.1, optics=-0.1, now=1).ok
    assert not control.inject_news(engine, "alice", "x", sentiment=0.1, target="CRYPTO", now=1).ok
    assert not control.inject_news(engine, "alice", "  ", sentiment=0.1, now=1).ok

    res = control.inject_news(engine, "alice", "Oil glut", sentiment=-0.4, optics=0.7,
                              target="ENERGY", now=42)
    assert res.ok
    assert res.news.decay == 1.0
    [live] = market_status(engine).news
    assert live.id == res.news.id
    assert live.target == "ENERGY"
    assert live.timestamp == 42


def test_sweep_freezes_stale_controller(live_market):
    engine = live_market
    assert control.sweep_stale_sessions(engine, now=STALE_HEARTBEAT_MS - 1).frozen == []

    outcome = control.sweep_stale_sessions(engine, now=STALE_HEARTBEAT_MS + 1)
    assert outcome.status == control.OK
    frozen = outcome.frozen
    assert len(frozen) == 1

    state = market_status(engine)
    assert state.session_status == control.PAUSED
    assert state.note == control.FROZEN_NOTE
    assert state.controller_id is None
    with engine.begin() as conn:
        assert store.fetch_active_session(conn) is None
        lost = store.fetch_session(conn, frozen[0])
    assert lost.status == control.LOST_CONTROLLER
    assert not lost.active

    # never resumes on its own
    assert TickEngine(engine).tick(STALE_HEARTBEAT_MS + 2000).status == NO_SESSION
    assert not control.start(engine, "alice", now=STALE_HEARTBEAT_MS + 3000).ok

    assert control.claim(engine, "bob", now=STALE_HEARTBEAT_MS + 4000).ok
    assert control.start(engine, "bob", now=STALE_HEARTBEAT_MS + 5000).ok
    assert TickEngine(engine).tick(STALE_HEARTBEAT_MS + 6000).status == OK


def test_heartbeat_keeps_lease_alive(live_market):
    engine = live_market
    control.heartbeat(engine, "alice", now=STALE_HEARTBEAT_MS)
    assert control.sweep_stale_sessions(engine, now=STALE_HEARTBEAT_MS + 10).frozen == []
    assert market_status(engine).session_status == control.ACTIVE


def test_sweep_reports_store_failure():
    class DownEngine:
        def begin(self):
            raise OperationalError("SELECT 1", {}, Exception("store unavailable"))

    outcome = control.sweep_stale_sessions(DownEngine(), now=STALE_HEARTBEAT_MS + 1)
    assert outcome.status == control.ERROR
    assert outcome.frozen == []
