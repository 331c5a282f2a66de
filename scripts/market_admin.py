"""
Operator command line for the market controller.

    python market_admin.py init-db
    python market_admin.py claim alice
    python market_admin.py start alice
    python market_admin.py inject-news alice "Chip shortage deepens" --sentiment -0.6 --optics 0.9 --target TECH
    python market_admin.py trade bob TECH 25 buy
    python market_admin.py tick
    python market_admin.py export
"""
import argparse
import logging
import sys

from sqlalchemy import create_engine

import market_store as store
import session_control as control
from export_data import export_data
from init_db import main as init_db_main
from sim_config import DB, LOG_LEVEL, MARKET_TARGET
from tick_engine import ERROR, TickEngine
from trade_desk import submit_trade


def _report(result) -> int:
    if not result.ok:
        print(f"REJECTED: {result.reason}")
        return 1
    s = result.session
    if result.news is not None:
        print(f"OK news={result.news.id}")
    elif result.trade is not None:
        t = result.trade
        print(f"OK {t['type'].upper()} {t['quantity']} {t['symbol']} @ {t['price']:.4f} ({t['id']})")
    elif s is not None:
        print(f"OK session={s.id} controller={s.controller_id} status={s.status}")
    else:
        print("OK")
    return 0


def show_status(engine) -> int:
    with engine.begin() as conn:
        state = store.load_market_state(conn)
        session = store.fetch_active_session(conn)
    print(f"status={state.session_status} controller={state.controller_id} "
          f"session={session.id if session else None} note={state.note or ''}")
    for sym, st in state.prices.items():
        print(f"  {sym:8s} {st.price:10.4f} {st.change_percent:+7.3f}% sentiment={st.sentiment:+.2f}")
    for n in state.news:
        print(f"  [{n.target}] decay={n.decay:.2f} sentiment={n.sentiment:+.2f} :: {n.headline}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Market controller operations")
    p.add_argument("--db", default=DB, help="SQLAlchemy URL of the market store")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("init-db", help="Create tables and seed baseline prices")
    sub.add_parser("status", help="Show market state")

    c = sub.add_parser("claim", help="Become the market controller")
    c.add_argument("identity")
    c.add_argument("--role", default=control.ADMIN_ROLE)

    for name in ("start", "pause", "reset", "end", "heartbeat"):
        sub.add_parser(name, help=f"{name} (controller only)").add_argument("identity")

    n = sub.add_parser("inject-news", help="Inject a headline (controller only)")
    n.add_argument("identity")
    n.add_argument("headline")
    n.add_argument("--sentiment", type=float, default=0.0)
    n.add_argument("--optics", type=float, default=0.5)
    n.add_argument("--target", default=MARKET_TARGET)
    n.add_argument("--description", default="")
    n.add_argument("--source", default="breaking")

    t = sub.add_parser("trade", help="Submit a participant trade")
    t.add_argument("user_id")
    t.add_argument("symbol")
    t.add_argument("quantity", type=int)
    t.add_argument("side", choices=["buy", "sell"])

    sub.add_parser("tick", help="Run one market tick now")
    s = sub.add_parser("sweep", help="Freeze markets behind stale controllers")
    s.add_argument("--stale-after-sec", type=float, default=None)
    sub.add_parser("retention", help="Archive old trades, drop old price history")
    e = sub.add_parser("export", help="Export trades and news to JSON")
    e.add_argument("--out", default=None)
    return p


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s - %(levelname)s - %(message)s")
    engine = create_engine(args.db)

    if args.cmd == "init-db":
        init_db_main(args.db)
        return 0
    if args.cmd == "status":
        return show_status(engine)
    if args.cmd == "claim":
        return _report(control.claim(engine, args.identity, role=args.role))
    if args.cmd in ("start", "pause", "reset", "end", "heartbeat"):
        return _report(getattr(control, args.cmd)(engine, args.identity))
    if args.cmd == "inject-news":
        return _report(control.inject_news(
            engine, args.identity, args.headline,
            sentiment=args.sentiment, optics=args.optics, target=args.target,
            description=args.description, source=args.source,
        ))
    if args.cmd == "trade":
        return _report(submit_trade(engine, args.user_id, args.symbol, args.quantity, args.side))
    if args.cmd == "tick":
        outcome = TickEngine(engine).tick()
        print(f"tick: {outcome.status}")
        for sym, st in outcome.prices.items():
            print(f"  {sym:8s} {st.price:10.4f} {st.change_percent:+7.3f}%")
        return 1 if outcome.status == ERROR else 0
    if args.cmd == "sweep":
        kw = {}
        if args.stale_after_sec is not None:
            kw["stale_after_ms"] = int(args.stale_after_sec * 1000)
        outcome = control.sweep_stale_sessions(engine, **kw)
        if outcome.status == ERROR:
            print("sweep: error")
            return 1
        print(f"froze {len(outcome.frozen)} session(s)")
        return 0
    if args.cmd == "retention":
        outcome = TickEngine(engine).sweep_retention()
        if outcome.status == ERROR:
            print("retention: error")
            return 1
        print(f"Archived {outcome.trades} trades and {outcome.price_history} price records")
        return 0
    if args.cmd == "export":
        print("Saved:", export_data(engine, path=args.out))
        return 0
    return 1


if __name__ == "__main__":
    sys.exit(main())
