import argparse
import logging
import time

from sqlalchemy import create_engine

from session_control import sweep_stale_sessions
from sim_config import (
    DB,
    LIVENESS_INTERVAL_SEC,
    LOG_LEVEL,
    RETENTION_INTERVAL_SEC,
    TICK_INTERVAL_SEC,
)
from tick_engine import OK, TickEngine

logger = logging.getLogger(__name__)


def run(engine, max_ticks=None, tick_interval=TICK_INTERVAL_SEC):
    """
    Fixed-cadence trigger loop. Ticks never overlap: each one finishes
    before the next is scheduled, and a slow tick delays rather than
    doubles the next.
    """
    market = TickEngine(engine)

    start = time.time()
    next_tick = start
    next_sweep = start + LIVENESS_INTERVAL_SEC
    next_retention = start
    ticks = 0
    ok_ticks = 0

    while max_ticks is None or ticks < max_ticks:
        now = time.time()

        if now >= next_retention:
            market.sweep_retention(int(now * 1000))
            next_retention = now + RETENTION_INTERVAL_SEC

        if now >= next_sweep:
            frozen = sweep_stale_sessions(engine, int(now * 1000)).frozen
            if frozen:
                print(f"[LIVENESS] froze {len(frozen)} session(s): {', '.join(frozen)}")
            next_sweep = now + LIVENESS_INTERVAL_SEC

        if now >= next_tick:
            outcome = market.tick(int(now * 1000))
            ticks += 1
            if outcome.status == OK:
                ok_ticks += 1
                quote = " ".join(f"{s}={st.price:.2f}" for s, st in outcome.prices.items())
                print(f"[TICK {ticks}] {quote}")
            next_tick = max(next_tick + tick_interval, time.time())

        time.sleep(max(0.0, min(next_tick, next_sweep, next_retention) - time.time()))

    return ok_ticks


def main():
    p = argparse.ArgumentParser(description="Run the market tick scheduler")
    p.add_argument("--db", default=DB, help="SQLAlchemy URL of the market store")
    p.add_argument("--ticks", type=int, default=None, help="Stop after N ticks (default: run forever)")
    p.add_argument("--interval", type=float, default=TICK_INTERVAL_SEC, help="Seconds between ticks")
    args = p.parse_args()

    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s - %(levelname)s - %(name)s - %(message)s")

    print(f"\n=== MARKET ENGINE | {args.db} | every {args.interval:.1f}s ===")
    try:
        done = run(create_engine(args.db), max_ticks=args.ticks, tick_interval=args.interval)
    except KeyboardInterrupt:
        print("Stopped.")
        return
    print(f"Ran {done} active tick(s).")


if __name__ == "__main__":
    main()
