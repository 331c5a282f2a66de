import logging
import random
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import market_store as store
from market_physics import Stock, decay_news, step_stock
from session_control import ACTIVE, ERROR, OK
from sim_config import RETENTION_MS

logger = logging.getLogger(__name__)

NO_SESSION = "no_session"
NOT_ACTIVE = "not_active"


@dataclass
class TickOutcome:
    status: str
    prices: Dict[str, Stock] = field(default_factory=dict)
    archived_news: List[str] = field(default_factory=list)
    moves: Dict[str, float] = field(default_factory=dict)   # clamped fractional move per symbol


@dataclass
class RetentionOutcome:
    status: str
    trades: int = 0
    price_history: int = 0


class TickEngine:
    """
    Advances the market by one discrete step per call.

    Each tick reads the persisted state, decays news, moves every symbol
    and publishes the new price map, all inside a single transaction.
    Nothing carries over in memory between ticks, so an abandoned tick is
    simply recomputed from the store on the next one.
    """

    def __init__(self, engine, rng: Optional[random.Random] = None):
        self.engine = engine
        self.rng = rng or random.Random()

    def tick(self, now: Optional[int] = None) -> TickOutcome:
        if now is None:
            now = int(time.time() * 1000)
        try:
            return self._tick(now)
        except Exception:
            logger.exception("Market tick abandoned; retrying next period")
            return TickOutcome(status=ERROR)

    def _tick(self, now: int) -> TickOutcome:
        with self.engine.begin() as conn:
            session = store.fetch_active_session(conn)
            if session is None:
                logger.info("No active session")
                return TickOutcome(status=NO_SESSION)

            state = store.load_market_state(conn)
            if state.session_status != ACTIVE:
                logger.info("Session not active (%s), skipping tick", state.session_status)
                return TickOutcome(status=NOT_ACTIVE)

            # decay first, against the same snapshot the impact model sees
            news = decay_news(state.news, now)
            store.update_news_decay(conn, news)
            archived = [n.id for n in news if n.archived]
            live = [n for n in news if not n.archived]

            prices = {}
            moves = {}
            history = []
            for sym, stock in state.prices.items():
                new_stock, move = step_stock(stock, live, self.rng)
                prices[sym] = new_stock
                moves[sym] = move
                history.append({
                    "symbol": sym,
                    "price": new_stock.price,
                    "timestamp": now,
                    "sentiment": new_stock.sentiment,
                })

            state.prices = prices
            state.news = live
            state.time = now
            state.last_update = now
            store.save_market_state(conn, state)
            store.append_price_history(conn, history)

        if archived:
            logger.info("Archived %d news item(s): %s", len(archived), ", ".join(archived))
        logger.info("Market tick complete - %d stocks updated", len(prices))
        return TickOutcome(status=OK, prices=prices, archived_news=archived, moves=moves)

    def sweep_retention(self, now: Optional[int] = None) -> RetentionOutcome:
        """Archive trades and drop chart history older than the retention window."""
        if now is None:
            now = int(time.time() * 1000)
        cutoff = now - RETENTION_MS
        try:
            with self.engine.begin() as conn:
                n_trades = store.archive_old_trades(conn, cutoff)
                n_history = store.delete_old_price_history(conn, cutoff)
        except Exception:
            logger.exception("Retention sweep failed; retrying next period")
            return RetentionOutcome(status=ERROR)
        logger.info("Archived %d trades and %d price records", n_trades, n_history)
        return RetentionOutcome(status=OK, trades=n_trades, price_history=n_history)
