"""
Durable store for the market simulation.

Every function takes an open SQLAlchemy connection so callers decide the
transaction boundary: a tick wraps all of its reads and writes in one
`engine.begin()` block, which is what makes the price-map publish atomic.
"""
import json
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy import text

from market_physics import NewsItem, Stock
from sim_config import BASELINE_PRICES, HISTORY_WINDOW, RETENTION_BATCH


@dataclass
class Session:
    id: str
    controller_id: Optional[str]
    active: bool
    status: str
    start_time: Optional[int] = None
    last_heartbeat: Optional[int] = None
    note: Optional[str] = None


@dataclass
class MarketState:
    prices: Dict[str, Stock]
    news: List[NewsItem] = field(default_factory=list)   # recent-first
    time: int = 0
    session_status: str = "idle"
    controller_id: Optional[str] = None
    last_update: int = 0
    note: Optional[str] = None


SESSION_COLUMNS = {"controller_id", "active", "status", "start_time", "last_heartbeat", "note"}
MARKET_COLUMNS = {"time", "session_status", "controller_id", "last_update", "note"}


def _set_clause(fields: dict, allowed: set) -> str:
    bad = set(fields) - allowed
    if bad:
        raise ValueError(f"Unknown columns: {sorted(bad)}")
    return ", ".join(f"{k}=:{k}" for k in fields)


# =========================
# Sessions
# =========================
def _session_from_row(r) -> Session:
    return Session(
        id=r.id,
        controller_id=r.controller_id,
        active=bool(r.active),
        status=r.status,
        start_time=r.start_time,
        last_heartbeat=r.last_heartbeat,
        note=r.note,
    )


def fetch_active_session(conn) -> Optional[Session]:
    row = conn.execute(text("""
        SELECT id, controller_id, active, status, start_time, last_heartbeat, note
        FROM sessions
        WHERE active = 1
        ORDER BY start_time DESC
        LIMIT 1
    """)).fetchone()
    return _session_from_row(row) if row else None


def fetch_session(conn, session_id: str) -> Optional[Session]:
    row = conn.execute(text("""
        SELECT id, controller_id, active, status, start_time, last_heartbeat, note
        FROM sessions WHERE id = :id
    """), {"id": session_id}).fetchone()
    return _session_from_row(row) if row else None


def fetch_stale_sessions(conn, cutoff_ms: int) -> List[Session]:
    rows = conn.execute(text("""
        SELECT id, controller_id, active, status, start_time, last_heartbeat, note
        FROM sessions
        WHERE active = 1 AND last_heartbeat < :cutoff
    """), {"cutoff": cutoff_ms}).fetchall()
    return [_session_from_row(r) for r in rows]


def insert_session(conn, s: Session) -> None:
    conn.execute(text("""
        INSERT INTO sessions(id, controller_id, active, status, start_time, last_heartbeat, note)
        VALUES(:id, :cid, :active, :status, :start, :hb, :note)
    """), {
        "id": s.id, "cid": s.controller_id, "active": int(s.active), "status": s.status,
        "start": s.start_time, "hb": s.last_heartbeat, "note": s.note,
    })


def update_session(conn, session_id: str, **fields) -> None:
    if "active" in fields:
        fields["active"] = int(fields["active"])
    params = dict(fields, id=session_id)
    conn.execute(text(
        f"UPDATE sessions SET {_set_clause(fields, SESSION_COLUMNS)} WHERE id = :id"
    ), params)


# =========================
# Market state
# =========================
def load_prices(conn) -> Dict[str, Stock]:
    rows = conn.execute(text("""
        SELECT symbol, price, change, change_percent, sentiment, optics
        FROM stock_prices ORDER BY symbol
    """)).fetchall()
    return {
        r.symbol: Stock(
            symbol=r.symbol, price=float(r.price), change=float(r.change),
            change_percent=float(r.change_percent), sentiment=float(r.sentiment),
            optics=float(r.optics),
        )
        for r in rows
    }


def load_market_state(conn) -> MarketState:
    row = conn.execute(text("""
        SELECT time, session_status, controller_id, last_update, note
        FROM market_state WHERE id = 1
    """)).fetchone()
    if not row:
        raise RuntimeError("market_state row missing. Run init_db.py first.")
    return MarketState(
        prices=load_prices(conn),
        news=fetch_live_news(conn),
        time=int(row.time or 0),
        session_status=row.session_status,
        controller_id=row.controller_id,
        last_update=int(row.last_update or 0),
        note=row.note,
    )


def save_prices(conn, prices: Dict[str, Stock]) -> None:
    for st in prices.values():
        conn.execute(text("""
            INSERT OR REPLACE INTO stock_prices(symbol, price, change, change_percent, sentiment, optics)
            VALUES(:s, :p, :c, :cp, :sent, :opt)
        """), {
            "s": st.symbol, "p": st.price, "c": st.change, "cp": st.change_percent,
            "sent": st.sentiment, "opt": st.optics,
        })


def update_market_state(conn, **fields) -> None:
    conn.execute(text(
        f"UPDATE market_state SET {_set_clause(fields, MARKET_COLUMNS)} WHERE id = 1"
    ), fields)


def save_market_state(conn, state: MarketState) -> None:
    save_prices(conn, state.prices)
    update_market_state(
        conn,
        time=state.time,
        session_status=state.session_status,
        controller_id=state.controller_id,
        last_update=state.last_update,
        note=state.note,
    )


def reset_prices(conn, baseline: Optional[Dict[str, float]] = None) -> Dict[str, Stock]:
    baseline = baseline or BASELINE_PRICES
    prices = {sym: Stock(symbol=sym, price=float(p)) for sym, p in baseline.items()}
    conn.execute(text("DELETE FROM stock_prices"))
    save_prices(conn, prices)
    return prices


# =========================
# News
# =========================
def _news_from_row(r) -> NewsItem:
    return NewsItem(
        id=r.id,
        headline=r.headline,
        sentiment=float(r.sentiment),
        optics=float(r.optics),
        target=r.target,
        timestamp=int(r.timestamp),
        decay=float(r.decay),
        archived=bool(r.archived),
        description=r.description or "",
        source=r.source or "",
    )


_NEWS_SELECT = """
    SELECT id, headline, description, source, sentiment, optics, target,
           timestamp, decay, archived
    FROM news_items
"""


def fetch_live_news(conn) -> List[NewsItem]:
    rows = conn.execute(text(
        _NEWS_SELECT + " WHERE archived = 0 ORDER BY timestamp DESC, id DESC"
    )).fetchall()
    return [_news_from_row(r) for r in rows]


def fetch_recent_news(conn, limit: int) -> List[NewsItem]:
    rows = conn.execute(text(
        _NEWS_SELECT + " ORDER BY timestamp DESC, id DESC LIMIT :lim"
    ), {"lim": limit}).fetchall()
    return [_news_from_row(r) for r in rows]


def insert_news(conn, item: NewsItem, injected_by: Optional[str] = None) -> None:
    conn.execute(text("""
        INSERT INTO news_items(id, headline, description, source, sentiment, optics,
                               target, timestamp, decay, archived, injected_by)
        VALUES(:id, :h, :d, :src, :s, :o, :t, :ts, :decay, :arch, :by)
    """), {
        "id": item.id, "h": item.headline, "d": item.description, "src": item.source,
        "s": item.sentiment, "o": item.optics, "t": item.target, "ts": item.timestamp,
        "decay": item.decay, "arch": int(item.archived), "by": injected_by,
    })


def update_news_decay(conn, items: List[NewsItem]) -> None:
    for item in items:
        conn.execute(text("""
            UPDATE news_items SET decay = :d, archived = :a WHERE id = :id
        """), {"d": item.decay, "a": int(item.archived), "id": item.id})


def archive_all_news(conn) -> int:
    res = conn.execute(text("UPDATE news_items SET decay = 0, archived = 1 WHERE archived = 0"))
    return res.rowcount


def fetch_news(conn) -> List[dict]:
    rows = conn.execute(text("""
        SELECT id, headline, description, source, sentiment, optics, target,
               timestamp, decay, archived, injected_by
        FROM news_items ORDER BY timestamp ASC, id ASC
    """)).fetchall()
    return [
        {
            "id": r.id, "headline": r.headline, "description": r.description or "",
            "source": r.source or "", "sentiment": float(r.sentiment),
            "optics": float(r.optics), "target": r.target, "timestamp": int(r.timestamp),
            "decay": float(r.decay), "archived": bool(r.archived), "injectedBy": r.injected_by,
        }
        for r in rows
    ]


# =========================
# Price history
# =========================
def append_price_history(conn, rows: List[dict]) -> None:
    for row in rows:
        conn.execute(text("""
            INSERT INTO price_history(symbol, price, timestamp, sentiment)
            VALUES(:symbol, :price, :timestamp, :sentiment)
        """), row)


def fetch_price_history(conn, symbol: str, limit: int = HISTORY_WINDOW) -> List[dict]:
    """Latest `limit` points for one symbol, oldest first (chart order)."""
    rows = conn.execute(text("""
        SELECT symbol, price, timestamp, sentiment
        FROM price_history
        WHERE symbol = :s
        ORDER BY timestamp DESC, id DESC
        LIMIT :lim
    """), {"s": symbol, "lim": limit}).fetchall()
    return [
        {"symbol": r.symbol, "price": float(r.price), "timestamp": int(r.timestamp),
         "sentiment": float(r.sentiment)}
        for r in rows
    ][::-1]


def delete_old_price_history(conn, cutoff_ms: int, limit: int = RETENTION_BATCH) -> int:
    res = conn.execute(text("""
        DELETE FROM price_history
        WHERE id IN (SELECT id FROM price_history WHERE timestamp < :cutoff LIMIT :lim)
    """), {"cutoff": cutoff_ms, "lim": limit})
    return res.rowcount


# =========================
# Trades
# =========================
def insert_trade(conn, trade: dict) -> None:
    conn.execute(text("""
        INSERT INTO trades(id, user_id, symbol, quantity, price, type, timestamp, sentiment, news_context)
        VALUES(:id, :uid, :sym, :qty, :px, :type, :ts, :sent, :ctx)
    """), {
        "id": trade["id"], "uid": trade["userId"], "sym": trade["symbol"],
        "qty": int(trade["quantity"]), "px": float(trade["price"]), "type": trade["type"],
        "ts": int(trade["timestamp"]), "sent": float(trade.get("sentiment", 0.0)),
        "ctx": json.dumps(list(trade.get("newsContext", []))),
    })


def fetch_trades(conn, include_archived: bool = True) -> List[dict]:
    where = "" if include_archived else "WHERE archived = 0"
    rows = conn.execute(text(f"""
        SELECT id, user_id, symbol, quantity, price, type, timestamp, sentiment, news_context, archived
        FROM trades {where}
        ORDER BY timestamp ASC, id ASC
    """)).fetchall()
    return [
        {
            "id": r.id, "userId": r.user_id, "symbol": r.symbol, "quantity": int(r.quantity),
            "price": float(r.price), "type": r.type, "timestamp": int(r.timestamp),
            "sentiment": float(r.sentiment), "newsContext": json.loads(r.news_context or "[]"),
            "archived": bool(r.archived),
        }
        for r in rows
    ]


def archive_trades(conn) -> int:
    res = conn.execute(text("UPDATE trades SET archived = 1 WHERE archived = 0"))
    return res.rowcount


def archive_old_trades(conn, cutoff_ms: int, limit: int = RETENTION_BATCH) -> int:
    res = conn.execute(text("""
        UPDATE trades SET archived = 1
        WHERE id IN (
            SELECT id FROM trades WHERE archived = 0 AND timestamp < :cutoff LIMIT :lim
        )
    """), {"cutoff": cutoff_ms, "lim": limit})
    return res.rowcount
