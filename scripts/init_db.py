import os

from sqlalchemy import create_engine, text

from sim_config import BASELINE_PRICES, DB

ddl = """
CREATE TABLE IF NOT EXISTS sessions (
  id TEXT PRIMARY KEY,
  controller_id TEXT,
  active INTEGER NOT NULL DEFAULT 0,
  status TEXT NOT NULL,          -- idle / active / paused / ended / lost_controller
  start_time INTEGER,            -- unix ms
  last_heartbeat INTEGER,        -- unix ms
  note TEXT
);

CREATE TABLE IF NOT EXISTS market_state (
  id INTEGER PRIMARY KEY CHECK (id = 1),
  time INTEGER,
  session_status TEXT NOT NULL,
  controller_id TEXT,
  last_update INTEGER,
  note TEXT
);

CREATE TABLE IF NOT EXISTS stock_prices (
  symbol TEXT PRIMARY KEY,
  price REAL NOT NULL,
  change REAL NOT NULL DEFAULT 0,
  change_percent REAL NOT NULL DEFAULT 0,
  sentiment REAL NOT NULL DEFAULT 0,
  optics REAL NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS news_items (
  id TEXT PRIMARY KEY,
  headline TEXT NOT NULL,
  description TEXT,
  source TEXT,
  sentiment REAL NOT NULL,
  optics REAL NOT NULL,
  target TEXT NOT NULL,
  timestamp INTEGER NOT NULL,    -- unix ms
  decay REAL NOT NULL DEFAULT 1,
  archived INTEGER NOT NULL DEFAULT 0,
  injected_by TEXT
);

CREATE TABLE IF NOT EXISTS price_history (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  symbol TEXT NOT NULL,
  price REAL NOT NULL,
  timestamp INTEGER NOT NULL,
  sentiment REAL NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS ix_price_history_symbol_ts ON price_history(symbol, timestamp);

CREATE TABLE IF NOT EXISTS trades (
  id TEXT PRIMARY KEY,
  user_id TEXT NOT NULL,
  symbol TEXT NOT NULL,
  quantity INTEGER NOT NULL,
  price REAL NOT NULL,
  type TEXT NOT NULL,            -- buy / sell
  timestamp INTEGER NOT NULL,
  sentiment REAL NOT NULL DEFAULT 0,
  news_context TEXT NOT NULL DEFAULT '[]',  -- JSON list of news ids
  archived INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS ix_trades_ts ON trades(timestamp)
"""


def init_db(engine) -> None:
    stmts = [s.strip() for s in ddl.split(";") if s.strip()]
    with engine.begin() as conn:
        for s in stmts:
            conn.execute(text(s))
        conn.execute(text("""
            INSERT OR IGNORE INTO market_state(id, time, session_status, controller_id, last_update)
            VALUES (1, 0, 'idle', NULL, 0)
        """))
        for sym, price in BASELINE_PRICES.items():
            conn.execute(text(
                "INSERT OR IGNORE INTO stock_prices(symbol, price) VALUES(:s, :p)"
            ), {"s": sym, "p": price})


def main(db_url: str = DB):
    if db_url.startswith("sqlite:///"):
        folder = os.path.dirname(db_url[len("sqlite:///"):])
        if folder:
            os.makedirs(folder, exist_ok=True)
    init_db(create_engine(db_url))
    print(f"DB initialized: {db_url}")


if __name__ == "__main__":
    main()
