import json
import os
import time
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import create_engine

import market_store as store
from sim_config import DB


def build_export(engine) -> dict:
    with engine.begin() as conn:
        trades = store.fetch_trades(conn)
        news = store.fetch_news(conn)
    return {
        "exportDate": datetime.now(timezone.utc).isoformat(),
        "trades": trades,
        "news": news,
        "metadata": {
            "totalTrades": len(trades),
            "totalNewsItems": len(news),
        },
    }


def export_data(engine, path: Optional[str] = None, out_dir: str = "data/exports") -> str:
    """Writes every trade and headline (archived ones included) for the analyzer."""
    if path is None:
        os.makedirs(out_dir, exist_ok=True)
        path = os.path.join(out_dir, f"market-data-{int(time.time() * 1000)}.json")
    data = build_export(engine)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    return path


def main():
    path = export_data(create_engine(DB))
    print("Saved:", path)


if __name__ == "__main__":
    main()
