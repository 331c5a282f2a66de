import logging
import time
import uuid
from typing import Optional

import market_store as store
from session_control import ACTIVE, ControlResult

logger = logging.getLogger(__name__)

SIDES = ("buy", "sell")


def submit_trade(
    engine,
    user_id: str,
    symbol: str,
    quantity: int,
    side: str,
    now: Optional[int] = None,
) -> ControlResult:
    """
    Records a participant trade at the current market price. The trade
    carries the sentiment and id of the freshest live headline, which is
    what the analyzer later mines for reaction lag and sentiment bias.
    Funds checks belong to the client, not here.
    """
    if now is None:
        now = int(time.time() * 1000)
    if side not in SIDES:
        return ControlResult(ok=False, reason=f"unknown side {side}")
    if isinstance(quantity, float) and quantity.is_integer():
        quantity = int(quantity)
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        return ControlResult(ok=False, reason=f"quantity must be a whole number, got {quantity!r}")
    if quantity <= 0:
        return ControlResult(ok=False, reason="quantity must be positive")

    with engine.begin() as conn:
        state = store.load_market_state(conn)
        if state.session_status != ACTIVE:
            return ControlResult(ok=False, reason=f"market is {state.session_status}")
        stock = state.prices.get(symbol)
        if stock is None:
            return ControlResult(ok=False, reason=f"unknown symbol {symbol}")

        last_news = state.news[0] if state.news else None
        trade = {
            "id": f"trade-{now}-{uuid.uuid4().hex[:6]}",
            "userId": user_id,
            "symbol": symbol,
            "quantity": quantity,
            "price": stock.price,
            "type": side,
            "timestamp": now,
            "sentiment": last_news.sentiment if last_news else 0.0,
            "newsContext": [last_news.id] if last_news else [],
        }
        store.insert_trade(conn, trade)

    logger.info("[TRADE] %s %s %d %s @ %.4f", user_id, side.upper(), trade["quantity"], symbol, trade["price"])
    return ControlResult(ok=True, trade=trade)
