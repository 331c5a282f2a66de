import math
import random
from dataclasses import dataclass, replace
from typing import List, Optional, Tuple

from sim_config import (
    ARCHIVE_FLOOR,
    ATTENTION_THRESHOLD,
    DRIFT,
    GAIN_DAMPING,
    HALF_LIFE_MS,
    IMPACT_CAP,
    LOSS_AMPLIFICATION,
    MARKET_TARGET,
    MAX_TICK_MOVE,
    MEAN_REVERSION,
    OPTICS_FADE,
    PRICE_FLOOR,
    REACTION_REALIZATION,
    WALK_SIGMA,
)


@dataclass
class Stock:
    symbol: str
    price: float
    change: float = 0.0
    change_percent: float = 0.0
    sentiment: float = 0.0    # -1..1, display only
    optics: float = 0.0       # 0..1, display only


@dataclass
class NewsItem:
    id: str
    headline: str
    sentiment: float          # -1..1
    optics: float             # 0..1
    target: str               # "market" or a symbol
    timestamp: int            # unix ms
    decay: float = 1.0
    archived: bool = False
    description: str = ""
    source: str = "breaking"


@dataclass
class NewsImpact:
    lagged: float             # realized this tick
    sentiment: float          # display value


def clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def news_decay(age_ms: float, half_life_ms: float = HALF_LIFE_MS) -> float:
    # 0.5 ** (age / half_life); age is clamped so future timestamps read as fresh
    if half_life_ms <= 0:
        return 0.0
    return 0.5 ** (max(0.0, age_ms) / half_life_ms)


def decay_news(items: List[NewsItem], now_ms: int) -> List[NewsItem]:
    """
    Recomputes decay for every headline from its age, never incrementally,
    so a skipped tick cannot drift the model. Headlines under the archive
    floor come back pinned at decay=0 and archived=True.
    """
    out = []
    for item in items:
        if item.archived:
            out.append(item)
            continue
        d = news_decay(now_ms - item.timestamp)
        if d < ARCHIVE_FLOOR:
            out.append(replace(item, decay=0.0, archived=True))
        else:
            out.append(replace(item, decay=d))
    return out


def gaussian(mu: float = 0.0, sigma: float = 1.0, rng: Optional[random.Random] = None) -> float:
    # Box-Muller over two uniforms in (0,1); redraw exact zeros to keep log() finite
    rng = rng or random
    u = 0.0
    v = 0.0
    while u == 0.0:
        u = rng.random()
    while v == 0.0:
        v = rng.random()
    z0 = math.sqrt(-2.0 * math.log(u)) * math.cos(2.0 * math.pi * v)
    return z0 * sigma + mu


def base_price_change(rng: Optional[random.Random] = None) -> float:
    random_walk = gaussian(0.0, WALK_SIGMA, rng)
    return (DRIFT + random_walk) / 100.0


def price_impact(symbol: str, news: List[NewsItem]) -> NewsImpact:
    """
    impact = sum_i sentiment_i * decay_i * optics_i * IMPACT_CAP
    over headlines aimed at the whole market or at this symbol, then
    loss aversion on the aggregate and partial realization.
    """
    raw = 0.0
    for item in news:
        if item.archived:
            continue
        if item.target == MARKET_TARGET or item.target == symbol:
            raw += item.sentiment * item.decay * item.optics * IMPACT_CAP

    if raw > 0:
        raw *= GAIN_DAMPING
    elif raw < 0:
        raw *= LOSS_AMPLIFICATION

    return NewsImpact(
        lagged=raw * REACTION_REALIZATION,
        sentiment=clamp(raw * 10.0, -1.0, 1.0),
    )


def attention_faded(news: List[NewsItem]) -> bool:
    return not any(n.decay > ATTENTION_THRESHOLD for n in news if not n.archived)


def step_stock(
    stock: Stock,
    news: List[NewsItem],
    rng: Optional[random.Random] = None,
) -> Tuple[Stock, float]:
    """
    One tick for one symbol. Returns the new Stock and the clamped
    fractional move that produced it.
    """
    impact = price_impact(stock.symbol, news)
    total = base_price_change(rng) + impact.lagged
    if attention_faded(news):
        total *= MEAN_REVERSION
    total = clamp(total, -MAX_TICK_MOVE, MAX_TICK_MOVE)

    new_price = max(PRICE_FLOOR, stock.price * (1.0 + total))
    change = new_price - stock.price
    return (
        Stock(
            symbol=stock.symbol,
            price=new_price,
            change=change,
            change_percent=change / stock.price * 100.0,
            sentiment=impact.sentiment,
            optics=stock.optics * OPTICS_FADE,
        ),
        total,
    )
