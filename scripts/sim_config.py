import os

DB = os.getenv("MARKET_DB", "sqlite:///data/db/market.db")
LOG_LEVEL = os.getenv("MARKET_LOG_LEVEL", "INFO")

# MARKET SETTINGS
BASELINE_PRICES = {
    "TECH": 100.0,
    "ENERGY": 80.0,
    "FINANCE": 120.0,
}
MARKET_TARGET = "market"

# NEWS DECAY
HALF_LIFE_MS = 120_000      # 2 minutes
ARCHIVE_FLOOR = 0.01        # below this a headline is archived

# PRICE IMPACT
IMPACT_CAP = 0.02           # one max-optics headline moves price <= 2%
GAIN_DAMPING = 0.7          # loss aversion: good news under-weighted
LOSS_AMPLIFICATION = 1.3    # ... bad news over-weighted
ATTENTION_THRESHOLD = 0.3   # decay above this still holds attention
MEAN_REVERSION = 0.95
REACTION_REALIZATION = 0.6  # share of impact realized this tick; rest is dropped

# RANDOM WALK
DRIFT = 0.001
WALK_SIGMA = 0.015

# SAFETY
MAX_TICK_MOVE = 0.05
PRICE_FLOOR = 0.01
OPTICS_FADE = 0.95

# CADENCE
TICK_INTERVAL_SEC = 1.0
LIVENESS_INTERVAL_SEC = 300.0
RETENTION_INTERVAL_SEC = 86_400.0
STALE_HEARTBEAT_MS = int(float(os.getenv("MARKET_STALE_HEARTBEAT_SEC", "300")) * 1000)

# RETENTION
RETENTION_MS = 7 * 24 * 60 * 60 * 1000
RETENTION_BATCH = 1000
HISTORY_WINDOW = 60         # chart points per symbol
