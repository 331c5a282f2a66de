"""
Session state machine for the single market controller.

    idle -> active <-> paused
    any  -> idle   (reset)
    any  -> ended  (end)

The controller holds a lease: an `active` session row whose
`last_heartbeat` is refreshed by the controller. A second identity can
only claim once no active session exists, which the liveness sweep
guarantees after the lease goes stale. Operations never raise on a
precondition failure; they return a ControlResult with the reason.
"""
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

import market_store as store
from market_physics import NewsItem
from sim_config import MARKET_TARGET, STALE_HEARTBEAT_MS

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"

IDLE = "idle"
ACTIVE = "active"
PAUSED = "paused"
ENDED = "ended"
LOST_CONTROLLER = "lost_controller"

FROZEN_NOTE = "Controller disconnected - market frozen"

# outcome of a periodic sweep
OK = "ok"
ERROR = "error"


@dataclass
class ControlResult:
    ok: bool
    reason: str = ""
    session: Optional[store.Session] = None
    news: Optional[NewsItem] = None
    trade: Optional[dict] = None


@dataclass
class SweepOutcome:
    status: str
    frozen: List[str] = field(default_factory=list)   # ids of sessions whose lease lapsed


def now_ms() -> int:
    return int(time.time() * 1000)


def _reject(reason: str) -> ControlResult:
    logger.warning("rejected: %s", reason)
    return ControlResult(ok=False, reason=reason)


def _controller_session(conn, identity: str):
    session = store.fetch_active_session(conn)
    if session is None:
        return None, "no active session; claim control first"
    if session.controller_id != identity:
        return None, f"{identity} is not the controller (held by {session.controller_id})"
    return session, ""


def claim(engine, identity: str, role: str = ADMIN_ROLE, now: Optional[int] = None) -> ControlResult:
    if now is None:
        now = now_ms()
    if role != ADMIN_ROLE:
        return _reject(f"{identity} lacks the {ADMIN_ROLE} role")

    with engine.begin() as conn:
        current = store.fetch_active_session(conn)
        if current is not None:
            if current.controller_id == identity:
                store.update_session(conn, current.id, last_heartbeat=now)
                current.last_heartbeat = now
                return ControlResult(ok=True, reason="already controller", session=current)
            return _reject(f"controller already held by {current.controller_id}")

        state = store.load_market_state(conn)
        session = store.Session(
            id=f"session-{now}-{uuid.uuid4().hex[:6]}",
            controller_id=identity,
            active=True,
            status=state.session_status,
            start_time=now,
            last_heartbeat=now,
        )
        store.insert_session(conn, session)
        store.update_market_state(conn, controller_id=identity, last_update=now)

    logger.info("%s claimed control (session %s)", identity, session.id)
    return ControlResult(ok=True, session=session)


def heartbeat(engine, identity: str, now: Optional[int] = None) -> ControlResult:
    if now is None:
        now = now_ms()
    with engine.begin() as conn:
        session, reason = _controller_session(conn, identity)
        if session is None:
            return _reject(reason)
        store.update_session(conn, session.id, last_heartbeat=now)
        session.last_heartbeat = now
    return ControlResult(ok=True, session=session)


def start(engine, identity: str, now: Optional[int] = None) -> ControlResult:
    if now is None:
        now = now_ms()
    with engine.begin() as conn:
        session, reason = _controller_session(conn, identity)
        if session is None:
            return _reject(reason)

        state = store.load_market_state(conn)
        if state.session_status not in (IDLE, PAUSED):
            return _reject(f"cannot start from status {state.session_status}")

        fields = {"status": ACTIVE, "last_heartbeat": now}
        if state.session_status == IDLE:
            store.reset_prices(conn)
            fields["start_time"] = now
        store.update_market_state(
            conn, session_status=ACTIVE, controller_id=identity,
            time=now, last_update=now, note=None,
        )
        store.update_session(conn, session.id, **fields)
        session.status = ACTIVE

    logger.info("session %s started by %s", session.id, identity)
    return ControlResult(ok=True, session=session)


def pause(engine, identity: str, now: Optional[int] = None) -> ControlResult:
    if now is None:
        now = now_ms()
    with engine.begin() as conn:
        session, reason = _controller_session(conn, identity)
        if session is None:
            return _reject(reason)

        state = store.load_market_state(conn)
        if state.session_status != ACTIVE:
            return _reject(f"cannot pause from status {state.session_status}")

        store.update_market_state(conn, session_status=PAUSED, last_update=now)
        store.update_session(conn, session.id, status=PAUSED, last_heartbeat=now)
        session.status = PAUSED

    logger.info("session %s paused by %s", session.id, identity)
    return ControlResult(ok=True, session=session)


def reset(engine, identity: str, now: Optional[int] = None) -> ControlResult:
    """
    Baseline prices, news archived, trades archived (never erased),
    status idle and the controller released.
    """
    if now is None:
        now = now_ms()
    with engine.begin() as conn:
        session, reason = _controller_session(conn, identity)
        if session is None:
            return _reject(reason)

        store.reset_prices(conn)
        n_news = store.archive_all_news(conn)
        n_trades = store.archive_trades(conn)
        store.update_market_state(
            conn, session_status=IDLE, controller_id=None,
            time=now, last_update=now, note=None,
        )
        store.update_session(conn, session.id, active=False, status=ENDED, note="reset")
        session.active = False
        session.status = ENDED

    logger.info("market reset by %s: %d news and %d trades archived", identity, n_news, n_trades)
    return ControlResult(ok=True, session=session)


def end(engine, identity: str, now: Optional[int] = None) -> ControlResult:
    if now is None:
        now = now_ms()
    with engine.begin() as conn:
        session, reason = _controller_session(conn, identity)
        if session is None:
            return _reject(reason)

        store.update_market_state(conn, session_status=ENDED, controller_id=None, last_update=now)
        store.update_session(conn, session.id, active=False, status=ENDED)
        session.active = False
        session.status = ENDED

    logger.info("session %s ended by %s", session.id, identity)
    return ControlResult(ok=True, session=session)


def inject_news(
    engine,
    identity: str,
    headline: str,
    sentiment: float,
    optics: float = 0.5,
    target: str = MARKET_TARGET,
    description: str = "",
    source: str = "breaking",
    now: Optional[int] = None,
) -> ControlResult:
    if now is None:
        now = now_ms()
    if not headline or not headline.strip():
        return _reject("headline is required")
    if not -1.0 <= sentiment <= 1.0:
        return _reject(f"sentiment {sentiment} outside [-1, 1]")
    if not 0.0 <= optics <= 1.0:
        return _reject(f"optics {optics} outside [0, 1]")

    with engine.begin() as conn:
        session, reason = _controller_session(conn, identity)
        if session is None:
            return _reject(reason)

        symbols = store.load_prices(conn)
        if target != MARKET_TARGET and target not in symbols:
            return _reject(f"unknown news target {target}")

        item = NewsItem(
            id=f"news-{now}-{uuid.uuid4().hex[:6]}",
            headline=headline.strip(),
            sentiment=float(sentiment),
            optics=float(optics),
            target=target,
            timestamp=now,
            decay=1.0,
            description=description,
            source=source,
        )
        store.insert_news(conn, item, injected_by=identity)
        store.update_market_state(conn, last_update=now)

    logger.info("[NEWS] %s sentiment=%.2f optics=%.2f target=%s :: %s",
                item.id, item.sentiment, item.optics, item.target, item.headline)
    return ControlResult(ok=True, session=session, news=item)


def sweep_stale_sessions(
    engine,
    now: Optional[int] = None,
    stale_after_ms: int = STALE_HEARTBEAT_MS,
) -> SweepOutcome:
    """
    Liveness monitor. Freezes the market behind any controller whose
    heartbeat is older than `stale_after_ms`. It only ever moves the
    market active -> paused and releases the controller; trading resumes
    on an explicit claim + start.
    """
    if now is None:
        now = now_ms()
    frozen = []
    try:
        with engine.begin() as conn:
            state = store.load_market_state(conn)
            for session in store.fetch_stale_sessions(conn, now - stale_after_ms):
                fields = {"controller_id": None, "last_update": now}
                if state.session_status == ACTIVE:
                    fields.update(session_status=PAUSED, note=FROZEN_NOTE)
                    state.session_status = PAUSED
                store.update_market_state(conn, **fields)
                store.update_session(
                    conn, session.id, active=False, status=LOST_CONTROLLER, note=FROZEN_NOTE,
                )
                frozen.append(session.id)
                logger.warning("froze market %s - controller %s disconnected",
                               session.id, session.controller_id)
    except Exception:
        logger.exception("liveness sweep failed; retrying next period")
        return SweepOutcome(status=ERROR)
    return SweepOutcome(status=OK, frozen=frozen)
