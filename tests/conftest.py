import pytest
from sqlalchemy import create_engine

from init_db import init_db


class SeqRng:
    """Stand-in for random.Random that replays fixed uniforms."""

    def __init__(self, values):
        self.values = list(values)

    def random(self):
        return self.values.pop(0)


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(f"sqlite:///{tmp_path / 'market.db'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def live_market(engine):
    """Market with alice in control and trading active at t=0."""
    import session_control as control

    assert control.claim(engine, "alice", now=0).ok
    assert control.start(engine, "alice", now=0).ok
    return engine
