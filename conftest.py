"""
Pytest configuration and shared fixtures.
"""
import sys
from pathlib import Path

import pytest

# Test modules live next to the code
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from config import RunConfig
from context import RunContext


class ManualClock:
    """Simulated time that only moves when a test says so"""

    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, dt):
        self.now += dt
        return self.now


class FakeTopology:
    """Minimal topology collaborator: neighbors, speeds and 1-D positions"""

    def __init__(self, neighbors=None, speeds=None, positions=None):
        self._neighbors = neighbors or {}
        self.speeds = speeds or {}
        self.positions = positions or {}

    def neighbors(self, node):
        return sorted(self._neighbors.get(node, ()))

    def speed(self, node):
        return self.speeds.get(node, 0.0)

    def distance(self, u, v):
        return abs(self.positions.get(u, 0.0) - self.positions.get(v, 0.0))


@pytest.fixture
def config():
    return RunConfig(csv_file_name="", trace_mobility=False)


@pytest.fixture
def context(config):
    ctx = RunContext(config).open()
    yield ctx
    ctx.close()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def make_context():
    """Factory for contexts with custom config fields"""
    opened = []

    def _make(**changes):
        changes.setdefault("csv_file_name", "")
        changes.setdefault("trace_mobility", False)
        ctx = RunContext(RunConfig(**changes)).open()
        opened.append(ctx)
        return ctx

    yield _make
    for ctx in opened:
        ctx.close()
