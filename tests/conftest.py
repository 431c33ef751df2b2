"""Root-level pytest fixtures for the VISPREP test suite.

Contexts carry an explicit LST so no test touches casacore unless it asks
for it.
"""

import numpy as np
import pytest

from visprep.core import ObservationContext, VisibilityCube
from visprep.flagging import FlagBridge

from tests.helpers.fake_engine import FakeEngine, write_strategy


# =============================================================================
# Observation fixtures
# =============================================================================

@pytest.fixture
def make_ctx():
    """Factory for small contexts with neutral instrumental solutions.

    Examples
    --------
    >>> def test_something(make_ctx):
    ...     ctx = make_ctx(n_ant=3, n_chan=8)
    """
    def _make(n_ant=4, n_time=4, n_chan=4, n_pol=4, **kwargs):
        kwargs.setdefault("lst_rad", np.zeros(n_time))
        return ObservationContext.create(n_ant=n_ant, n_time=n_time, n_chan=n_chan,
                                         n_pol=n_pol, **kwargs)
    return _make


@pytest.fixture
def ctx(make_ctx):
    """4 antennas (10 baselines incl. autos), 4 times, 4 channels, 4 pols."""
    return make_ctx()


@pytest.fixture
def make_cube():
    """Factory for random cubes with unit weights and no flags."""
    def _make(ctx, seed=0, dtype=np.complex64):
        rng = np.random.default_rng(seed)
        cube = VisibilityCube.empty(ctx, dtype=dtype)
        cube.vis[...] = rng.normal(size=ctx.cube_shape) + 1j * rng.normal(size=ctx.cube_shape)
        return cube
    return _make


@pytest.fixture
def cube(ctx, make_cube):
    return make_cube(ctx)


# =============================================================================
# Flagging fixtures
# =============================================================================

@pytest.fixture
def strategy_file(tmp_path):
    """Strategy that flags channel 2 everywhere."""
    return write_strategy(tmp_path / "strategy.yaml", flag_channels=[2])


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def bridge(fake_engine, strategy_file):
    """Prepared bridge over the fake engine."""
    b = FlagBridge(fake_engine, strategy_path=strategy_file)
    b.prepare()
    return b
