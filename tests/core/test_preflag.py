"""Tests for observation-level preflagging."""

import numpy as np
import pytest

from visprep.core.preflag import PreflagOptions, init_steps_from_seconds, preflag_mask
from visprep.errors import ConfigError


def _flags(ctx):
    return np.zeros(ctx.mask_shape, dtype=bool)


def test_disabled_by_default():
    assert not PreflagOptions().enabled
    assert PreflagOptions(autos=True).enabled


def test_quack_and_explicit_times(make_ctx):
    ctx = make_ctx(n_time=6)
    flags = _flags(ctx)
    stats = preflag_mask(flags, ctx, PreflagOptions(init_steps=2, end_steps=1, times=[3]))
    flagged_times = np.flatnonzero(flags.all(axis=(1, 2)))
    assert flagged_times.tolist() == [0, 1, 3, 5]
    assert not flags[2].any() and not flags[4].any()
    assert stats["times"] == 4 * ctx.n_chan * ctx.n_baselines


def test_edge_and_fine_channels_per_coarse_channel(make_ctx):
    ctx = make_ctx(n_chan=8, fine_chans_per_coarse=4)
    flags = _flags(ctx)
    preflag_mask(flags, ctx, PreflagOptions(edge_chans=1, fine_chans=[2]))
    flagged_chans = np.flatnonzero(flags.all(axis=(0, 2)))
    assert flagged_chans.tolist() == [0, 2, 3, 4, 6, 7]


def test_antennas_and_autos(ctx):
    flags = _flags(ctx)
    preflag_mask(flags, ctx, PreflagOptions(antennas=[3], autos=True))
    flagged_bl = set(np.flatnonzero(flags.all(axis=(0, 1))).tolist())
    expected = {b for b in range(ctx.n_baselines)
                if ctx.is_auto(b) or 3 in ctx.baseline_antennas(b)}
    assert flagged_bl == expected


def test_existing_flags_kept(ctx):
    flags = _flags(ctx)
    flags[1, 1, 1] = True
    preflag_mask(flags, ctx, PreflagOptions(init_steps=1))
    assert flags[1, 1, 1]


@pytest.mark.parametrize("opts", [
    PreflagOptions(times=[10]),
    PreflagOptions(antennas=[4]),
    PreflagOptions(fine_chans=[4]),
])
def test_out_of_range(ctx, opts):
    with pytest.raises(ConfigError):
        preflag_mask(_flags(ctx), ctx, opts)


def test_init_steps_from_seconds(make_ctx):
    ctx = make_ctx(integration_time_s=0.5)
    assert init_steps_from_seconds(2.0, ctx) == 4
    assert init_steps_from_seconds(1.2, ctx) == 3
    assert init_steps_from_seconds(0, ctx) == 0
