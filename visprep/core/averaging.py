"""
VISPREP Averaging.

Flag-aware weighted averaging of the whole cube in time and frequency.
Numba JIT, parallel over baselines.

Per output bin and polarisation:
  - some input unflagged: value = Σ v·w / Σ w over unflagged inputs,
                          weight = Σ w, flag = False
  - every input flagged:  value = plain mean of the raw inputs (inspection only),
                          weight = 0, flag = True
Edge bins are truncated: the divisor counts only the samples present.
"""

from dataclasses import replace
from typing import Tuple
import logging

import numpy as np
from numba import njit, prange

from ..errors import ConfigError
from .context import ObservationContext
from .cube import VisibilityCube

logger = logging.getLogger("visprep")


def averaged_extent(n: int, factor: int) -> int:
    """ceil(n / factor)."""
    return -(-n // factor)


@njit(parallel=True, cache=True)
def _average_windows(vis, weights, flags, time_factor, freq_factor,
                     vis_out, w_out, f_out):
    """Average vis/weights/flags into the preallocated output arrays.

    vis, weights: (n_time, n_chan, n_bl, n_pol)
    flags:        (n_time, n_chan, n_bl)
    """
    n_time, n_chan, n_bl, n_pol = vis.shape
    n_t_out = vis_out.shape[0]
    n_c_out = vis_out.shape[1]

    for b in prange(n_bl):
        for to in range(n_t_out):
            t0 = to * time_factor
            t1 = min(t0 + time_factor, n_time)
            for co in range(n_c_out):
                c0 = co * freq_factor
                c1 = min(c0 + freq_factor, n_chan)

                n_unflagged = 0
                for t in range(t0, t1):
                    for c in range(c0, c1):
                        if not flags[t, c, b]:
                            n_unflagged += 1
                all_flagged = n_unflagged == 0
                f_out[to, co, b] = all_flagged

                for p in range(n_pol):
                    vsum = 0j
                    raw = 0j
                    wsum = 0.0
                    n_raw = 0
                    for t in range(t0, t1):
                        for c in range(c0, c1):
                            if all_flagged:
                                raw += vis[t, c, b, p]
                                n_raw += 1
                            elif not flags[t, c, b]:
                                w = np.float64(weights[t, c, b, p])
                                vsum += vis[t, c, b, p] * w
                                wsum += w
                                raw += vis[t, c, b, p]
                                n_raw += 1
                    if not all_flagged and wsum > 0.0:
                        vis_out[to, co, b, p] = vsum / wsum
                        w_out[to, co, b, p] = wsum
                    else:
                        vis_out[to, co, b, p] = raw / n_raw
                        w_out[to, co, b, p] = 0.0


def check_factor(name: str, factor) -> int:
    if isinstance(factor, bool) or int(factor) != factor or factor < 1:
        raise ConfigError(f"{name} must be an integer >= 1, got {factor!r}")
    return int(factor)


def average_cube(cube: VisibilityCube, time_factor: int = 1, freq_factor: int = 1) -> VisibilityCube:
    """Average the corrected, flagged cube.

    Weights of flagged input samples are zeroed in place first, so the input
    cube leaves this call honouring "weight 0 where flagged".

    Returns a new cube of shape (ceil(T/tf), ceil(C/ff), B, P).
    """
    time_factor = check_factor("time_factor", time_factor)
    freq_factor = check_factor("freq_factor", freq_factor)
    cube.validate()

    cube.weights[cube.flags] = 0

    n_time, n_chan, n_bl, n_pol = cube.shape
    out_shape = (averaged_extent(n_time, time_factor), averaged_extent(n_chan, freq_factor), n_bl, n_pol)

    vis_out = np.empty(out_shape, dtype=cube.vis.dtype)
    w_out = np.empty(out_shape, dtype=cube.weights.dtype)
    f_out = np.empty(out_shape[:3], dtype=bool)

    _average_windows(cube.vis, cube.weights, cube.flags, time_factor, freq_factor,
                     vis_out, w_out, f_out)

    return VisibilityCube(vis=vis_out, weights=w_out, flags=f_out, units=cube.units)


def _bin_mean(arr: np.ndarray, factor: int, axis: int = 0) -> np.ndarray:
    """Mean over truncated windows of `factor` along `axis`."""
    n = arr.shape[axis]
    edges = np.arange(0, n, factor)
    sums = np.add.reduceat(arr, edges, axis=axis)
    counts = np.diff(np.append(edges, n))
    shape = [1] * arr.ndim
    shape[axis] = len(counts)
    return sums / counts.reshape(shape)


def _bin_angle(angles: np.ndarray, factor: int) -> np.ndarray:
    """Circular mean over truncated windows, wrapped to [0, 2pi)."""
    mean = _bin_mean(np.exp(1j * np.asarray(angles, dtype=np.float64)), factor)
    return np.mod(np.angle(mean), 2.0 * np.pi)


def average_context(ctx: ObservationContext, time_factor: int = 1, freq_factor: int = 1) -> ObservationContext:
    """Observation context describing an averaged cube."""
    time_factor = check_factor("time_factor", time_factor)
    freq_factor = check_factor("freq_factor", freq_factor)
    fine = ctx.fine_chans_per_coarse
    fine = fine // freq_factor if fine and fine % freq_factor == 0 else 0
    return replace(
        ctx,
        n_time=averaged_extent(ctx.n_time, time_factor),
        n_chan=averaged_extent(ctx.n_chan, freq_factor),
        chan_freqs_hz=_bin_mean(ctx.chan_freqs_hz, freq_factor),
        timestamps_s=_bin_mean(ctx.timestamps_s, time_factor),
        digital_gains=_bin_mean(ctx.digital_gains, freq_factor, axis=1),
        passband=None if ctx.passband is None else _bin_mean(ctx.passband, freq_factor),
        lst_rad=None if ctx.lst_rad is None else _bin_angle(ctx.lst_rad, time_factor),
        channel_width_hz=ctx.channel_width_hz * freq_factor,
        integration_time_s=ctx.integration_time_s * time_factor,
        fine_chans_per_coarse=fine,
    )


def resolution_to_factor(target_res: float, native_res: float, what: str = "time") -> int:
    """Convert a requested resolution into an integer averaging factor.

    The target must be an integer multiple of the native resolution.
    """
    if native_res <= 0:
        raise ConfigError(f"native {what} resolution must be positive, got {native_res}")
    ratio = target_res / native_res
    factor = int(round(ratio))
    if factor < 1 or abs(ratio - factor) > 1e-6:
        raise ConfigError(
            f"{what} resolution {target_res} must be an integer multiple of "
            f"the input resolution {native_res}"
        )
    return factor


__all__ = [
    'average_cube',
    'average_context',
    'averaged_extent',
    'resolution_to_factor',
    'check_factor',
]
