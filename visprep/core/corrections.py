"""
VISPREP Correction Engine.

Per-baseline instrumental corrections, applied in place:

  CABLE         phase  -2π f (L[ant2] - L[ant1]) / c       static
  GEOMETRIC     phase  -2π f w(t) / c                       per time step
  DIGITAL_GAINS amp    / (g[ant1, f] * g[ant2, f])          real
  PASSBAND      amp+ph / B(f)                               complex, optional

Every function touches one BaselineView only, so any number of baselines can
be corrected concurrently. Phases are accumulated in float64 regardless of
the cube dtype. Applying a correction twice is a caller error.
"""

import enum
import logging
from typing import Optional

import numpy as np
from numba import njit

from ..errors import BaselineProcessingError
from .context import ObservationContext
from .cube import BaselineView, VisibilityCube
from .geometry import SPEED_OF_LIGHT, baseline_w_metres, hour_angles

logger = logging.getLogger("visprep")


class Corrections(enum.Flag):
    NONE = 0
    CABLE = 1
    GEOMETRIC = 2
    DIGITAL_GAINS = 4
    PASSBAND = 8
    DEFAULT = 7  # cable | geometric | digital gains

    @classmethod
    def from_names(cls, names) -> "Corrections":
        out = cls.NONE
        for name in names:
            key = str(name).upper().strip().replace("-", "_")
            if key not in cls.__members__:
                raise ValueError(f"unknown correction '{name}'")
            out |= cls[key]
        return out


# ---------------------------------------------------------------------------
# Kernels
# ---------------------------------------------------------------------------

@njit(cache=True, nogil=True)
def _rotate_phase(vis, delays_s, freqs_hz):
    """Multiply vis (n_time, n_chan, n_pol) by exp(-2πi f τ(t)) in place.

    delays_s: (n_time,) float64, freqs_hz: (n_chan,) float64
    """
    n_time, n_chan, n_pol = vis.shape
    two_pi = 2.0 * np.pi
    for t in range(n_time):
        tau = delays_s[t]
        for c in range(n_chan):
            angle = -two_pi * freqs_hz[c] * tau
            rot = complex(np.cos(angle), np.sin(angle))
            for p in range(n_pol):
                vis[t, c, p] = vis[t, c, p] * rot


@njit(cache=True, nogil=True)
def _scale_channels(vis, factors):
    """Divide vis (n_time, n_chan, n_pol) by factors (n_chan,) complex128 in place."""
    n_time, n_chan, n_pol = vis.shape
    for c in range(n_chan):
        inv = 1.0 / factors[c]
        for t in range(n_time):
            for p in range(n_pol):
                vis[t, c, p] = vis[t, c, p] * inv


# ---------------------------------------------------------------------------
# Individual corrections
# ---------------------------------------------------------------------------

def correct_cable_lengths(view: BaselineView, ctx: ObservationContext,
                          cable_lengths_m: Optional[np.ndarray] = None) -> None:
    """Remove the electrical path difference between the two antennas."""
    if view.is_auto:
        return
    lengths = ctx.cable_lengths_m if cable_lengths_m is None else np.asarray(cable_lengths_m, dtype=np.float64)
    delay = (lengths[view.ant2] - lengths[view.ant1]) / SPEED_OF_LIGHT
    if not np.isfinite(delay):
        raise BaselineProcessingError(view.index, f"non-finite cable delay {delay}")
    delays = np.full(view.n_time, delay, dtype=np.float64)
    _rotate_phase(view.vis, delays, ctx.chan_freqs_hz)


def correct_geometry(view: BaselineView, ctx: ObservationContext,
                     ha: Optional[np.ndarray] = None) -> None:
    """Phase to the phase centre using the baseline's time-dependent w-term.

    ha: hour angles (n_time,), computed once per run and shared by all tasks.
    """
    w = baseline_w_metres(ctx, view.index, ha=ha)
    delays = np.ascontiguousarray(w / SPEED_OF_LIGHT, dtype=np.float64)
    if not np.all(np.isfinite(delays)):
        raise BaselineProcessingError(view.index, "non-finite geometric delay")
    _rotate_phase(view.vis, delays, ctx.chan_freqs_hz)


def correct_digital_gains(view: BaselineView, ctx: ObservationContext) -> None:
    """Divide out the receiver gain of both antennas. Phase is untouched."""
    factors = ctx.digital_gains[view.ant1] * ctx.digital_gains[view.ant2]
    bad = ~np.isfinite(factors) | (factors == 0)
    if np.any(bad):
        chans = np.flatnonzero(bad)
        raise BaselineProcessingError(
            view.index, f"invalid digital gain factor at channels {chans[:8].tolist()}"
        )
    _scale_channels(view.vis, factors.astype(np.complex128))


def correct_passband(view: BaselineView, ctx: ObservationContext) -> None:
    """Divide by the per-channel complex bandpass."""
    if ctx.passband is None:
        return
    factors = np.asarray(ctx.passband, dtype=np.complex128)
    bad = ~np.isfinite(factors) | (factors == 0)
    if np.any(bad):
        raise BaselineProcessingError(view.index, "invalid passband factor")
    _scale_channels(view.vis, factors)


def resample_passband(passband: np.ndarray, src_freqs_hz: np.ndarray,
                      target_freqs_hz: np.ndarray) -> np.ndarray:
    """Linear interpolation of a complex passband onto another channel grid.

    Real and imaginary parts are interpolated separately; edges clamp to the
    nearest supplied value.
    """
    from scipy.interpolate import interp1d

    passband = np.asarray(passband, dtype=np.complex128)
    src = np.asarray(src_freqs_hz, dtype=np.float64)
    if len(src) == 1:
        return np.full(len(target_freqs_hz), passband[0], dtype=np.complex128)

    kw = dict(kind="linear", bounds_error=False, assume_sorted=False)
    f_re = interp1d(src, passband.real, fill_value=(passband.real[0], passband.real[-1]), **kw)
    f_im = interp1d(src, passband.imag, fill_value=(passband.imag[0], passband.imag[-1]), **kw)
    return f_re(target_freqs_hz) + 1j * f_im(target_freqs_hz)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def check_finite(view: BaselineView) -> None:
    """Unflagged samples must be finite before they reach the flagger."""
    finite = np.isfinite(view.vis).all(axis=2)
    bad = ~finite & ~view.flags
    if np.any(bad):
        n_bad = int(np.count_nonzero(bad))
        raise BaselineProcessingError(view.index, f"{n_bad} non-finite unflagged sample(s)")


def correct_baseline(view: BaselineView, ctx: ObservationContext,
                     corrections: Corrections = Corrections.DEFAULT,
                     ha: Optional[np.ndarray] = None) -> None:
    """Apply the enabled corrections to one baseline, in the required order.

    Phase corrections first, then amplitude corrections; all of them precede
    flagging.
    """
    if Corrections.CABLE in corrections:
        correct_cable_lengths(view, ctx)
    if Corrections.GEOMETRIC in corrections:
        correct_geometry(view, ctx, ha=ha)
    if Corrections.DIGITAL_GAINS in corrections:
        correct_digital_gains(view, ctx)
    if Corrections.PASSBAND in corrections:
        correct_passband(view, ctx)
    check_finite(view)


def correct_cube(cube: VisibilityCube, ctx: ObservationContext,
                 corrections: Corrections = Corrections.DEFAULT) -> None:
    """Serial helper: correct every baseline of the cube in place."""
    ha = hour_angles(ctx) if Corrections.GEOMETRIC in corrections else None
    for view in cube.baselines(ctx):
        correct_baseline(view, ctx, corrections, ha=ha)


__all__ = [
    'Corrections',
    'correct_cable_lengths',
    'correct_geometry',
    'correct_digital_gains',
    'correct_passband',
    'resample_passband',
    'check_finite',
    'correct_baseline',
    'correct_cube',
]
