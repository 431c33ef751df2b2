"""
Visibility Cube.

The shared in-memory arena for one observation:

    vis     (n_time, n_chan, n_bl, n_pol)  complex
    weights (n_time, n_chan, n_bl, n_pol)  float, 0 where invalid/flagged
    flags   (n_time, n_chan, n_bl)         bool, joint across polarisations

Workers never lock the arena. Each task receives a BaselineView, a set of
numpy views addressed by one baseline index, so two tasks holding different
baselines can never write the same element.
"""

from dataclasses import dataclass, replace
from typing import Iterator, Optional
import logging

import numpy as np

from ..errors import ConfigError, DimensionMismatchError
from .context import ObservationContext

logger = logging.getLogger("visprep")


@dataclass
class BaselineView:
    """Views into the arena for a single baseline.

    vis: (n_time, n_chan, n_pol), weights: same, flags: (n_time, n_chan).
    Writes through these arrays land in the parent cube.
    """
    index: int
    ant1: int
    ant2: int
    vis: np.ndarray
    weights: np.ndarray
    flags: np.ndarray

    @property
    def is_auto(self) -> bool:
        return self.ant1 == self.ant2

    @property
    def n_time(self) -> int:
        return self.vis.shape[0]

    @property
    def n_chan(self) -> int:
        return self.vis.shape[1]

    @property
    def n_pol(self) -> int:
        return self.vis.shape[2]

    def flag_all(self) -> None:
        """Conservative fallback: treat the whole baseline as unusable."""
        self.flags[...] = True


@dataclass
class VisibilityCube:
    """Visibilities, weights and flags for one observation."""
    vis: np.ndarray
    weights: np.ndarray
    flags: np.ndarray
    units: str = "Jy"

    @classmethod
    def empty(cls, ctx: ObservationContext, dtype=np.complex64, units: str = "Jy") -> "VisibilityCube":
        """Zero visibilities, unit weights, nothing flagged."""
        real = np.float32 if np.dtype(dtype) == np.complex64 else np.float64
        return cls(
            vis=np.zeros(ctx.cube_shape, dtype=dtype),
            weights=np.ones(ctx.cube_shape, dtype=real),
            flags=np.zeros(ctx.mask_shape, dtype=bool),
            units=units,
        )

    @classmethod
    def from_arrays(cls, vis: np.ndarray, weights: Optional[np.ndarray] = None,
                    flags: Optional[np.ndarray] = None, units: str = "Jy") -> "VisibilityCube":
        """Wrap caller arrays. Missing weights default to 1, missing flags to False."""
        vis = np.asarray(vis)
        if not np.iscomplexobj(vis):
            vis = vis.astype(np.complex64)
        if weights is None:
            weights = np.ones(vis.shape, dtype=np.float32 if vis.dtype == np.complex64 else np.float64)
        if flags is None:
            flags = np.zeros(vis.shape[:3], dtype=bool)
        return cls(vis=vis, weights=np.asarray(weights), flags=np.asarray(flags, dtype=bool), units=units)

    @property
    def shape(self):
        return self.vis.shape

    @property
    def n_time(self) -> int:
        return self.vis.shape[0]

    @property
    def n_chan(self) -> int:
        return self.vis.shape[1]

    @property
    def n_baselines(self) -> int:
        return self.vis.shape[2]

    @property
    def n_pol(self) -> int:
        return self.vis.shape[3]

    def validate(self, ctx: Optional[ObservationContext] = None) -> None:
        """Raise DimensionMismatchError if the three arrays (or the context) disagree."""
        if self.vis.ndim != 4:
            raise DimensionMismatchError("visibility cube rank", (0, 0, 0, 0), self.vis.shape)
        if ctx is not None and self.vis.shape != ctx.cube_shape:
            raise DimensionMismatchError("visibility cube vs context", ctx.cube_shape, self.vis.shape)
        if self.weights.shape != self.vis.shape:
            raise DimensionMismatchError("weight cube", self.vis.shape, self.weights.shape)
        if self.flags.shape != self.vis.shape[:3]:
            raise DimensionMismatchError("flag mask", self.vis.shape[:3], self.flags.shape)
        if self.flags.dtype != np.bool_:
            raise ConfigError(f"flag mask dtype must be bool, found {self.flags.dtype}")

    def baseline(self, index: int, ctx: Optional[ObservationContext] = None) -> BaselineView:
        """View of one baseline. Antenna indices come from ctx when given."""
        if ctx is not None:
            a1, a2 = ctx.baseline_antennas(index)
        else:
            a1 = a2 = -1
        return BaselineView(
            index=index,
            ant1=a1,
            ant2=a2,
            vis=self.vis[:, :, index, :],
            weights=self.weights[:, :, index, :],
            flags=self.flags[:, :, index],
        )

    def baselines(self, ctx: Optional[ObservationContext] = None) -> Iterator[BaselineView]:
        """One view per baseline, each index exactly once."""
        for b in range(self.n_baselines):
            yield self.baseline(b, ctx)

    def copy(self) -> "VisibilityCube":
        return VisibilityCube(self.vis.copy(), self.weights.copy(), self.flags.copy(), self.units)

    def flagged_fraction(self) -> float:
        return float(self.flags.mean()) if self.flags.size else 0.0


def merge_flags(existing: np.ndarray, new: np.ndarray) -> int:
    """OR `new` into `existing` in place. Flags are never cleared.

    Returns the number of flags that were newly set.
    """
    if existing.shape != new.shape:
        raise DimensionMismatchError("flag merge", existing.shape, new.shape)
    added = int(np.count_nonzero(new & ~existing))
    np.logical_or(existing, new, out=existing)
    return added


def select_times(ctx: ObservationContext, cube: VisibilityCube, start: int, end: int):
    """Keep time steps start..end (inclusive). Returns (ctx, cube) sharing the cube's memory."""
    if not 0 <= start <= end < ctx.n_time:
        raise ConfigError(f"time selection {start}..{end} outside [0, {ctx.n_time})")
    sel = slice(start, end + 1)
    ctx_sel = replace(
        ctx,
        n_time=end - start + 1,
        timestamps_s=ctx.timestamps_s[sel],
        lst_rad=None if ctx.lst_rad is None else ctx.lst_rad[sel],
    )
    cube_sel = VisibilityCube(cube.vis[sel], cube.weights[sel], cube.flags[sel], cube.units)
    return ctx_sel, cube_sel


__all__ = ['VisibilityCube', 'BaselineView', 'merge_flags', 'select_times']
