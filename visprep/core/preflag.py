"""
Preflagging.

Seeds the Flag Mask from observation-level knowledge before RFI flagging:
quack time at the start and end, known-bad time steps, channel edges and
fixed fine channels inside every coarse channel, dead antennas and
autocorrelations. Only ever sets flags.
"""

from dataclasses import dataclass, field
from typing import Dict, List
import logging

import numpy as np

from ..errors import ConfigError
from .context import ObservationContext

logger = logging.getLogger("visprep")


@dataclass
class PreflagOptions:
    init_steps: int = 0
    end_steps: int = 0
    times: List[int] = field(default_factory=list)
    edge_chans: int = 0
    fine_chans: List[int] = field(default_factory=list)
    antennas: List[int] = field(default_factory=list)
    autos: bool = False

    @property
    def enabled(self) -> bool:
        return bool(self.init_steps or self.end_steps or self.times or self.edge_chans
                    or self.fine_chans or self.antennas or self.autos)


def _coarse_width(ctx: ObservationContext) -> int:
    return ctx.fine_chans_per_coarse or ctx.n_chan


def init_steps_from_seconds(seconds: float, ctx: ObservationContext) -> int:
    """Number of whole integrations covering `seconds` of quack time."""
    if seconds <= 0:
        return 0
    if ctx.integration_time_s <= 0:
        raise ConfigError("quack time given in seconds but integration_time_s is unset")
    return int(np.ceil(seconds / ctx.integration_time_s - 1e-9))


def preflag_mask(flags: np.ndarray, ctx: ObservationContext, opts: PreflagOptions) -> Dict[str, int]:
    """OR observation-level flags into `flags` (n_time, n_chan, n_bl) in place.

    Returns the number of samples each rule newly flagged.
    """
    n_time, n_chan, n_bl = flags.shape
    stats = {}

    def _apply(name, region_mask):
        before = int(np.count_nonzero(flags))
        np.logical_or(flags, region_mask, out=flags)
        stats[name] = int(np.count_nonzero(flags)) - before

    if opts.init_steps or opts.end_steps or opts.times:
        t_mask = np.zeros(n_time, dtype=bool)
        t_mask[:max(0, min(opts.init_steps, n_time))] = True
        if opts.end_steps > 0:
            t_mask[max(0, n_time - opts.end_steps):] = True
        for t in opts.times:
            if not 0 <= t < n_time:
                raise ConfigError(f"preflag time step {t} outside [0, {n_time})")
            t_mask[t] = True
        _apply("times", t_mask[:, None, None])

    if opts.edge_chans or opts.fine_chans:
        width = _coarse_width(ctx)
        fine = np.arange(n_chan) % width
        c_mask = np.zeros(n_chan, dtype=bool)
        if opts.edge_chans:
            c_mask |= (fine < opts.edge_chans) | (fine >= width - opts.edge_chans)
        for fc in opts.fine_chans:
            if not 0 <= fc < width:
                raise ConfigError(f"preflag fine channel {fc} outside [0, {width})")
            c_mask |= fine == fc
        _apply("channels", c_mask[None, :, None])

    if opts.antennas or opts.autos:
        b_mask = np.zeros(n_bl, dtype=bool)
        if opts.antennas:
            bad = np.asarray(opts.antennas)
            if np.any((bad < 0) | (bad >= ctx.n_ant)):
                raise ConfigError(f"preflag antennas {opts.antennas} outside [0, {ctx.n_ant})")
            b_mask |= np.isin(ctx.ant1, bad) | np.isin(ctx.ant2, bad)
        if opts.autos:
            b_mask |= ctx.ant1 == ctx.ant2
        _apply("baselines", b_mask[None, None, :])

    if stats:
        logger.info("  preflag: " + ", ".join(f"{k}={v}" for k, v in stats.items()))
    return stats


__all__ = ['PreflagOptions', 'preflag_mask', 'init_steps_from_seconds']
