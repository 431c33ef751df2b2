"""
Array geometry for the geometric delay correction.

Local sidereal time comes from casacore measures; w-terms follow the usual
XYZ -> UVW rotation for a phase centre at hour angle H and declination dec.
"""

import numpy as np
from typing import Optional
import logging

from .context import ObservationContext

logger = logging.getLogger("visprep")

SPEED_OF_LIGHT = 299792458.0  # m/s


def local_sidereal_time(timestamps_s: np.ndarray, longitude_rad: float,
                        latitude_rad: float = 0.0) -> np.ndarray:
    """Apparent local sidereal time in radians for MJD-second timestamps."""
    from casacore.measures import measures
    from casacore.quanta import quantity

    dm = measures()
    dm.do_frame(dm.position("WGS84",
                            quantity(longitude_rad, "rad"),
                            quantity(latitude_rad, "rad"),
                            quantity(0.0, "m")))

    lst = np.zeros(len(timestamps_s), dtype=np.float64)
    for i, t in enumerate(timestamps_s):
        epoch = dm.epoch("UTC", quantity(t / 86400.0, "d"))
        last = dm.measure(epoch, "LAST")["m0"]["value"]  # days
        lst[i] = (last % 1.0) * 2.0 * np.pi
    return lst


def hour_angles(ctx: ObservationContext) -> np.ndarray:
    """Hour angle of the phase centre per time step, (n_time,) radians."""
    if ctx.lst_rad is not None:
        lst = np.asarray(ctx.lst_rad)
    else:
        lst = local_sidereal_time(ctx.timestamps_s, ctx.array_longitude_rad, ctx.array_latitude_rad)
    return lst - ctx.phase_centre[0]


def baseline_w_metres(ctx: ObservationContext, baseline: int,
                      ha: Optional[np.ndarray] = None) -> np.ndarray:
    """w-coordinate of one baseline at every time step, (n_time,) metres.

    The baseline vector is xyz[ant1] - xyz[ant2].
    """
    if ha is None:
        ha = hour_angles(ctx)
    a1, a2 = ctx.baseline_antennas(baseline)
    x, y, z = ctx.antenna_positions_m[a1] - ctx.antenna_positions_m[a2]
    dec = ctx.phase_centre[1]
    cos_dec = np.cos(dec)
    return cos_dec * np.cos(ha) * x - cos_dec * np.sin(ha) * y + np.sin(dec) * z


__all__ = ['SPEED_OF_LIGHT', 'local_sidereal_time', 'hour_angles', 'baseline_w_metres']
