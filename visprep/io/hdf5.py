"""VISPREP HDF5 I/O.

Cube file format v1.0:

  obs.h5
  ├── attrs: version, created_at, visprep_version, units, state,
  │          config (YAML of the run that wrote the file) [optional]
  ├── context/
  │   ├── ant1, ant2           (n_bl,) int32
  │   ├── chan_freqs_hz        (n_chan,) float64
  │   ├── timestamps_s         (n_time,) float64  MJD s
  │   ├── cable_lengths_m      (n_ant,) float64
  │   ├── digital_gains        (n_ant, n_chan) float64
  │   ├── antenna_positions_m  (n_ant, 3) float64
  │   ├── passband             (n_chan,) complex128   [optional]
  │   ├── lst_rad              (n_time,) float64      [optional]
  │   └── attrs: n_ant, n_time, n_chan, n_pol, channel_width_hz,
  │              integration_time_s, phase_centre, array_longitude_rad,
  │              array_latitude_rad, fine_chans_per_coarse, telescope, pol_labels
  ├── vis      (n_time, n_chan, n_bl, n_pol) complex
  ├── weights  (n_time, n_chan, n_bl, n_pol) float
  └── flags    (n_time, n_chan, n_bl) bool
"""

from __future__ import annotations

import time
import logging
from pathlib import Path
from typing import Tuple

import h5py
import numpy as np

from ..core.context import ObservationContext
from ..core.cube import VisibilityCube

logger = logging.getLogger("visprep")

HDF5_VERSION = "1.0"

_CONTEXT_ARRAYS = ("ant1", "ant2", "chan_freqs_hz", "timestamps_s",
                   "cable_lengths_m", "digital_gains", "antenna_positions_m")
_CONTEXT_OPTIONAL = ("passband", "lst_rad")
_CONTEXT_SCALARS = ("n_ant", "n_time", "n_chan", "n_pol", "channel_width_hz",
                    "integration_time_s", "array_longitude_rad", "array_latitude_rad",
                    "fine_chans_per_coarse", "telescope")


def save_cube(path: str, ctx: ObservationContext, cube: VisibilityCube,
              overwrite: bool = False, state: str = "", config_yaml: str = "") -> None:
    """Write context + cube to an HDF5 file, with the producing config when given."""
    from .. import __version__

    path = Path(path)
    if path.exists() and not overwrite:
        raise FileExistsError(f"File exists: {path}. Use overwrite=True.")

    with h5py.File(path, "w") as f:
        f.attrs["version"] = HDF5_VERSION
        f.attrs["created_at"] = time.strftime("%Y-%m-%dT%H:%M:%S")
        f.attrs["visprep_version"] = __version__
        f.attrs["units"] = cube.units
        f.attrs["state"] = state
        if config_yaml:
            f.attrs["config"] = config_yaml

        g = f.create_group("context")
        for name in _CONTEXT_ARRAYS:
            g.create_dataset(name, data=np.asarray(getattr(ctx, name)))
        for name in _CONTEXT_OPTIONAL:
            value = getattr(ctx, name)
            if value is not None:
                g.create_dataset(name, data=np.asarray(value))
        for name in _CONTEXT_SCALARS:
            g.attrs[name] = getattr(ctx, name)
        g.attrs["phase_centre"] = np.asarray(ctx.phase_centre, dtype=np.float64)
        g.attrs["pol_labels"] = ",".join(ctx.pol_labels)

        f.create_dataset("vis", data=cube.vis, compression="gzip", compression_opts=4)
        f.create_dataset("weights", data=cube.weights, compression="gzip", compression_opts=4)
        f.create_dataset("flags", data=cube.flags, compression="gzip", compression_opts=4)

    logger.info(f"  wrote {cube.shape} cube to {path}")


def load_cube(path: str) -> Tuple[ObservationContext, VisibilityCube]:
    """Read context + cube from an HDF5 file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    with h5py.File(path, "r") as f:
        g = f["context"]
        kwargs = {name: g[name][()] for name in _CONTEXT_ARRAYS}
        for name in _CONTEXT_OPTIONAL:
            if name in g:
                kwargs[name] = g[name][()]
        for name in _CONTEXT_SCALARS:
            value = g.attrs[name]
            kwargs[name] = value.item() if isinstance(value, np.generic) else value
        if isinstance(kwargs["telescope"], bytes):
            kwargs["telescope"] = kwargs["telescope"].decode()
        kwargs["phase_centre"] = tuple(float(x) for x in g.attrs["phase_centre"])
        labels = str(g.attrs.get("pol_labels", ""))
        kwargs["pol_labels"] = tuple(labels.split(",")) if labels else ()

        cube = VisibilityCube(
            vis=f["vis"][()],
            weights=f["weights"][()],
            flags=f["flags"][()].astype(bool),
            units=str(f.attrs.get("units", "Jy")),
        )

    ctx = ObservationContext(**kwargs)
    return ctx, cube


def describe_cube(path: str) -> dict:
    """Summary of a cube file without loading the sample arrays."""
    with h5py.File(path, "r") as f:
        g = f["context"]
        freqs = g["chan_freqs_hz"][()]
        flags = f["flags"]
        return {
            "version": str(f.attrs.get("version", "")),
            "state": str(f.attrs.get("state", "")),
            "units": str(f.attrs.get("units", "")),
            "config": str(f.attrs.get("config", "")),
            "shape": tuple(f["vis"].shape),
            "n_ant": int(g.attrs["n_ant"]),
            "telescope": str(g.attrs["telescope"]),
            "freq_range_hz": (float(freqs.min()), float(freqs.max())),
            "channel_width_hz": float(g.attrs["channel_width_hz"]),
            "integration_time_s": float(g.attrs["integration_time_s"]),
            "flagged_fraction": float(np.mean(flags[()])) if flags.size else 0.0,
        }


__all__ = ['save_cube', 'load_cube', 'describe_cube', 'HDF5_VERSION']
