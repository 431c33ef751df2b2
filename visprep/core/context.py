"""
Observation Context.

Immutable metadata shared read-only by every baseline task: array layout,
time and frequency grids, pointing, and the supplied instrumental solutions
(cable lengths, digital gains, passband).
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple
import logging

import numpy as np

from ..errors import ConfigError

logger = logging.getLogger("visprep")

SUPPORTED_POLS = (1, 2, 4)


def baselines_for(n_ant: int) -> Tuple[np.ndarray, np.ndarray]:
    """Upper-triangular baseline order including autocorrelations.

    (0,0), (0,1), ... (0,n-1), (1,1), (1,2), ... (n-1,n-1)
    """
    ant1, ant2 = np.triu_indices(n_ant)
    return ant1.astype(np.int32), ant2.astype(np.int32)


def _frozen(arr, dtype) -> np.ndarray:
    out = np.array(arr, dtype=dtype, copy=True)
    out.setflags(write=False)
    return out


@dataclass(frozen=True, eq=False)
class ObservationContext:
    """Read-only description of one observation.

    Shapes
    ------
    ant1, ant2           : (n_baselines,)
    chan_freqs_hz        : (n_chan,)   sky frequency of each channel
    timestamps_s         : (n_time,)   MJD seconds, integration centroids
    cable_lengths_m      : (n_ant,)    electrical length of each antenna's cable
    digital_gains        : (n_ant, n_chan) real receiver gain
    antenna_positions_m  : (n_ant, 3)  local geodetic XYZ
    passband             : (n_chan,) complex, optional
    lst_rad              : (n_time,) local sidereal time override, optional
    """
    n_ant: int
    n_time: int
    n_chan: int
    n_pol: int
    ant1: np.ndarray
    ant2: np.ndarray
    chan_freqs_hz: np.ndarray
    timestamps_s: np.ndarray
    cable_lengths_m: np.ndarray
    digital_gains: np.ndarray
    antenna_positions_m: np.ndarray
    channel_width_hz: float = 0.0
    integration_time_s: float = 0.0
    phase_centre: Tuple[float, float] = (0.0, 0.0)
    array_longitude_rad: float = 0.0
    array_latitude_rad: float = 0.0
    passband: Optional[np.ndarray] = None
    lst_rad: Optional[np.ndarray] = None
    fine_chans_per_coarse: int = 0
    telescope: str = "MWA"
    pol_labels: Tuple[str, ...] = field(default=())

    def __post_init__(self):
        object.__setattr__(self, "ant1", _frozen(self.ant1, np.int32))
        object.__setattr__(self, "ant2", _frozen(self.ant2, np.int32))
        object.__setattr__(self, "chan_freqs_hz", _frozen(self.chan_freqs_hz, np.float64))
        object.__setattr__(self, "timestamps_s", _frozen(self.timestamps_s, np.float64))
        object.__setattr__(self, "cable_lengths_m", _frozen(self.cable_lengths_m, np.float64))
        object.__setattr__(self, "digital_gains", _frozen(self.digital_gains, np.float64))
        object.__setattr__(self, "antenna_positions_m", _frozen(self.antenna_positions_m, np.float64))
        if self.passband is not None:
            object.__setattr__(self, "passband", _frozen(self.passband, np.complex128))
        if self.lst_rad is not None:
            object.__setattr__(self, "lst_rad", _frozen(self.lst_rad, np.float64))
        object.__setattr__(self, "phase_centre", tuple(float(x) for x in self.phase_centre))

    @classmethod
    def create(cls, n_ant: int, n_time: int, n_chan: int, n_pol: int = 4,
               chan_freqs_hz=None, timestamps_s=None, **kwargs) -> "ObservationContext":
        """Build a context with neutral defaults for anything not supplied.

        Defaults: all baselines incl. autocorrelations, zero cable lengths,
        unity digital gains, all antennas at the array origin.
        """
        ant1, ant2 = baselines_for(n_ant)
        channel_width = kwargs.pop("channel_width_hz", 40e3)
        integration = kwargs.pop("integration_time_s", 1.0)
        if chan_freqs_hz is None:
            chan_freqs_hz = 150e6 + channel_width * np.arange(n_chan)
        if timestamps_s is None:
            timestamps_s = integration * (np.arange(n_time) + 0.5)
        return cls(
            n_ant=n_ant,
            n_time=n_time,
            n_chan=n_chan,
            n_pol=n_pol,
            ant1=kwargs.pop("ant1", ant1),
            ant2=kwargs.pop("ant2", ant2),
            chan_freqs_hz=chan_freqs_hz,
            timestamps_s=timestamps_s,
            cable_lengths_m=kwargs.pop("cable_lengths_m", np.zeros(n_ant)),
            digital_gains=kwargs.pop("digital_gains", np.ones((n_ant, n_chan))),
            antenna_positions_m=kwargs.pop("antenna_positions_m", np.zeros((n_ant, 3))),
            channel_width_hz=channel_width,
            integration_time_s=integration,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Derived properties
    # ------------------------------------------------------------------

    @property
    def n_baselines(self) -> int:
        return len(self.ant1)

    @property
    def cube_shape(self) -> Tuple[int, int, int, int]:
        return (self.n_time, self.n_chan, self.n_baselines, self.n_pol)

    @property
    def mask_shape(self) -> Tuple[int, int, int]:
        return (self.n_time, self.n_chan, self.n_baselines)

    def is_auto(self, baseline: int) -> bool:
        return int(self.ant1[baseline]) == int(self.ant2[baseline])

    def baseline_antennas(self, baseline: int) -> Tuple[int, int]:
        return int(self.ant1[baseline]), int(self.ant2[baseline])

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Check internal consistency. Raises ConfigError naming the failed check."""
        if self.n_ant < 1 or self.n_time < 1 or self.n_chan < 1:
            raise ConfigError(
                f"empty observation: n_ant={self.n_ant}, n_time={self.n_time}, n_chan={self.n_chan}"
            )
        if self.n_pol not in SUPPORTED_POLS:
            raise ConfigError(
                f"unsupported polarisation count {self.n_pol}; expected one of {SUPPORTED_POLS}"
            )
        if self.pol_labels and len(self.pol_labels) != self.n_pol:
            raise ConfigError(f"pol_labels has {len(self.pol_labels)} entries, n_pol={self.n_pol}")

        if self.ant1.shape != self.ant2.shape:
            raise ConfigError(f"ant1 {self.ant1.shape} and ant2 {self.ant2.shape} differ in length")
        expected_bl = self.n_ant * (self.n_ant + 1) // 2
        if self.n_baselines != expected_bl:
            raise ConfigError(
                f"{self.n_baselines} baselines for {self.n_ant} antennas; "
                f"expected {expected_bl} (including autocorrelations)"
            )
        if self.n_baselines and (self.ant1.min() < 0 or self.ant2.max() >= self.n_ant):
            raise ConfigError(f"baseline antenna index outside [0, {self.n_ant})")

        checks = [
            ("chan_freqs_hz", self.chan_freqs_hz.shape, (self.n_chan,)),
            ("timestamps_s", self.timestamps_s.shape, (self.n_time,)),
            ("cable_lengths_m", self.cable_lengths_m.shape, (self.n_ant,)),
            ("digital_gains", self.digital_gains.shape, (self.n_ant, self.n_chan)),
            ("antenna_positions_m", self.antenna_positions_m.shape, (self.n_ant, 3)),
        ]
        if self.passband is not None:
            checks.append(("passband", self.passband.shape, (self.n_chan,)))
        if self.lst_rad is not None:
            checks.append(("lst_rad", self.lst_rad.shape, (self.n_time,)))
        for name, found, expected in checks:
            if found != expected:
                raise ConfigError(f"{name} has shape {found}, expected {expected}")

        if self.fine_chans_per_coarse and self.n_chan % self.fine_chans_per_coarse:
            raise ConfigError(
                f"n_chan={self.n_chan} is not a multiple of "
                f"fine_chans_per_coarse={self.fine_chans_per_coarse}"
            )


__all__ = ['ObservationContext', 'baselines_for', 'SUPPORTED_POLS']
