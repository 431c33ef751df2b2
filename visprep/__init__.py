"""
VISPREP - Radio Visibility Preprocessing

Turns raw correlator visibilities into a corrected, RFI-flagged and averaged
cube ready for calibration and imaging.

Stages:
- Instrumental corrections per baseline (cable length, geometric delay,
  digital gains, optional passband)
- Preflagging (quack time, channel edges, bad antennas, autocorrelations)
- RFI flagging through an external engine (AOFlagger)
- Flag-aware weighted averaging in time and frequency
- HDF5 cube I/O and YAML-driven runs with rich logging

Usage:
    from visprep import ObservationContext, VisibilityCube, Pipeline, PipelineOptions
    from visprep.flagging import FlagBridge, get_engine

    ctx = ObservationContext.create(n_ant=128, n_time=60, n_chan=768, ...)
    cube = VisibilityCube.from_arrays(vis, weights, flags)

    bridge = FlagBridge(get_engine("aoflagger"), telescope_id="MWA")
    options = PipelineOptions(time_factor=2, freq_factor=4)
    result = Pipeline(ctx, cube, options, bridge).run()

Config-driven:
    visprep run preprocess.yaml
"""

__version__ = "1.0.0"

from .errors import (
    VisprepError,
    ConfigError,
    StrategyLoadError,
    DimensionMismatchError,
    BaselineProcessingError,
)
from .core import (
    ObservationContext,
    VisibilityCube,
    BaselineView,
    Corrections,
    PreflagOptions,
    merge_flags,
    average_cube,
)
from .pipeline import (
    Pipeline,
    PipelineOptions,
    PipelineResult,
    PipelineState,
    run_pipeline,
    setup_logging,
)

__all__ = [
    '__version__',
    'VisprepError',
    'ConfigError',
    'StrategyLoadError',
    'DimensionMismatchError',
    'BaselineProcessingError',
    'ObservationContext',
    'VisibilityCube',
    'BaselineView',
    'Corrections',
    'PreflagOptions',
    'merge_flags',
    'average_cube',
    'Pipeline',
    'PipelineOptions',
    'PipelineResult',
    'PipelineState',
    'run_pipeline',
    'setup_logging',
]
