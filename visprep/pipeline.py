"""VISPREP Pipeline.

Orchestrates: correct -> flag (per baseline, in parallel) -> average -> finalize.

Cube states, strictly forward:
  INITIALIZED -> CORRECTED -> FLAGGED -> AVERAGED -> FINALIZED

Each baseline task runs correction then flagging on its own BaselineView.
Baselines finish in any order; averaging starts only after every task has
returned (executor join). A task that fails leaves its baseline fully
flagged and the run continues. Fatal errors (config, strategy, dimensions)
surface from setup() before any worker starts.

The input cube is modified in place (corrections, flags, weights).
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import time as _time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

import numpy as np
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TextColumn, TimeElapsedColumn

from .core.averaging import average_context, average_cube, check_factor, resolution_to_factor
from .core.context import ObservationContext
from .core.corrections import Corrections, correct_baseline
from .core.cube import VisibilityCube, select_times
from .core.geometry import hour_angles
from .core.logging_utils import log_averaging_summary, log_failure_summary, log_flagging_summary
from .core.memory import check_memory, default_workers
from .core.preflag import PreflagOptions, init_steps_from_seconds, preflag_mask
from .errors import ConfigError, DimensionMismatchError, StrategyLoadError
from .flagging.bridge import FlagBridge

logger = logging.getLogger("visprep")

_console = Console()

FATAL_ERRORS = (ConfigError, StrategyLoadError, DimensionMismatchError)


def setup_logging(log_dir: Optional[str] = None, use_rich: bool = True,
                  level: int = logging.INFO) -> logging.Logger:
    """
    Setup logging with rich console output and optional file output.

    Parameters
    ----------
    log_dir : str, optional
        Directory for a timestamped plain-text log file
    use_rich : bool
        Use a RichHandler for the console
    level : int
        Logging level

    Returns
    -------
    logger : logging.Logger
    """
    log = logging.getLogger("visprep")
    log.setLevel(level)
    log.handlers.clear()

    fmt = logging.Formatter('[%(asctime)s] %(levelname)-8s %(message)s', datefmt='%H:%M:%S')

    if log_dir:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = Path(log_dir) / f"visprep_run_{timestamp}.log"
        fh = logging.FileHandler(log_file)
        fh.setLevel(level)
        fh.setFormatter(fmt)
        log.addHandler(fh)

    if use_rich:
        ch = RichHandler(console=_console, show_time=True, show_path=False)
    else:
        ch = logging.StreamHandler()
        ch.setFormatter(fmt)
    ch.setLevel(level)
    log.addHandler(ch)

    if log_dir:
        log.info(f"Log file: {log_file}")
    return log


# ============================================================
# STATE
# ============================================================

class PipelineState(enum.IntEnum):
    INITIALIZED = 0
    CORRECTED = 1
    FLAGGED = 2
    AVERAGED = 3
    FINALIZED = 4


class BaselineState(enum.Enum):
    PENDING = "pending"
    CORRECTED = "corrected"
    FLAGGED = "flagged"
    FAILED = "failed"


@dataclass
class PipelineOptions:
    corrections: Corrections = Corrections.DEFAULT
    flag: bool = True
    preflag: PreflagOptions = field(default_factory=PreflagOptions)
    time_factor: int = 1
    freq_factor: int = 1
    workers: int = 0
    show_progress: bool = True
    memory_limit_gb: float = 0.0


@dataclass
class PipelineResult:
    context: ObservationContext
    cube: VisibilityCube
    baseline_states: List[BaselineState]
    failures: Dict[int, str]
    stats: Dict[str, int]
    elapsed_s: float = 0.0

    @property
    def n_failed(self) -> int:
        return len(self.failures)


# ============================================================
# ORCHESTRATOR
# ============================================================

class Pipeline:
    """Correct, flag and average one observation."""

    def __init__(self, ctx: ObservationContext, cube: VisibilityCube,
                 options: Optional[PipelineOptions] = None,
                 bridge: Optional[FlagBridge] = None):
        self.ctx = ctx
        self.cube = cube
        self.options = options or PipelineOptions()
        self.bridge = bridge
        self.state = PipelineState.INITIALIZED
        self.baseline_states = [BaselineState.PENDING] * ctx.n_baselines
        self.failures: Dict[int, str] = {}
        self.stats: Dict[str, int] = {}
        self._ha: Optional[np.ndarray] = None
        self._ready = False

    # ------------------------------------------------------------------

    def _advance(self, new: PipelineState) -> None:
        if new != self.state + 1:
            raise RuntimeError(f"invalid pipeline transition {self.state.name} -> {new.name}")
        self.state = new

    def setup(self) -> None:
        """Every fatal check, before any worker starts."""
        opts = self.options
        self.ctx.validate()
        self.cube.validate(self.ctx)
        check_factor("time_factor", opts.time_factor)
        check_factor("freq_factor", opts.freq_factor)
        if Corrections.PASSBAND in opts.corrections and self.ctx.passband is None:
            raise ConfigError("passband correction enabled but the context carries no passband")

        if opts.flag:
            if self.bridge is None:
                raise ConfigError("flagging enabled but no flagging engine configured")
            if self.bridge.strategy is None:
                self.bridge.prepare()

        if Corrections.GEOMETRIC in opts.corrections:
            self._ha = hour_angles(self.ctx)

        check_memory(self.ctx, opts.time_factor, opts.freq_factor,
                     vis_dtype=self.cube.vis.dtype, memory_limit_gb=opts.memory_limit_gb)

        before = int(np.count_nonzero(self.cube.flags))
        if opts.preflag.enabled:
            preflag_mask(self.cube.flags, self.ctx, opts.preflag)
        self.stats["total_samples"] = int(self.cube.flags.size)
        self.stats["input_flagged"] = before
        self.stats["preflagged"] = int(np.count_nonzero(self.cube.flags)) - before
        self._ready = True

    # ------------------------------------------------------------------

    def _process_baseline(self, index: int) -> int:
        """One task: correct, then flag, a single baseline."""
        view = self.cube.baseline(index, self.ctx)
        correct_baseline(view, self.ctx, self.options.corrections, ha=self._ha)
        self.baseline_states[index] = BaselineState.CORRECTED
        n_new = 0
        if self.options.flag:
            n_new = self.bridge.flag_baseline(view)
        self.baseline_states[index] = BaselineState.FLAGGED
        return n_new

    def _fail_baseline(self, index: int, err: Exception) -> None:
        self.cube.baseline(index, self.ctx).flag_all()
        self.baseline_states[index] = BaselineState.FAILED
        self.failures[index] = f"{type(err).__name__}: {err}"
        logger.debug(f"  baseline {index} failed", exc_info=err)

    def process_baselines(self) -> None:
        """Run all baseline tasks over a bounded thread pool and join."""
        if not self._ready:
            self.setup()

        n_bl = self.ctx.n_baselines
        workers = self.options.workers or default_workers(n_bl)
        logger.info(f"  processing {n_bl} baselines on {workers} worker(s)")

        rfi_flagged = 0
        progress = Progress(
            TextColumn("{task.description}"), BarColumn(), TextColumn("{task.completed}/{task.total}"),
            TimeElapsedColumn(), console=_console, disable=not self.options.show_progress,
        )
        with progress, ThreadPoolExecutor(max_workers=workers) as pool:
            task = progress.add_task("baselines", total=n_bl)
            futures = {pool.submit(self._process_baseline, b): b for b in range(n_bl)}
            for future in as_completed(futures):
                b = futures[future]
                try:
                    rfi_flagged += future.result()
                except FATAL_ERRORS:
                    for other in futures:
                        other.cancel()
                    raise
                except Exception as e:
                    self._fail_baseline(b, e)
                progress.advance(task)

        self._advance(PipelineState.CORRECTED)
        self._advance(PipelineState.FLAGGED)

        self.stats["rfi_flagged"] = rfi_flagged
        self.stats["failed_baselines"] = len(self.failures)
        self.stats["total_flagged"] = int(np.count_nonzero(self.cube.flags))
        log_failure_summary(self.failures, n_bl)
        log_flagging_summary(self.stats)

    def average(self) -> VisibilityCube:
        """Reduce the flagged cube. Only valid once every baseline is done."""
        if self.state != PipelineState.FLAGGED:
            raise RuntimeError(f"cannot average in state {self.state.name}; baselines not processed")
        opts = self.options
        out = average_cube(self.cube, opts.time_factor, opts.freq_factor)
        self._advance(PipelineState.AVERAGED)
        log_averaging_summary(self.cube.shape, out.shape, opts.time_factor, opts.freq_factor,
                              out.flagged_fraction())
        return out

    def run(self, writer: Optional[Callable[[ObservationContext, VisibilityCube], None]] = None) -> PipelineResult:
        """Full run. `writer` receives the averaged context and cube on finalize."""
        t0 = _time.time()
        if not self._ready:
            self.setup()
        self.process_baselines()
        averaged = self.average()
        ctx_avg = average_context(self.ctx, self.options.time_factor, self.options.freq_factor)
        if writer is not None:
            writer(ctx_avg, averaged)
        self._advance(PipelineState.FINALIZED)
        return PipelineResult(
            context=ctx_avg,
            cube=averaged,
            baseline_states=list(self.baseline_states),
            failures=dict(self.failures),
            stats=dict(self.stats),
            elapsed_s=_time.time() - t0,
        )


# ============================================================
# CONFIG-DRIVEN ENTRY POINT
# ============================================================

def options_from_config(config, ctx: ObservationContext) -> PipelineOptions:
    """Resolve resolutions and quack seconds against the observation."""
    avg = config.averaging
    time_factor = avg.time_factor
    freq_factor = avg.freq_factor
    if avg.time_res_s is not None:
        time_factor = resolution_to_factor(avg.time_res_s, ctx.integration_time_s, "time")
    if avg.freq_res_hz is not None:
        freq_factor = resolution_to_factor(avg.freq_res_hz, ctx.channel_width_hz, "frequency")

    preflag = dataclasses.replace(config.preflag)
    if config.preflag_init_seconds:
        preflag.init_steps = init_steps_from_seconds(config.preflag_init_seconds, ctx)
    if config.preflag_end_seconds:
        preflag.end_steps = init_steps_from_seconds(config.preflag_end_seconds, ctx)

    return PipelineOptions(
        corrections=config.corrections,
        flag=config.flagging.enable,
        preflag=preflag,
        time_factor=time_factor,
        freq_factor=freq_factor,
        workers=config.workers,
        memory_limit_gb=config.memory_limit_gb,
    )


def apply_selection(config, ctx: ObservationContext, cube: VisibilityCube):
    """Timestep crop and phase centre override, applied before setup()."""
    if config.sel_times is not None:
        start, end = config.sel_times
        ctx, cube = select_times(ctx, cube, start, end)
        logger.info(f"  selected timesteps {start}..{end} ({ctx.n_time} kept)")
    if config.phase_centre_deg is not None:
        ra_deg, dec_deg = config.phase_centre_deg
        ctx = dataclasses.replace(ctx, phase_centre=(float(np.deg2rad(ra_deg)),
                                                     float(np.deg2rad(dec_deg))))
        logger.info(f"  phase centre override: ra={ra_deg:.4f} deg, dec={dec_deg:.4f} deg")
    return ctx, cube


def run_pipeline(config, engine=None) -> PipelineResult:
    """Load the input cube, run every stage, write the output cube."""
    from .flagging import get_engine
    from .config import config_to_yaml
    from .io.hdf5 import load_cube, save_cube

    _console.print(Panel("[bold cyan]VISPREP[/bold cyan]: visibility preprocessing",
                         style="bold blue"))

    if config.output and Path(config.output).exists() and not config.overwrite:
        raise ConfigError(f"output {config.output} exists; set overwrite: true to replace it")

    ctx, cube = load_cube(config.input)
    logger.info(f"  input {config.input}: {cube.shape} (time, chan, baseline, pol)")
    ctx, cube = apply_selection(config, ctx, cube)

    options = options_from_config(config, ctx)

    bridge = None
    if options.flag:
        if engine is None:
            engine = get_engine(config.flagging.engine)
        bridge = FlagBridge(engine, strategy_path=config.flagging.strategy,
                            telescope_id=config.flagging.telescope,
                            required_major=config.flagging.engine_major)

    provenance = config_to_yaml(config)
    writer = None
    if config.output:
        def writer(ctx_avg, cube_avg):
            save_cube(config.output, ctx_avg, cube_avg, overwrite=config.overwrite,
                      state=PipelineState.FINALIZED.name, config_yaml=provenance)

    result = Pipeline(ctx, cube, options, bridge).run(writer=writer)
    logger.info(f"Done in {result.elapsed_s:.1f}s")
    return result


__all__ = [
    'Pipeline',
    'PipelineOptions',
    'PipelineResult',
    'PipelineState',
    'BaselineState',
    'run_pipeline',
    'apply_selection',
    'options_from_config',
    'setup_logging',
]
