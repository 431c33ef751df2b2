"""
VISPREP Resources.

Estimates the memory footprint of a cube before processing and sizes the
baseline worker pool.
"""

import os
import logging

import numpy as np
import psutil

from .context import ObservationContext

logger = logging.getLogger("visprep")

GB = 1024**3


def get_available_ram_gb() -> float:
    """Get available system RAM in GB."""
    return psutil.virtual_memory().available / GB


def default_workers(n_tasks: int = 0) -> int:
    """Physical cores (falls back to logical), capped at the number of tasks."""
    cores = psutil.cpu_count(logical=False) or os.cpu_count() or 1
    if n_tasks > 0:
        return max(1, min(cores, n_tasks))
    return max(1, cores)


def estimate_cube_memory_gb(ctx: ObservationContext, vis_dtype=np.complex64,
                            time_factor: int = 1, freq_factor: int = 1) -> float:
    """Estimate peak memory for one run in GB.

    Accounts for: input vis + weights + flags, the averaged output, and per
    worker image sets (8 float planes + packed mask per baseline).
    """
    vis_item = np.dtype(vis_dtype).itemsize
    weight_item = vis_item // 2
    n_samples = ctx.n_time * ctx.n_chan * ctx.n_baselines
    input_bytes = n_samples * ctx.n_pol * (vis_item + weight_item) + n_samples

    n_out = -(-ctx.n_time // time_factor) * -(-ctx.n_chan // freq_factor) * ctx.n_baselines
    output_bytes = n_out * ctx.n_pol * (vis_item + weight_item) + n_out

    workers = default_workers(ctx.n_baselines)
    per_task = ctx.n_time * ctx.n_chan * (2 * ctx.n_pol * 4 + 1)
    task_bytes = workers * per_task

    return (input_bytes + output_bytes + task_bytes) / GB


def check_memory(ctx: ObservationContext, time_factor: int = 1, freq_factor: int = 1,
                 vis_dtype=np.complex64, memory_limit_gb: float = 0.0) -> float:
    """Warn when the estimate exceeds the limit (or available RAM). Returns the estimate."""
    need = estimate_cube_memory_gb(ctx, vis_dtype, time_factor, freq_factor)
    limit = memory_limit_gb if memory_limit_gb > 0 else get_available_ram_gb()
    if need > limit:
        logger.warning(f"  estimated memory {need:.2f} GB exceeds {limit:.2f} GB available")
    else:
        logger.info(f"  estimated memory {need:.2f} GB of {limit:.2f} GB available")
    return need


__all__ = ['get_available_ram_gb', 'default_workers', 'estimate_cube_memory_gb', 'check_memory']
