"""
VISPREP Flag Bridge.

Moves one baseline at a time between the visibility arena and the external
flagging engine:

  1. prepare()      once, before any worker starts: version check, strategy
                    file check, strategy load
  2. flag_baseline  per task: copy the baseline into a fresh image set,
                    run the strategy, OR the resulting mask back

Image layout (per baseline):
  height = n_time (rows), width = n_chan (columns), stride >= width
  planes = re(p0), im(p0), re(p1), im(p1), ...   (2 * n_pol <= 8)

All buffer indexing goes through the handle's horizontal stride.
"""

import threading
from pathlib import Path
from typing import Optional
import logging

import numpy as np

from ..core.cube import BaselineView, merge_flags
from ..errors import BaselineProcessingError, StrategyLoadError
from .engine import FlaggingEngine, FlagMask, ImageSet, StrategyHandle, pack_mask, unpack_mask

logger = logging.getLogger("visprep")

MAX_PLANES = 8


class FlagBridge:
    """Adapter between BaselineViews and a FlaggingEngine."""

    def __init__(self, engine: FlaggingEngine, strategy_path: Optional[str] = None,
                 telescope_id: str = "MWA", required_major: Optional[int] = 3):
        self.engine = engine
        self.strategy_path = strategy_path
        self.telescope_id = telescope_id
        self.required_major = required_major
        self.strategy: Optional[StrategyHandle] = None
        self._local = threading.local()

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def prepare(self) -> StrategyHandle:
        """Verify the engine and load the strategy. Fatal on any failure."""
        version = tuple(self.engine.get_version())
        version_str = ".".join(str(v) for v in version)
        if self.required_major is not None and version[0] != self.required_major:
            raise StrategyLoadError(
                f"{self.engine.name} version {version_str} is not supported; "
                f"major version {self.required_major} required"
            )

        path = self.strategy_path
        if not path:
            path = self.engine.find_default_strategy(self.telescope_id)
            logger.info(f"  default {self.telescope_id} strategy: {path}")
        if not path or not Path(path).is_file():
            raise StrategyLoadError(f"strategy file not found: {path}")

        self.strategy = self.engine.load_strategy(str(path))
        self.strategy_path = str(path)
        logger.info(f"  flagging with {self.engine.name} {version_str}, strategy {path}")
        return self.strategy

    def _worker_strategy(self) -> StrategyHandle:
        if self.strategy is None:
            raise RuntimeError("FlagBridge.prepare() must run before flagging")
        strategy = getattr(self._local, "strategy", None)
        if strategy is None:
            strategy = self.engine.fork_strategy(self.strategy)
            self._local.strategy = strategy
        return strategy

    # ------------------------------------------------------------------
    # Layout translation
    # ------------------------------------------------------------------

    def baseline_to_image_set(self, view: BaselineView) -> ImageSet:
        """Copy one baseline's samples into a new image set."""
        n_time, n_chan, n_pol = view.vis.shape
        n_planes = 2 * n_pol
        if n_planes > MAX_PLANES:
            raise BaselineProcessingError(view.index, f"{n_pol} polarisations exceed {MAX_PLANES // 2}")

        images = self.engine.make_image_set(n_chan, n_time, n_planes, 0.0)
        stride = images.horizontal_stride
        if images.width != n_chan or images.height != n_time or stride < n_chan:
            raise BaselineProcessingError(
                view.index,
                f"engine returned image set {images.width}x{images.height} "
                f"(stride {stride}) for {n_chan}x{n_time}"
            )

        for p in range(n_pol):
            re_buf = images.image_buffer(2 * p)
            im_buf = images.image_buffer(2 * p + 1)
            if re_buf.size < stride * n_time:
                raise BaselineProcessingError(view.index, "image buffer smaller than stride * height")
            re_rows = re_buf[:stride * n_time].reshape(n_time, stride)
            im_rows = im_buf[:stride * n_time].reshape(n_time, stride)
            re_rows[:, :n_chan] = view.vis[:, :, p].real
            im_rows[:, :n_chan] = view.vis[:, :, p].imag
        return images

    def baseline_flags_to_mask(self, view: BaselineView) -> FlagMask:
        """Existing (time, channel) flags as a packed engine mask."""
        n_time, n_chan = view.flags.shape
        mask = self.engine.make_flag_mask(n_chan, n_time, False)
        pack_mask(np.asarray(view.flags, dtype=bool), mask.buffer, mask.horizontal_stride)
        return mask

    @staticmethod
    def mask_to_array(mask: FlagMask) -> np.ndarray:
        """Packed engine mask -> bool (n_time, n_chan)."""
        return unpack_mask(mask.buffer, mask.width, mask.height, mask.horizontal_stride)

    # ------------------------------------------------------------------
    # Per-baseline flagging
    # ------------------------------------------------------------------

    def flag_baseline(self, view: BaselineView) -> int:
        """Run the strategy on one baseline and OR the result into its flags.

        Returns the number of newly flagged (time, channel) samples.
        """
        strategy = self._worker_strategy()
        images = self.baseline_to_image_set(view)
        existing = self.baseline_flags_to_mask(view)

        result = self.engine.run_strategy(strategy, images, existing)

        if (result.width, result.height) != (view.n_chan, view.n_time):
            raise BaselineProcessingError(
                view.index,
                f"engine returned a {result.width}x{result.height} mask "
                f"for a {view.n_chan}x{view.n_time} image"
            )
        return merge_flags(view.flags, self.mask_to_array(result))


__all__ = ['FlagBridge', 'MAX_PLANES']
