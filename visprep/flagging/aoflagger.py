"""
AOFlagger binding.

Implements the FlaggingEngine contract on top of the `aoflagger` Python
module shipped with AOFlagger 3. AOFlagger images run time along x and
frequency along y, the transpose of our (rows = time, columns = channel)
buffers; the transpose happens here and nowhere else.
"""

import re
from pathlib import Path
from typing import Tuple
import logging

import numpy as np

from ..errors import StrategyLoadError
from .engine import FlaggingEngine, FlagMask, ImageSet, StrategyHandle, pack_mask, unpack_mask

logger = logging.getLogger("visprep")


def _import_aoflagger():
    try:
        import aoflagger
    except ImportError as e:
        raise StrategyLoadError(
            "the 'aoflagger' Python module is not importable; install AOFlagger 3 "
            "with Python bindings or choose another flagging engine"
        ) from e
    return aoflagger


class AOFlaggerEngine(FlaggingEngine):
    """FlaggingEngine backed by AOFlagger."""

    name = "aoflagger"

    def __init__(self):
        self._ao = _import_aoflagger()
        self._flagger = self._ao.AOFlagger()

    def get_version(self) -> Tuple[int, int, int]:
        text = self._ao.AOFlagger.get_version_string()
        m = re.match(r"(\d+)\.(\d+)(?:\.(\d+))?", text)
        if not m:
            raise StrategyLoadError(f"cannot parse AOFlagger version '{text}'")
        return int(m.group(1)), int(m.group(2)), int(m.group(3) or 0)

    def find_default_strategy(self, telescope_id: str) -> str:
        key = telescope_id.upper()
        telescopes = self._ao.TelescopeId
        if not hasattr(telescopes, key):
            raise StrategyLoadError(f"AOFlagger has no telescope id '{telescope_id}'")
        return self._flagger.find_strategy_file(getattr(telescopes, key))

    def load_strategy(self, path: str) -> StrategyHandle:
        if not path or not Path(path).is_file():
            raise StrategyLoadError(f"strategy file not found: {path}")
        try:
            program = self._flagger.load_strategy_file(str(path))
        except RuntimeError as e:
            raise StrategyLoadError(f"AOFlagger could not load {path}: {e}") from e
        return StrategyHandle(path=str(path), program=program, engine=self.name)

    def fork_strategy(self, strategy: StrategyHandle) -> StrategyHandle:
        # AOFlagger strategies hold a Lua state that is not safe to share
        # between threads, so each worker gets its own copy of the same file.
        return self.load_strategy(strategy.path)

    def run_strategy(self, strategy: StrategyHandle, image_set: ImageSet,
                     existing_flags: FlagMask) -> FlagMask:
        n_time, n_chan = image_set.height, image_set.width
        stride = image_set.horizontal_stride

        ao_images = self._flagger.make_image_set(n_time, n_chan, image_set.count)
        for i in range(image_set.count):
            plane = image_set.image_buffer(i).reshape(n_time, stride)[:, :n_chan]
            ao_images.set_image_buffer(i, np.ascontiguousarray(plane.T))

        existing = unpack_mask(existing_flags.buffer, existing_flags.width,
                               existing_flags.height, existing_flags.horizontal_stride)
        ao_existing = self._flagger.make_flag_mask(n_time, n_chan, False)
        ao_existing.set_buffer(np.ascontiguousarray(existing.T))

        ao_result = strategy.program.run(ao_images, ao_existing)
        flags = np.asarray(ao_result.get_buffer(), dtype=bool).T | existing

        out = self.make_flag_mask(n_chan, n_time)
        pack_mask(flags, out.buffer, out.horizontal_stride)
        return out


__all__ = ['AOFlaggerEngine']
