"""
Flagging Engine Contract.

The RFI detector is external. Any engine that can report a version, locate
and load a strategy, and run it over an image set can be plugged in by
subclassing FlaggingEngine.

Buffers crossing the boundary are explicit (width, stride, buffer) triples:

  ImageSet  plane i : float32, stride * height elements, row r at [r * stride]
  FlagMask          : uint8, stride * height / 8 bytes, bits packed little-endian,
                      row r starting at bit r * stride

Rows are time steps and columns are channels. Samples between `width` and
`stride` in a row are padding and carry no data.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Tuple
import logging

import numpy as np

logger = logging.getLogger("visprep")


def round_up(n: int, multiple: int) -> int:
    return -(-n // multiple) * multiple


# ---------------------------------------------------------------------------
# Buffers
# ---------------------------------------------------------------------------

class ImageSet:
    """A stack of float32 planes sharing one (width, height, stride) geometry.

    Owned by the task that created it.
    """

    def __init__(self, width: int, height: int, count: int,
                 initial_value: float = 0.0, width_capacity: int = 0):
        width_capacity = width_capacity or width
        if width_capacity < width:
            raise ValueError(f"width_capacity {width_capacity} < width {width}")
        self.width = width
        self.height = height
        self.count = count
        self.horizontal_stride = width_capacity
        self._planes = np.full((count, width_capacity * height), initial_value, dtype=np.float32)

    def image_buffer(self, index: int) -> np.ndarray:
        """Flat, writable view of plane `index`: stride * height float32."""
        return self._planes[index]

    def __repr__(self):
        return (f"ImageSet(width={self.width}, height={self.height}, "
                f"count={self.count}, stride={self.horizontal_stride})")


class FlagMask:
    """Packed boolean image. Stride is in samples and always a multiple of 8."""

    def __init__(self, width: int, height: int, initial_value: bool = False, stride: int = 0):
        stride = round_up(max(stride, width, 1), 8)
        self.width = width
        self.height = height
        self.horizontal_stride = stride
        fill = 0xFF if initial_value else 0x00
        self.buffer = np.full(stride * height // 8, fill, dtype=np.uint8)

    def __repr__(self):
        return f"FlagMask(width={self.width}, height={self.height}, stride={self.horizontal_stride})"


def unpack_mask(buffer: np.ndarray, width: int, height: int, stride: int) -> np.ndarray:
    """Packed mask buffer -> bool (height, width), dropping stride padding."""
    bits = np.unpackbits(buffer, bitorder="little")[:stride * height]
    return bits.reshape(height, stride)[:, :width].astype(bool)


def pack_mask(flags: np.ndarray, buffer: np.ndarray, stride: int) -> None:
    """bool (height, width) -> packed mask buffer, in place. Padding bits are cleared."""
    height, width = flags.shape
    padded = np.zeros((height, stride), dtype=bool)
    padded[:, :width] = flags
    buffer[:] = np.packbits(padded.ravel(), bitorder="little")


@dataclass(frozen=True)
class StrategyHandle:
    """A loaded strategy. Immutable and shared by every baseline task."""
    path: str
    program: Any
    engine: str = ""


# ---------------------------------------------------------------------------
# Engine contract
# ---------------------------------------------------------------------------

class FlaggingEngine(ABC):
    """External RFI detection capability."""

    name = "engine"
    # Image rows are padded to a multiple of this many samples.
    row_alignment = 8

    @abstractmethod
    def get_version(self) -> Tuple[int, int, int]:
        """(major, minor, patch) of the underlying engine."""

    @abstractmethod
    def find_default_strategy(self, telescope_id: str) -> str:
        """Path of the engine's default strategy for a telescope."""

    @abstractmethod
    def load_strategy(self, path: str) -> StrategyHandle:
        """Load a strategy file. Raise StrategyLoadError if missing or corrupt."""

    @abstractmethod
    def run_strategy(self, strategy: StrategyHandle, image_set: ImageSet,
                     existing_flags: FlagMask) -> FlagMask:
        """Run `strategy` over `image_set`, starting from `existing_flags`.

        Must not mutate the strategy. Returns the resulting mask, which
        includes the existing flags.
        """

    def fork_strategy(self, strategy: StrategyHandle) -> StrategyHandle:
        """Per-worker logical copy of a loaded strategy.

        Engines whose strategy objects carry run-time state override this; the
        default shares the immutable handle.
        """
        return strategy

    def make_image_set(self, width: int, height: int, plane_count: int,
                       initial_value: float = 0.0, width_capacity: int = 0) -> ImageSet:
        if not width_capacity:
            width_capacity = round_up(width, self.row_alignment)
        return ImageSet(width, height, plane_count, initial_value, width_capacity)

    def make_flag_mask(self, width: int, height: int, initial_value: bool = False) -> FlagMask:
        return FlagMask(width, height, initial_value, stride=round_up(width, self.row_alignment))


__all__ = [
    'ImageSet',
    'FlagMask',
    'StrategyHandle',
    'FlaggingEngine',
    'pack_mask',
    'unpack_mask',
    'round_up',
]
