"""
VISPREP Core.

Observation context, visibility cube, corrections, preflagging and averaging.
"""

from .context import ObservationContext, baselines_for
from .cube import VisibilityCube, BaselineView, merge_flags
from .corrections import Corrections, correct_baseline, correct_cube
from .preflag import PreflagOptions, preflag_mask
from .averaging import average_cube, average_context, resolution_to_factor

__all__ = [
    'ObservationContext',
    'baselines_for',
    'VisibilityCube',
    'BaselineView',
    'merge_flags',
    'Corrections',
    'correct_baseline',
    'correct_cube',
    'PreflagOptions',
    'preflag_mask',
    'average_cube',
    'average_context',
    'resolution_to_factor',
]
