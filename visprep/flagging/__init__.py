"""RFI flagging through an external engine."""

from ..errors import ConfigError
from .engine import (
    FlaggingEngine,
    ImageSet,
    FlagMask,
    StrategyHandle,
    pack_mask,
    unpack_mask,
)
from .bridge import FlagBridge


def get_engine(name: str = "aoflagger") -> FlaggingEngine:
    """Instantiate a flagging engine by name."""
    key = name.lower().strip()
    if key == "aoflagger":
        from .aoflagger import AOFlaggerEngine
        return AOFlaggerEngine()
    raise ConfigError(f"Unknown flagging engine '{name}'. Valid: aoflagger")


__all__ = [
    'FlaggingEngine',
    'ImageSet',
    'FlagMask',
    'StrategyHandle',
    'FlagBridge',
    'get_engine',
    'pack_mask',
    'unpack_mask',
]
