"""
VISPREP Configuration.

Parses a YAML run file into dataclasses. Bad input raises ConfigError with
the offending field named.

Config format:
    input: obs.h5
    output: obs_avg.h5
    overwrite: false
    corrections:
      cable: true
      geometric: true
      digital_gains: true
      passband: false
    flagging:
      enable: true
      engine: aoflagger
      strategy: null          # engine default for `telescope`
      telescope: MWA
      engine_major: 3
    preflag:
      init_steps: 0           # or init_seconds
      end_steps: 0
      times: []
      edge_chans: 0
      fine_chans: []
      antennas: []
      autos: false
    averaging:
      time_factor: 1          # or time_res_s
      freq_factor: 1          # or freq_res_hz
    workers: 0                # 0 = one per physical core
    memory_limit_gb: 0
    log_dir: null
    selection:
      times: [0, 59]          # inclusive time step range
    phase_centre: [0.0, -27.0]  # RA, Dec in degrees; overrides the input
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
import logging

from .core.corrections import Corrections
from .core.preflag import PreflagOptions
from .errors import ConfigError

logger = logging.getLogger("visprep")


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass
class FlaggingConfig:
    enable: bool = True
    engine: str = "aoflagger"
    strategy: Optional[str] = None
    telescope: str = "MWA"
    engine_major: Optional[int] = 3


@dataclass
class AveragingConfig:
    time_factor: int = 1
    freq_factor: int = 1
    time_res_s: Optional[float] = None
    freq_res_hz: Optional[float] = None


@dataclass
class VisprepConfig:
    """Full parsed config."""
    input: str
    output: Optional[str] = None
    overwrite: bool = False
    corrections: Corrections = Corrections.DEFAULT
    flagging: FlaggingConfig = field(default_factory=FlaggingConfig)
    preflag: PreflagOptions = field(default_factory=PreflagOptions)
    preflag_init_seconds: float = 0.0
    preflag_end_seconds: float = 0.0
    averaging: AveragingConfig = field(default_factory=AveragingConfig)
    workers: int = 0
    memory_limit_gb: float = 0.0
    log_dir: Optional[str] = None
    sel_times: Optional[Tuple[int, int]] = None
    phase_centre_deg: Optional[Tuple[float, float]] = None


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

CORRECTION_KEYS = {
    "cable": Corrections.CABLE,
    "geometric": Corrections.GEOMETRIC,
    "digital_gains": Corrections.DIGITAL_GAINS,
    "passband": Corrections.PASSBAND,
}

CORRECTION_DEFAULTS = {"cable": True, "geometric": True, "digital_gains": True, "passband": False}


def load_config(path: str) -> VisprepConfig:
    """Load and validate a YAML config."""
    import yaml

    path = Path(path)
    if not path.exists():
        _die(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f)

    return parse_config(raw)


def parse_config(raw: Any) -> VisprepConfig:
    """Validate an already-loaded mapping."""
    if not isinstance(raw, dict):
        _die("Config must be a YAML mapping")
    if not raw.get("input"):
        _die("missing required field 'input'")

    cfg = VisprepConfig(input=str(raw["input"]))
    cfg.output = str(raw["output"]) if raw.get("output") else None
    cfg.overwrite = bool(raw.get("overwrite", False))
    cfg.corrections = _parse_corrections(raw.get("corrections") or {})
    cfg.flagging = _parse_flagging(raw.get("flagging") or {})
    cfg.preflag, cfg.preflag_init_seconds, cfg.preflag_end_seconds = _parse_preflag(raw.get("preflag") or {})
    cfg.averaging = _parse_averaging(raw.get("averaging") or {})
    cfg.workers = _int(raw.get("workers", 0), "workers", minimum=0)
    cfg.memory_limit_gb = _float(raw.get("memory_limit_gb", 0) or 0, "memory_limit_gb", minimum=0.0)
    cfg.log_dir = raw.get("log_dir")
    cfg.sel_times = _parse_selection(raw.get("selection") or {})
    if raw.get("phase_centre") is not None:
        cfg.phase_centre_deg = _parse_phase_centre(raw["phase_centre"])
    return cfg


def _parse_corrections(entry: dict) -> Corrections:
    _mapping(entry, "corrections")
    unknown = set(entry) - set(CORRECTION_KEYS)
    if unknown:
        _die(f"corrections: unknown key(s) {sorted(unknown)}. Valid: {sorted(CORRECTION_KEYS)}")
    return Corrections.from_names(
        key for key in CORRECTION_KEYS if bool(entry.get(key, CORRECTION_DEFAULTS[key]))
    )


def _parse_flagging(entry: dict) -> FlaggingConfig:
    _mapping(entry, "flagging")
    major = entry.get("engine_major", 3)
    return FlaggingConfig(
        enable=bool(entry.get("enable", True)),
        engine=str(entry.get("engine", "aoflagger")),
        strategy=str(entry["strategy"]) if entry.get("strategy") else None,
        telescope=str(entry.get("telescope", "MWA")),
        engine_major=None if major is None else _int(major, "flagging.engine_major", minimum=0),
    )


def _parse_preflag(entry: dict):
    _mapping(entry, "preflag")
    if entry.get("init_steps") and entry.get("init_seconds"):
        _die("preflag: use either init_steps or init_seconds, not both")
    if entry.get("end_steps") and entry.get("end_seconds"):
        _die("preflag: use either end_steps or end_seconds, not both")
    opts = PreflagOptions(
        init_steps=_int(entry.get("init_steps", 0), "preflag.init_steps", minimum=0),
        end_steps=_int(entry.get("end_steps", 0), "preflag.end_steps", minimum=0),
        times=[_int(t, "preflag.times", minimum=0) for t in _ensure_list(entry.get("times"))],
        edge_chans=_int(entry.get("edge_chans", 0), "preflag.edge_chans", minimum=0),
        fine_chans=[_int(c, "preflag.fine_chans", minimum=0) for c in _ensure_list(entry.get("fine_chans"))],
        antennas=[_int(a, "preflag.antennas", minimum=0) for a in _ensure_list(entry.get("antennas"))],
        autos=bool(entry.get("autos", False)),
    )
    return opts, float(entry.get("init_seconds", 0) or 0), float(entry.get("end_seconds", 0) or 0)


def _parse_averaging(entry: dict) -> AveragingConfig:
    _mapping(entry, "averaging")
    if "time_factor" in entry and "time_res_s" in entry:
        _die("averaging: use either time_factor or time_res_s, not both")
    if "freq_factor" in entry and "freq_res_hz" in entry:
        _die("averaging: use either freq_factor or freq_res_hz, not both")
    return AveragingConfig(
        time_factor=_int(entry.get("time_factor", 1), "averaging.time_factor", minimum=1),
        freq_factor=_int(entry.get("freq_factor", 1), "averaging.freq_factor", minimum=1),
        time_res_s=_float(entry["time_res_s"], "averaging.time_res_s") if entry.get("time_res_s") is not None else None,
        freq_res_hz=_float(entry["freq_res_hz"], "averaging.freq_res_hz") if entry.get("freq_res_hz") is not None else None,
    )


def _parse_selection(entry: dict) -> Optional[Tuple[int, int]]:
    _mapping(entry, "selection")
    times = entry.get("times")
    if times is None:
        return None
    if not isinstance(times, list) or len(times) != 2:
        _die(f"selection.times: expected [start, end], got {times!r}")
    start = _int(times[0], "selection.times", minimum=0)
    end = _int(times[1], "selection.times", minimum=0)
    if end < start:
        _die(f"selection.times: end {end} before start {start}")
    return start, end


def _parse_phase_centre(val) -> Tuple[float, float]:
    if not isinstance(val, list) or len(val) != 2:
        _die(f"phase_centre: expected [ra_deg, dec_deg], got {val!r}")
    ra = _float(val[0], "phase_centre.ra")
    dec = _float(val[1], "phase_centre.dec")
    if not -90.0 <= dec <= 90.0:
        _die(f"phase_centre.dec: must be within [-90, 90], got {dec}")
    return ra, dec


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _mapping(entry, name: str) -> None:
    if not isinstance(entry, dict):
        _die(f"'{name}' must be a mapping")


def _int(val, name: str, minimum: Optional[int] = None) -> int:
    if isinstance(val, bool):
        _die(f"{name}: expected an integer, got {val!r}")
    try:
        out = int(val)
    except (TypeError, ValueError):
        _die(f"{name}: expected an integer, got {val!r}")
    if out != val and not isinstance(val, str):
        _die(f"{name}: expected an integer, got {val!r}")
    if minimum is not None and out < minimum:
        _die(f"{name}: must be >= {minimum}, got {out}")
    return out


def _float(val, name: str, minimum: Optional[float] = None) -> float:
    if isinstance(val, bool):
        _die(f"{name}: expected a number, got {val!r}")
    try:
        out = float(val)
    except (TypeError, ValueError):
        _die(f"{name}: expected a number, got {val!r}")
    if minimum is not None and out < minimum:
        _die(f"{name}: must be >= {minimum}, got {out}")
    return out


def _ensure_list(val):
    if val is None:
        return []
    if isinstance(val, list):
        return val
    return [val]


def _die(msg: str):
    raise ConfigError(msg)


def config_to_yaml(config: VisprepConfig) -> str:
    """Serialize config back to YAML string for reproducibility."""
    import yaml
    d: Dict[str, Any] = {
        "input": config.input,
        "output": config.output,
        "overwrite": config.overwrite,
        "corrections": {k: bool(flag in config.corrections) for k, flag in CORRECTION_KEYS.items()},
        "flagging": {
            "enable": config.flagging.enable,
            "engine": config.flagging.engine,
            "strategy": config.flagging.strategy,
            "telescope": config.flagging.telescope,
            "engine_major": config.flagging.engine_major,
        },
        "preflag": {
            "init_steps": config.preflag.init_steps,
            "end_steps": config.preflag.end_steps,
            "times": list(config.preflag.times),
            "edge_chans": config.preflag.edge_chans,
            "fine_chans": list(config.preflag.fine_chans),
            "antennas": list(config.preflag.antennas),
            "autos": config.preflag.autos,
        },
        "averaging": {
            "time_factor": config.averaging.time_factor,
            "freq_factor": config.averaging.freq_factor,
        },
        "workers": config.workers,
        "memory_limit_gb": config.memory_limit_gb,
        "log_dir": config.log_dir,
    }
    if config.sel_times is not None:
        d["selection"] = {"times": list(config.sel_times)}
    if config.phase_centre_deg is not None:
        d["phase_centre"] = list(config.phase_centre_deg)
    if config.preflag_init_seconds:
        d["preflag"]["init_seconds"] = config.preflag_init_seconds
    if config.preflag_end_seconds:
        d["preflag"]["end_seconds"] = config.preflag_end_seconds
    if config.averaging.time_res_s is not None:
        del d["averaging"]["time_factor"]
        d["averaging"]["time_res_s"] = config.averaging.time_res_s
    if config.averaging.freq_res_hz is not None:
        del d["averaging"]["freq_factor"]
        d["averaging"]["freq_res_hz"] = config.averaging.freq_res_hz
    return yaml.dump(d, default_flow_style=False, sort_keys=False)


__all__ = [
    'VisprepConfig',
    'FlaggingConfig',
    'AveragingConfig',
    'load_config',
    'parse_config',
    'config_to_yaml',
]
