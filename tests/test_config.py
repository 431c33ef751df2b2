"""Tests for YAML configuration parsing."""

import pytest
import yaml

from visprep.config import config_to_yaml, load_config, parse_config
from visprep.core import Corrections
from visprep.errors import ConfigError
from visprep.pipeline import options_from_config


class TestParse:

    def test_minimal_defaults(self):
        cfg = parse_config({"input": "obs.h5"})
        assert cfg.output is None
        assert cfg.corrections == Corrections.DEFAULT
        assert cfg.flagging.enable
        assert cfg.flagging.engine == "aoflagger"
        assert cfg.flagging.engine_major == 3
        assert cfg.averaging.time_factor == 1
        assert not cfg.preflag.enabled

    def test_full(self):
        cfg = parse_config({
            "input": "obs.h5",
            "output": "avg.h5",
            "corrections": {"geometric": False, "passband": True},
            "flagging": {"strategy": "mwa.lua", "telescope": "MWA"},
            "preflag": {"init_seconds": 4, "edge_chans": 2, "antennas": [3, 7], "autos": True},
            "averaging": {"time_res_s": 2.0, "freq_factor": 4},
            "workers": 8,
        })
        assert cfg.corrections == (Corrections.CABLE | Corrections.DIGITAL_GAINS | Corrections.PASSBAND)
        assert cfg.flagging.strategy == "mwa.lua"
        assert cfg.preflag_init_seconds == 4.0
        assert cfg.preflag.antennas == [3, 7]
        assert cfg.averaging.time_res_s == 2.0
        assert cfg.averaging.freq_factor == 4
        assert cfg.workers == 8

    @pytest.mark.parametrize("raw, field", [
        ({}, "input"),
        ({"input": "a", "corrections": {"bogus": True}}, "bogus"),
        ({"input": "a", "averaging": {"time_factor": 0}}, "time_factor"),
        ({"input": "a", "averaging": {"time_factor": 2, "time_res_s": 2.0}}, "time_res_s"),
        ({"input": "a", "preflag": {"init_steps": 1, "init_seconds": 2}}, "init_seconds"),
        ({"input": "a", "workers": "many"}, "workers"),
        ({"input": "a", "flagging": ["aoflagger"]}, "flagging"),
        ({"input": "a", "memory_limit_gb": "lots"}, "memory_limit_gb"),
        ({"input": "a", "averaging": {"time_res_s": "slow"}}, "time_res_s"),
        ({"input": "a", "selection": {"times": [3, 1]}}, "selection.times"),
        ({"input": "a", "selection": {"times": [0]}}, "selection.times"),
        ({"input": "a", "selection": {"times": [-1, 2]}}, "selection.times"),
        ({"input": "a", "phase_centre": [10.0, 95.0]}, "phase_centre"),
        ({"input": "a", "phase_centre": "zenith"}, "phase_centre"),
    ])
    def test_invalid(self, raw, field):
        with pytest.raises(ConfigError) as exc_info:
            parse_config(raw)
        assert field in str(exc_info.value)

    def test_selection_and_phase_centre(self):
        cfg = parse_config({
            "input": "obs.h5",
            "selection": {"times": [2, 5]},
            "phase_centre": [0, -26.7],
            "memory_limit_gb": 8,
        })
        assert cfg.sel_times == (2, 5)
        assert cfg.phase_centre_deg == (0.0, -26.7)
        assert cfg.memory_limit_gb == 8.0

    def test_correction_names(self):
        cfg = parse_config({"input": "obs.h5", "corrections": {"cable": False, "passband": True}})
        assert Corrections.CABLE not in cfg.corrections
        assert Corrections.PASSBAND in cfg.corrections
        assert cfg.corrections == Corrections.from_names(["digital_gains", "geometric", "passband"])

    def test_not_a_mapping(self):
        with pytest.raises(ConfigError):
            parse_config(["input"])


class TestFiles:

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(tmp_path / "missing.yaml")

    def test_yaml_round_trip(self, tmp_path):
        raw = {
            "input": "obs.h5",
            "output": "avg.h5",
            "corrections": {"cable": False},
            "preflag": {"end_seconds": 2.0, "fine_chans": [0, 16]},
            "averaging": {"freq_res_hz": 80e3},
            "selection": {"times": [1, 3]},
            "phase_centre": [120.5, -30.0],
        }
        path = tmp_path / "run.yaml"
        path.write_text(yaml.safe_dump(raw))
        cfg = load_config(path)

        again = parse_config(yaml.safe_load(config_to_yaml(cfg)))
        assert again == cfg


class TestResolve:

    def test_resolutions_and_seconds(self, make_ctx):
        ctx = make_ctx(integration_time_s=0.5, channel_width_hz=10e3)
        cfg = parse_config({
            "input": "obs.h5",
            "preflag": {"init_seconds": 1.0, "end_seconds": 0.6},
            "averaging": {"time_res_s": 2.0, "freq_res_hz": 40e3},
        })
        opts = options_from_config(cfg, ctx)
        assert (opts.time_factor, opts.freq_factor) == (4, 4)
        assert (opts.preflag.init_steps, opts.preflag.end_steps) == (2, 2)
        assert cfg.preflag.init_steps == 0

    def test_non_multiple_resolution(self, make_ctx):
        cfg = parse_config({"input": "obs.h5", "averaging": {"time_res_s": 1.5}})
        with pytest.raises(ConfigError):
            options_from_config(cfg, make_ctx(integration_time_s=1.0))
