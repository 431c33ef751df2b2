"""Tests for the flag bridge and engine buffer layout."""

import numpy as np
import pytest

from visprep.errors import BaselineProcessingError, ConfigError, StrategyLoadError
from visprep.flagging import FlagBridge, get_engine
from visprep.flagging.engine import FlagMask, ImageSet, pack_mask, unpack_mask

from tests.helpers.fake_engine import BrokenMaskEngine, FakeEngine, write_strategy


class TestBuffers:

    def test_image_set_stride(self):
        images = ImageSet(width=5, height=3, count=2, width_capacity=8)
        assert images.horizontal_stride == 8
        assert images.image_buffer(1).shape == (24,)
        with pytest.raises(ValueError):
            ImageSet(width=5, height=3, count=1, width_capacity=4)

    def test_mask_bytes(self):
        mask = FlagMask(width=5, height=3)
        assert mask.horizontal_stride == 8
        assert mask.buffer.nbytes == 8 * 3 // 8

    def test_pack_respects_stride(self):
        flags = np.zeros((2, 5), dtype=bool)
        flags[1, 4] = True
        mask = FlagMask(width=5, height=2, stride=16)
        pack_mask(flags, mask.buffer, mask.horizontal_stride)
        # bit 16 + 4 -> byte 2, bit 4 (little-endian)
        assert mask.buffer.tolist() == [0, 0, 0b10000, 0]
        np.testing.assert_array_equal(unpack_mask(mask.buffer, 5, 2, 16), flags)


class TestStartup:

    def test_version_mismatch(self, strategy_file):
        bridge = FlagBridge(FakeEngine(version=(2, 14, 0)), strategy_path=strategy_file)
        with pytest.raises(StrategyLoadError) as exc_info:
            bridge.prepare()
        assert "2.14.0" in str(exc_info.value)

    def test_missing_strategy_file(self, tmp_path):
        bridge = FlagBridge(FakeEngine(), strategy_path=str(tmp_path / "nope.yaml"))
        with pytest.raises(StrategyLoadError):
            bridge.prepare()

    def test_default_strategy_lookup(self, strategy_file):
        engine = FakeEngine(default_strategy=strategy_file)
        bridge = FlagBridge(engine)
        handle = bridge.prepare()
        assert handle.path == strategy_file
        assert bridge.strategy_path == strategy_file

    def test_no_default_strategy(self):
        with pytest.raises(StrategyLoadError):
            FlagBridge(FakeEngine()).prepare()

    def test_flag_before_prepare(self, ctx, cube, fake_engine):
        with pytest.raises(RuntimeError):
            FlagBridge(fake_engine).flag_baseline(cube.baseline(1, ctx))

    def test_unknown_engine(self):
        with pytest.raises(ConfigError):
            get_engine("bogus")

    def test_aoflagger_missing_module_is_strategy_error(self):
        try:
            import aoflagger  # noqa: F401
        except ImportError:
            with pytest.raises(StrategyLoadError):
                get_engine("aoflagger")
        else:
            pytest.skip("aoflagger is installed")


class TestFlagBaseline:

    def test_image_layout(self, ctx, cube, strategy_file):
        engine = FakeEngine(row_alignment=16, capture=True)
        bridge = FlagBridge(engine, strategy_path=strategy_file)
        bridge.prepare()
        view = cube.baseline(2, ctx)

        images = bridge.baseline_to_image_set(view)
        assert (images.width, images.height, images.count) == (ctx.n_chan, ctx.n_time, 2 * ctx.n_pol)
        assert images.horizontal_stride == 16
        rows = images.image_buffer(3).reshape(ctx.n_time, 16)
        np.testing.assert_array_equal(rows[:, :ctx.n_chan], view.vis[:, :, 1].imag)
        assert not rows[:, ctx.n_chan:].any()

        bridge.flag_baseline(view)
        call = engine.calls[-1]
        assert call["stride"] == 16
        assert not call["padding"].any()
        np.testing.assert_array_equal(engine.captured[-1], view.vis[:, :, 0].real)

    def test_or_merge(self, ctx, cube, bridge):
        cube.flags[1, 0, 2] = True
        added = bridge.flag_baseline(cube.baseline(2, ctx))
        assert added == ctx.n_time
        assert cube.flags[:, 2, 2].all()
        assert cube.flags[1, 0, 2]
        assert cube.flags[:, :, 2].sum() == ctx.n_time + 1
        assert not cube.flags[:, :, 1].any()

    def test_threshold_strategy_uses_time_rows(self, ctx, cube, tmp_path):
        path = write_strategy(tmp_path / "thr.yaml", threshold=50.0)
        bridge = FlagBridge(FakeEngine(row_alignment=32), strategy_path=path)
        bridge.prepare()
        cube.vis[3, 1, 5, 0] = 100.0
        bridge.flag_baseline(cube.baseline(5, ctx))
        expected = np.zeros((ctx.n_time, ctx.n_chan), dtype=bool)
        expected[3, 1] = True
        np.testing.assert_array_equal(cube.flags[:, :, 5], expected)

    def test_strategy_not_mutated(self, ctx, cube, bridge, fake_engine):
        program = dict(bridge.strategy.program)
        for view in cube.baselines(ctx):
            bridge.flag_baseline(view)
        assert bridge.strategy.program == program
        assert fake_engine.loads == 1
        assert len(fake_engine.calls) == ctx.n_baselines

    def test_single_polarisation(self, make_ctx, make_cube, bridge):
        ctx = make_ctx(n_pol=1)
        cube = make_cube(ctx)
        assert bridge.baseline_to_image_set(cube.baseline(1, ctx)).count == 2

    def test_wrong_mask_size(self, ctx, cube, strategy_file):
        bridge = FlagBridge(BrokenMaskEngine(), strategy_path=strategy_file)
        bridge.prepare()
        with pytest.raises(BaselineProcessingError):
            bridge.flag_baseline(cube.baseline(1, ctx))

    def test_strategy_forked_once_per_thread(self, ctx, cube, strategy_file):
        class ForkingEngine(FakeEngine):
            def fork_strategy(self, strategy):
                return self.load_strategy(strategy.path)

        engine = ForkingEngine()
        bridge = FlagBridge(engine, strategy_path=strategy_file)
        bridge.prepare()
        for view in cube.baselines(ctx):
            bridge.flag_baseline(view)
        assert engine.loads == 2
