"""Tests for the per-baseline correction engine."""

import numpy as np
import pytest

from visprep.core.corrections import (
    Corrections,
    check_finite,
    correct_baseline,
    correct_cable_lengths,
    correct_cube,
    correct_digital_gains,
    correct_geometry,
    correct_passband,
    resample_passband,
)
from visprep.core.geometry import SPEED_OF_LIGHT, hour_angles
from visprep.errors import BaselineProcessingError


def _ones(ctx, dtype=np.complex128):
    from visprep.core import VisibilityCube
    cube = VisibilityCube.empty(ctx, dtype=dtype)
    cube.vis[...] = 1.0
    return cube


class TestCableCorrection:

    def test_phase_matches_path_difference(self, make_ctx):
        lengths = np.array([0.0, 10.0, 25.0, 3.0])
        ctx = make_ctx(cable_lengths_m=lengths)
        cube = _ones(ctx)
        view = cube.baseline(1, ctx)  # (0, 1)
        correct_cable_lengths(view, ctx)

        freqs = ctx.chan_freqs_hz
        expected = np.exp(-2j * np.pi * freqs * (lengths[1] - lengths[0]) / SPEED_OF_LIGHT)
        for t in range(ctx.n_time):
            for p in range(ctx.n_pol):
                np.testing.assert_allclose(view.vis[t, :, p], expected, rtol=1e-12)

    def test_inverse_lengths_restore_input(self, make_ctx, make_cube):
        lengths = np.array([0.0, 10.0, 25.0, 3.0])
        ctx = make_ctx(cable_lengths_m=lengths)
        cube = make_cube(ctx)
        original = cube.vis.copy()
        for view in cube.baselines(ctx):
            correct_cable_lengths(view, ctx)
        assert not np.allclose(cube.vis, original)
        for view in cube.baselines(ctx):
            correct_cable_lengths(view, ctx, cable_lengths_m=-lengths)
        np.testing.assert_allclose(cube.vis, original, atol=1e-5)

    def test_autocorrelations_untouched(self, make_ctx, make_cube):
        ctx = make_ctx(cable_lengths_m=np.array([1.0, 2.0, 3.0, 4.0]))
        cube = make_cube(ctx)
        before = cube.vis[:, :, 0, :].copy()
        correct_cable_lengths(cube.baseline(0, ctx), ctx)
        np.testing.assert_array_equal(cube.vis[:, :, 0, :], before)


class TestGeometricCorrection:

    def test_w_term_phase(self, make_ctx):
        positions = np.array([[0.0, 0.0, 0.0], [100.0, -40.0, 5.0],
                              [-30.0, 80.0, 0.0], [10.0, 10.0, 10.0]])
        lst = np.linspace(0.1, 0.2, 4)
        ra, dec = 0.3, -0.5
        ctx = make_ctx(antenna_positions_m=positions, lst_rad=lst, phase_centre=(ra, dec))
        cube = _ones(ctx)
        view = cube.baseline(1, ctx)  # (0, 1)
        correct_geometry(view, ctx)

        x, y, z = positions[0] - positions[1]
        ha = lst - ra
        w = np.cos(dec) * np.cos(ha) * x - np.cos(dec) * np.sin(ha) * y + np.sin(dec) * z
        expected = np.exp(-2j * np.pi * np.outer(w, ctx.chan_freqs_hz) / SPEED_OF_LIGHT)
        np.testing.assert_allclose(view.vis[:, :, 0], expected, rtol=1e-10)
        np.testing.assert_allclose(view.vis[:, :, 3], expected, rtol=1e-10)

    def test_colocated_antennas_no_change(self, ctx, make_cube):
        cube = make_cube(ctx)
        before = cube.vis.copy()
        correct_geometry(cube.baseline(2, ctx), ctx)
        np.testing.assert_array_equal(cube.vis, before)

    def test_hour_angles_use_supplied_lst(self, make_ctx):
        ctx = make_ctx(lst_rad=np.array([1.0, 1.5, 2.0, 2.5]), phase_centre=(0.5, 0.0))
        np.testing.assert_allclose(hour_angles(ctx), [0.5, 1.0, 1.5, 2.0])

    def test_sidereal_rate_from_casacore(self):
        pytest.importorskip("casacore.measures")
        from visprep.core.geometry import local_sidereal_time

        mjd_s = 60000.0 * 86400.0
        lst = local_sidereal_time(np.array([mjd_s, mjd_s + 60.0]), longitude_rad=2.0, latitude_rad=-0.47)
        assert np.all((lst >= 0) & (lst < 2 * np.pi))
        sidereal_rate = 2 * np.pi / 86164.0905
        assert np.isclose(np.diff(lst)[0], 60.0 * sidereal_rate, atol=1e-5)


class TestGainCorrection:

    def test_divides_amplitude_keeps_phase(self, make_ctx, make_cube):
        gains = np.full((4, 4), 2.0)
        gains[3] = 0.5
        ctx = make_ctx(digital_gains=gains)
        cube = make_cube(ctx, dtype=np.complex128)
        before = cube.vis.copy()

        correct_digital_gains(cube.baseline(1, ctx), ctx)  # (0, 1): 2 * 2
        correct_digital_gains(cube.baseline(6, ctx), ctx)  # (1, 3): 2 * 0.5

        np.testing.assert_allclose(np.abs(cube.vis[:, :, 1]), np.abs(before[:, :, 1]) / 4.0)
        np.testing.assert_allclose(np.angle(cube.vis[:, :, 1]), np.angle(before[:, :, 1]))
        np.testing.assert_allclose(cube.vis[:, :, 6], before[:, :, 6])

    @pytest.mark.parametrize("bad", [np.nan, np.inf, 0.0])
    def test_invalid_gain_raises(self, make_ctx, cube, bad):
        gains = np.ones((4, 4))
        gains[1, 2] = bad
        ctx = make_ctx(digital_gains=gains)
        with pytest.raises(BaselineProcessingError) as exc_info:
            correct_digital_gains(cube.baseline(1, ctx), ctx)
        assert exc_info.value.baseline == 1


class TestPassband:

    def test_resample_linear_and_clamped(self):
        src = np.array([100.0, 200.0])
        pb = np.array([1.0 + 1.0j, 3.0 - 1.0j])
        out = resample_passband(pb, src, np.array([50.0, 150.0, 250.0]))
        np.testing.assert_allclose(out, [1.0 + 1.0j, 2.0 + 0.0j, 3.0 - 1.0j])

    def test_correct_divides_by_passband(self, make_ctx):
        pb = np.array([1.0, 2.0j, -1.0, 0.5])
        ctx = make_ctx(passband=pb)
        cube = _ones(ctx)
        view = cube.baseline(1, ctx)
        correct_passband(view, ctx)
        np.testing.assert_allclose(view.vis[0, :, 0], 1.0 / pb)


class TestCorrectBaseline:

    def test_from_names(self):
        assert Corrections.from_names(["cable", "digital-gains"]) == Corrections.CABLE | Corrections.DIGITAL_GAINS
        with pytest.raises(ValueError):
            Corrections.from_names(["bogus"])

    def test_default_excludes_passband(self):
        assert Corrections.PASSBAND not in Corrections.DEFAULT
        assert Corrections.GEOMETRIC in Corrections.DEFAULT

    def test_nonfinite_unflagged_sample_raises(self, ctx, cube):
        cube.vis[1, 2, 5, 0] = np.nan
        with pytest.raises(BaselineProcessingError):
            correct_baseline(cube.baseline(5, ctx), ctx)

    def test_nonfinite_flagged_sample_allowed(self, ctx, cube):
        cube.vis[1, 2, 5, 0] = np.nan
        cube.flags[1, 2, 5] = True
        check_finite(cube.baseline(5, ctx))

    def test_neutral_solutions_are_identity(self, ctx, cube):
        before = cube.vis.copy()
        correct_cube(cube, ctx)
        np.testing.assert_allclose(cube.vis, before, rtol=1e-6)
