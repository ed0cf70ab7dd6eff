"""
Unit tests for radar_qc.superober module.
"""

import numpy as np
import pytest

from radar_qc.container import RadarContainer
from radar_qc.geometry import azimuth_axis, range_axis
from radar_qc.settings import AttributeKind
from radar_qc.superober import Superober, coarsen_volume, plan_bins
from radar_qc.volume import MeasurementVolume, SharedSnapshot

N_AZ = 36
N_R = 20


def make_volume(measurements, auxiliary=None, quality=None, nyquist=None):
    """One-elevation volume on a 36 x 20 grid with 500 m bins."""
    measurements = np.asarray(measurements, dtype=float)[None, :, :]
    volume = MeasurementVolume(
        datasets=["dataset1"],
        n_azimuths=np.array([N_AZ]),
        n_ranges=np.array([N_R]),
        elevations=np.radians([0.5]),
        azimuths=azimuth_axis(N_AZ)[None, :],
        ranges=range_axis(N_R, 0.0, 500.0)[None, :],
        range_starts=np.zeros(1),
        range_scales=np.full(1, 500.0),
        measurements=measurements,
        quality_groups=["quality1"],
    )
    if auxiliary is not None:
        volume.auxiliary = np.asarray(auxiliary, dtype=float)[None, :, :]
        volume.quality = np.broadcast_to(quality, measurements.shape).astype(float).copy()
    if nyquist is not None:
        volume.nyquist = np.array([nyquist])
    return volume


def by_range(even, odd):
    """Field alternating along range, constant along azimuth."""
    field = np.empty((N_AZ, N_R))
    field[:, 0::2] = even
    field[:, 1::2] = odd
    return field


@pytest.fixture
def coarse_settings(settings_factory):
    """Settings whose arc limit never shrinks bins on the small test grid."""
    return settings_factory(max_arc_size=1e9, dealiasing=False)


def run_superob(snapshot, settings):
    superober = Superober(snapshot, None, settings)
    superober.check_data()
    superober.prepare_metadata()
    superober.superob()
    return superober


class TestPlanBins:
    """Test coarse bin borders."""

    def test_shrink_grows_with_range(self):
        plan = plan_bins(360, 100, 500.0, 2, 3, 1000.0)
        assert plan.n_ranges == 50
        assert plan.n_azimuths == 120
        assert plan.shrink[:19].tolist() == [0] * 19
        assert plan.shrink[19:].tolist() == [1] * 31
        assert plan.start_rays[0, 0] == 0 and plan.end_rays[0, 0] == 3
        assert plan.start_rays[19, 0] == 1 and plan.end_rays[19, 0] == 2
        assert plan.range_borders[-1] == 100

    def test_no_shrink_for_large_arc(self):
        plan = plan_bins(N_AZ, N_R, 500.0, 2, 3, 1e9)
        assert np.all(plan.shrink == 0)
        assert len(plan.range_borders) == N_R // 2 + 1

    def test_bins_stay_within_sweep(self):
        """Test every ray of every bin exists and bins never overlap."""
        plan = plan_bins(360, 100, 250.0, 2, 5, 500.0)
        assert np.all(plan.start_rays >= 0)
        assert np.all(plan.end_rays <= 360)
        assert np.all(plan.end_rays > plan.start_rays)
        assert np.all(plan.start_rays[:, 1:] >= plan.end_rays[:, :-1])

    def test_factor_one_keeps_grid(self):
        plan = plan_bins(N_AZ, N_R, 500.0, 1, 1, 1000.0)
        assert plan.n_ranges == N_R
        assert plan.n_azimuths == N_AZ
        assert np.all(plan.end_rays - plan.start_rays == 1)


class TestCoarsenVolume:

    def test_geometry(self):
        coarse = coarsen_volume(make_volume(np.zeros((N_AZ, N_R))), 2, 3)
        assert coarse.n_azimuths.tolist() == [12]
        assert coarse.n_ranges.tolist() == [10]
        assert coarse.range_scales.tolist() == [1000.0]
        assert coarse.measurements.shape == (1, 12, 10)
        assert np.all(np.isnan(coarse.measurements))


class TestReflectivity:
    """Test the quality-gated reflectivity average."""

    def test_wet_mean(self, coarse_settings):
        dbz = make_volume(np.full((N_AZ, N_R), 20.0), np.full((N_AZ, N_R), 25.0), 1.0)
        snapshot = SharedSnapshot(site="SIVIS", dbz=dbz)
        run_superob(snapshot, coarse_settings)

        out = snapshot.superobed_dbz
        np.testing.assert_allclose(out.measurements[0], 20.0)
        np.testing.assert_allclose(out.auxiliary[0], 25.0)
        np.testing.assert_allclose(out.quality[0], 1.0)

    def test_clear_sky(self, coarse_settings):
        """Test dry bins get the volume minimum and no TH."""
        field = np.full((N_AZ, N_R), -10.0)
        field[0, 0] = -20.0
        dbz = make_volume(field, np.full((N_AZ, N_R), 5.0), 1.0)
        snapshot = SharedSnapshot(site="SIVIS", dbz=dbz)
        run_superob(snapshot, coarse_settings)

        out = snapshot.superobed_dbz
        np.testing.assert_allclose(out.measurements[0], -20.0)
        assert np.all(np.isnan(out.auxiliary[0]))
        np.testing.assert_allclose(out.quality[0], 1.0)

    @pytest.mark.parametrize("percentage,expected", [(0.5, 30.0), (0.6, -10.0)])
    def test_wet_percentage(self, settings_factory, percentage, expected):
        """Test half-wet bins are wet only if the percentage allows it."""
        settings = settings_factory(max_arc_size=1e9, dbz_percentage=percentage)
        dbz = make_volume(by_range(30.0, -10.0), np.full((N_AZ, N_R), 31.0), 1.0)
        snapshot = SharedSnapshot(site="SIVIS", dbz=dbz)
        run_superob(snapshot, settings)
        np.testing.assert_allclose(snapshot.superobed_dbz.measurements[0], expected)

    def test_low_quality(self, coarse_settings):
        dbz = make_volume(np.full((N_AZ, N_R), 20.0), np.full((N_AZ, N_R), 25.0), 0.2)
        snapshot = SharedSnapshot(site="SIVIS", dbz=dbz)
        run_superob(snapshot, coarse_settings)

        out = snapshot.superobed_dbz
        assert np.all(np.isnan(out.measurements[0]))
        assert np.all(np.isnan(out.quality[0]))

    def test_th_fill_values_ignored(self, coarse_settings):
        aux = by_range(25.0, 1e6)
        dbz = make_volume(np.full((N_AZ, N_R), 20.0), aux, 1.0)
        snapshot = SharedSnapshot(site="SIVIS", dbz=dbz)
        run_superob(snapshot, coarse_settings)
        np.testing.assert_allclose(snapshot.superobed_dbz.auxiliary[0], 25.0)


class TestVelocity:
    """Test the velocity average and its spread gate."""

    def test_mean(self, coarse_settings):
        vrad = make_volume(by_range(4.0, 6.0), nyquist=16.0)
        snapshot = SharedSnapshot(site="SIVIS", vrad=vrad)
        run_superob(snapshot, coarse_settings)

        out = snapshot.superobed_vrad
        np.testing.assert_allclose(out.measurements[0], 5.0)
        np.testing.assert_allclose(out.quality[0], 1.0)

    def test_spread_gate(self, settings_factory):
        settings = settings_factory(max_arc_size=1e9, dealiasing=False, vrad_max_std=0.5)
        vrad = make_volume(by_range(4.0, 6.0), nyquist=16.0)
        snapshot = SharedSnapshot(site="SIVIS", vrad=vrad)
        run_superob(snapshot, settings)
        assert np.all(np.isnan(snapshot.superobed_vrad.measurements[0]))

    @pytest.mark.parametrize("max_std,defined", [(1.05, False), (1.1, True)])
    def test_spread_is_sample_deviation(self, settings_factory, max_std, defined):
        """Test the spread of 4/6 pairs over six cells is sqrt(1.2), not 1."""
        settings = settings_factory(max_arc_size=1e9, dealiasing=False, vrad_max_std=max_std)
        vrad = make_volume(by_range(4.0, 6.0), nyquist=16.0)
        snapshot = SharedSnapshot(site="SIVIS", vrad=vrad)
        run_superob(snapshot, settings)

        out = snapshot.superobed_vrad.measurements[0]
        if defined:
            np.testing.assert_allclose(out, 5.0)
        else:
            assert np.all(np.isnan(out))

    def test_single_cell_has_no_spread(self, settings_factory):
        settings = settings_factory(
            max_arc_size=1e9, dealiasing=False, ray_angle_factor=1, vrad_max_std=1e-9
        )
        vrad = make_volume(by_range(7.0, np.nan), nyquist=16.0)
        snapshot = SharedSnapshot(site="SIVIS", vrad=vrad)
        run_superob(snapshot, settings)

        out = snapshot.superobed_vrad.measurements[0]
        assert out.shape == (N_AZ, N_R // 2)
        np.testing.assert_allclose(out, 7.0)

    def test_too_few_points(self, coarse_settings):
        field = by_range(5.0, np.nan)
        field[:, 0::4] = np.nan
        vrad = make_volume(field, nyquist=16.0)
        snapshot = SharedSnapshot(site="SIVIS", vrad=vrad)
        run_superob(snapshot, coarse_settings)

        out = snapshot.superobed_vrad.measurements[0]
        assert np.all(np.isnan(out[:, 0::2]))
        np.testing.assert_allclose(out[:, 1::2], 5.0)

    def test_uses_dealiased_field(self, settings_factory):
        """Test dealiased velocities are averaged when dealiasing is enabled."""
        settings = settings_factory(max_arc_size=1e9, dealiasing=True)
        vrad = make_volume(np.full((N_AZ, N_R), -6.0), nyquist=8.0)
        snapshot = SharedSnapshot(site="SIVIS", vrad=vrad)
        snapshot.dealiased = np.full((1, N_AZ, N_R), 10.0)
        run_superob(snapshot, settings)
        np.testing.assert_allclose(snapshot.superobed_vrad.measurements[0], 10.0)


class TestCheckData:

    def test_nothing_to_superob(self, settings):
        superober = Superober(SharedSnapshot(site="SIVIS"), None, settings)
        superober.run()
        assert superober.diagnostics.errors == ["Superobing - no data to superob"]

    def test_all_nan(self, settings):
        vrad = make_volume(np.full((N_AZ, N_R), np.nan), nyquist=16.0)
        superober = Superober(SharedSnapshot(site="SIVIS", vrad=vrad), None, settings)
        superober.check_data()
        assert superober.diagnostics.errors == ["Superobing - all data is NaN"]

    def test_only_velocity(self, settings):
        """Test a volume without reflectivity gives a warning only."""
        vrad = make_volume(np.full((N_AZ, N_R), 3.0), nyquist=16.0)
        superober = Superober(SharedSnapshot(site="SIVIS", vrad=vrad), None, settings)
        superober.check_data()
        assert not superober.diagnostics.has_errors
        assert superober.diagnostics.warnings == ["Superobing - all DBZ data is NaN"]


class TestWrite:

    def test_overwrites_datasets(self, coarse_settings, tmp_path):
        """Test superobed datasets replace the homogenized ones."""
        dbz = make_volume(np.full((N_AZ, N_R), 20.0), np.full((N_AZ, N_R), 25.0), 1.0)
        vrad = make_volume(by_range(4.0, 6.0), nyquist=16.0)
        vrad.datasets = ["dataset2"]
        snapshot = SharedSnapshot(site="SIVIS", dbz=dbz, vrad=vrad)

        with RadarContainer(tmp_path / "out.h5", "w") as target:
            for group in ("dataset1/data1", "dataset1/data2", "dataset2/data1"):
                target.set_attr(f"{group}/what", "nodata", 255.0, AttributeKind.FLOAT)
                target.set_raster(group, "data", np.zeros((N_AZ, N_R)))
            superober = Superober(snapshot, target, coarse_settings)
            superober.run()

            assert not superober.diagnostics.has_errors
            for dataset in ("dataset1", "dataset2"):
                assert target.get_attr(f"{dataset}/where", "nrays", AttributeKind.INT) == 12
                assert target.get_attr(f"{dataset}/where", "nbins", AttributeKind.INT) == 10
                assert target.get_attr(f"{dataset}/where", "rscale", AttributeKind.FLOAT) == 1000.0
                assert target.get_attr(f"{dataset}/quality1/how", "task", AttributeKind.STRING) == "superobing"
                assert target.get_raster(f"{dataset}/data1").shape == (12, 10)
            assert target.get_raster("dataset1/data2").shape == (12, 10)
            assert np.all(target.get_raster("dataset1/quality1") == 255)
