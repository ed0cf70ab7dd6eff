"""
Quality-gated spatial downsampling ("superobing") of polar volumes.

Each coarse bin averages ``range_bin_factor`` range bins and up to
``ray_angle_factor`` rays. Far from the radar the number of rays in a bin
is reduced symmetrically so the arc it spans stays below ``max_arc_size``.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .constants import AUXILIARY_CUTOFF, SUPEROB_VRAD_NODATA, SUPEROBING_TASK, VELOCITY_CUTOFF
from .container import RadarContainer
from .diagnostics import Diagnostics
from .geometry import azimuth_axis, range_axis
from .quantize import write_quantized, write_validity
from .settings import AttributeKind, Settings
from .volume import MeasurementVolume, SharedSnapshot

logger = logging.getLogger(__name__)


@dataclass
class BinPlan:
    """
    Borders of the coarse bins of one elevation.

    Attributes
    ----------
    range_borders : np.ndarray
        Fine range-bin borders ``0, fR, 2fR, ...`` (at most ``nr``)
    shrink : np.ndarray
        Rays dropped on each side of a bin, per coarse range bin
    start_rays, end_rays : np.ndarray
        First ray and one-past-last ray of each bin, shape (nsr, nsaz)
    """

    range_borders: np.ndarray
    shrink: np.ndarray
    start_rays: np.ndarray
    end_rays: np.ndarray

    @property
    def n_ranges(self) -> int:
        return self.start_rays.shape[0]

    @property
    def n_azimuths(self) -> int:
        return self.start_rays.shape[1]


def plan_bins(
    n_azimuths: int,
    n_ranges: int,
    range_scale: float,
    range_factor: int,
    azimuth_factor: int,
    max_arc_size: float,
) -> BinPlan:
    """
    Compute the coarse bin borders of one elevation.

    Parameters
    ----------
    n_azimuths, n_ranges : int
        Fine grid size of the elevation
    range_scale : float
        Range bin length in meters
    range_factor, azimuth_factor : int
        Number of fine range bins and rays merged into one coarse bin
    max_arc_size : float
        Largest arc a coarse bin may span, in meters

    Returns
    -------
    BinPlan
        Borders for ``n_ranges // range_factor`` by
        ``n_azimuths // azimuth_factor`` coarse bins

    Notes
    -----
    A bin using ``w = 2*(z_max - z) + 1`` rays (``z_max = (fA-1)//2``) stays
    below the maximum arc up to coarse range index
    ``floor(L/w - 1) + 1`` with ``L = 360² * max_arc / (2π * naz * fR * rscale)``.
    The shrink ``z`` therefore grows with distance.
    """
    f_r, f_a = range_factor, azimuth_factor
    borders = list(range(0, n_ranges + f_r, f_r))
    if borders[-1] > n_ranges:
        borders.pop()
    n_borders = len(borders)
    nsr = n_ranges // f_r
    nsaz = n_azimuths // f_a
    z_max = (f_a - 1) // 2
    arc_limit = 360.0 * 360.0 * max_arc_size / (2.0 * np.pi * n_azimuths * f_r * range_scale)

    limits = [0]
    shrinks = []
    for z in range(z_max + 1):
        width = 2 * (z_max - z) + 1
        limit = min(int(np.floor(arc_limit / width - 1.0)) + 1, n_borders)
        if limit > limits[-1]:
            limits.append(limit)
            shrinks.append(z)
    if len(limits) > 1:
        limits[-1] = n_borders

    shrink = np.full(nsr, z_max, dtype=int)
    for (lo, hi), z in zip(zip(limits[:-1], limits[1:]), shrinks):
        shrink[lo:min(hi, nsr)] = z

    ray_starts = np.arange(nsaz) * f_a
    start_rays = ray_starts[None, :] + shrink[:, None]
    end_rays = ray_starts[None, :] + f_a - shrink[:, None]
    return BinPlan(
        range_borders=np.asarray(borders, dtype=int),
        shrink=shrink,
        start_rays=start_rays,
        end_rays=end_rays,
    )


def _blocks(field: np.ndarray, roll: int, f_a: int, f_r: int) -> np.ndarray:
    """
    Roll a (naz, nr) sweep by ``roll`` rays and view it as (nsaz, fA, nsr, fR).
    """
    naz, nr = field.shape
    nsaz, nsr = naz // f_a, nr // f_r
    rolled = np.roll(field, roll, axis=0)
    return rolled[:nsaz * f_a, :nsr * f_r].reshape(nsaz, f_a, nsr, f_r)


def coarsen_volume(volume: MeasurementVolume, range_factor: int, azimuth_factor: int) -> MeasurementVolume:
    """Create the empty coarse volume matching ``volume``."""
    n_azimuths = volume.n_azimuths // azimuth_factor
    n_ranges = volume.n_ranges // range_factor
    nel = volume.nel
    naz_max = int(n_azimuths.max()) if nel else 0
    nr_max = int(n_ranges.max()) if nel else 0
    shape = (nel, naz_max, nr_max)

    coarse = MeasurementVolume(
        datasets=list(volume.datasets),
        n_azimuths=n_azimuths,
        n_ranges=n_ranges,
        elevations=volume.elevations.copy(),
        azimuths=np.full((nel, naz_max), np.nan),
        ranges=np.full((nel, nr_max), np.nan),
        range_starts=volume.range_starts.copy(),
        range_scales=volume.range_scales * range_factor,
        measurements=np.full(shape, np.nan),
        nyquist=None if volume.nyquist is None else volume.nyquist.copy(),
        auxiliary=None if volume.auxiliary is None else np.full(shape, np.nan),
        quality=np.full(shape, np.nan),
        quality_groups=list(volume.quality_groups),
    )
    for i in range(nel):
        coarse.azimuths[i, :n_azimuths[i]] = azimuth_axis(n_azimuths[i])
        coarse.ranges[i, :n_ranges[i]] = range_axis(
            n_ranges[i], coarse.range_starts[i], coarse.range_scales[i]
        )
    return coarse


class Superober:
    """
    Superobs the reflectivity and velocity volumes of a snapshot.

    Parameters
    ----------
    snapshot : SharedSnapshot
        Holds the loaded volumes (and dealiased velocities); receives the
        superobed volumes
    target : RadarContainer
        Homogenized output file
    settings : Settings
        Bin factors, arc limit and quality thresholds
    diagnostics : Diagnostics, optional
        Warning/error sink for this stage
    """

    def __init__(
        self,
        snapshot: SharedSnapshot,
        target: RadarContainer,
        settings: Settings,
        diagnostics: Optional[Diagnostics] = None,
    ):
        self.snapshot = snapshot
        self.target = target
        self.settings = settings
        self.diagnostics = diagnostics or Diagnostics("Superobing")

    def check_data(self) -> None:
        dbz, vrad = self.snapshot.dbz, self.snapshot.vrad
        if dbz.nel == 0 and vrad.nel == 0:
            self.diagnostics.error("no data to superob")
            return
        dbz_nan = dbz.is_all_nan()
        vrad_nan = vrad.is_all_nan()
        if dbz_nan and vrad_nan:
            self.diagnostics.error("all data is NaN")
        elif dbz_nan:
            self.diagnostics.warning("all DBZ data is NaN")
        elif vrad_nan:
            self.diagnostics.warning("all VRAD data is NaN")

    def prepare_metadata(self) -> None:
        f_r, f_a = self.settings.range_bin_factor, self.settings.ray_angle_factor
        self.snapshot.superobed_dbz = coarsen_volume(self.snapshot.dbz, f_r, f_a)
        self.snapshot.superobed_vrad = coarsen_volume(self.snapshot.vrad, f_r, f_a)

    def _plan(self, volume: MeasurementVolume, i: int) -> BinPlan:
        return plan_bins(
            int(volume.n_azimuths[i]),
            int(volume.n_ranges[i]),
            float(volume.range_scales[i]),
            self.settings.range_bin_factor,
            self.settings.ray_angle_factor,
            self.settings.max_arc_size,
        )

    def _superob_reflectivity(self) -> None:
        s = self.settings
        dbz, out = self.snapshot.dbz, self.snapshot.superobed_dbz
        f_r, f_a = s.range_bin_factor, s.ray_angle_factor
        z_max = (f_a - 1) // 2
        dbz_min = float(np.nanmin(dbz.measurements)) if not dbz.is_all_nan() else np.nan

        for i in range(dbz.nel):
            na, nr = dbz.n_azimuths[i], dbz.n_ranges[i]
            plan = self._plan(dbz, i)
            meas = _blocks(dbz.measurements[i, :na, :nr], z_max, f_a, f_r)
            aux = _blocks(dbz.auxiliary[i, :na, :nr], z_max, f_a, f_r)
            qual = _blocks(dbz.quality[i, :na, :nr], z_max, f_a, f_r)
            out_meas = out.measurements[i]
            out_aux = out.auxiliary[i]
            out_qual = out.quality[i]
            nsaz = plan.n_azimuths

            for z in np.unique(plan.shrink):
                cols = np.flatnonzero(plan.shrink == z)
                rays = slice(z, f_a - z)
                d = meas[:, rays][:, :, cols, :]
                t = aux[:, rays][:, :, cols, :]
                q = qual[:, rays][:, :, cols, :]
                n_cells = d.shape[1] * d.shape[3]

                good = q > s.min_quality
                wet = good & (d > s.dbz_clear_sky)
                dry = good & ~wet
                th_ok = wet & (t < AUXILIARY_CUTOFF)
                n_wet = wet.sum(axis=(1, 3))
                n_dry = dry.sum(axis=(1, 3))
                n_th = th_ok.sum(axis=(1, 3))
                wet_sum = np.where(wet, d, 0.0).sum(axis=(1, 3))
                th_sum = np.where(th_ok, t, 0.0).sum(axis=(1, 3))

                use_wet = (n_wet > 0) & (n_wet >= s.dbz_percentage * n_cells)
                use_dry = ~use_wet & (n_dry > 0)
                with np.errstate(invalid="ignore", divide="ignore"):
                    wet_mean = wet_sum / n_wet
                    th_mean = th_sum / n_th

                value = np.full(n_wet.shape, np.nan)
                value[use_wet] = wet_mean[use_wet]
                value[use_dry] = dbz_min
                out_meas[:nsaz, cols] = value
                out_aux[:nsaz, cols] = np.where(use_wet & (n_th > 0), th_mean, np.nan)
                out_qual[:nsaz, cols] = np.where(use_wet | use_dry, 1.0, np.nan)

    def _superob_velocity(self) -> None:
        s = self.settings
        vrad, out = self.snapshot.vrad, self.snapshot.superobed_vrad
        f_r, f_a = s.range_bin_factor, s.ray_angle_factor
        z_max = (f_a - 1) // 2
        source = vrad.measurements
        if s.dealiasing and self.snapshot.dealiased is not None:
            source = self.snapshot.dealiased

        for i in range(vrad.nel):
            na, nr = vrad.n_azimuths[i], vrad.n_ranges[i]
            plan = self._plan(vrad, i)
            meas = _blocks(source[i, :na, :nr], z_max, f_a, f_r)
            out_meas = out.measurements[i]
            out_qual = out.quality[i]
            nsaz = plan.n_azimuths

            for z in np.unique(plan.shrink):
                cols = np.flatnonzero(plan.shrink == z)
                v = meas[:, slice(z, f_a - z)][:, :, cols, :]
                n_cells = v.shape[1] * v.shape[3]

                good = np.isfinite(v) & (v < VELOCITY_CUTOFF)
                n_good = good.sum(axis=(1, 3))
                values = np.where(good, v, 0.0)
                with np.errstate(invalid="ignore", divide="ignore"):
                    mean = values.sum(axis=(1, 3)) / n_good
                    # sample variance, 0 for a single good cell
                    deviation = np.where(good, v - mean[:, None, :, None], 0.0)
                    variance = (deviation ** 2).sum(axis=(1, 3)) / np.maximum(n_good - 1, 1)
                std = np.sqrt(variance)

                ok = (n_good > 0) & (n_good >= s.vrad_percentage * n_cells) & (std < s.vrad_max_std)
                out_meas[:nsaz, cols] = np.where(ok, mean, np.nan)
                out_qual[:nsaz, cols] = np.where(ok, 1.0, np.nan)

    def superob(self) -> None:
        """Aggregate both volumes into their coarse bins."""
        if self.snapshot.dbz.nel > 0:
            self._superob_reflectivity()
        if self.snapshot.vrad.nel > 0:
            self._superob_velocity()
        logger.info(
            f"Superobed {self.snapshot.superobed_dbz.nel} DBZ and "
            f"{self.snapshot.superobed_vrad.nel} VRAD elevations"
        )

    def _nodata(self, group: str) -> Optional[float]:
        nodata = self.target.get_attr(f"{group}/what", "nodata", AttributeKind.FLOAT)
        if nodata is None:
            self.diagnostics.error(f"attribute {group}/what/nodata not found in the homogenized file")
        return nodata

    def _write_geometry(self, volume: MeasurementVolume, i: int) -> Tuple[int, int]:
        dataset = volume.datasets[i]
        na, nr = int(volume.n_azimuths[i]), int(volume.n_ranges[i])
        self.target.set_attr(f"{dataset}/where", "nbins", nr, AttributeKind.INT)
        self.target.set_attr(f"{dataset}/where", "nrays", na, AttributeKind.INT)
        self.target.set_attr(f"{dataset}/where", "rscale", volume.range_scales[i], AttributeKind.FLOAT)
        self.target.set_attr(f"{dataset}/data1/what", "undetect", 0.0, AttributeKind.FLOAT)
        return na, nr

    def write(self) -> None:
        """Overwrite the homogenized datasets with the superobed ones."""
        dbz = self.snapshot.superobed_dbz
        for i, dataset in enumerate(dbz.datasets):
            nodata_dbz = self._nodata(f"{dataset}/data1")
            nodata_th = self._nodata(f"{dataset}/data2")
            if nodata_dbz is None or nodata_th is None:
                continue
            na, nr = self._write_geometry(dbz, i)
            write_quantized(self.target, f"{dataset}/data1", dbz.measurements[i, :na, :nr], nodata_dbz)
            write_quantized(self.target, f"{dataset}/data2", dbz.auxiliary[i, :na, :nr], nodata_th)
            write_validity(self.target, f"{dataset}/quality1", dbz.quality[i, :na, :nr], SUPEROBING_TASK)

        vrad = self.snapshot.superobed_vrad
        for i, dataset in enumerate(vrad.datasets):
            na, nr = self._write_geometry(vrad, i)
            self.target.set_attr(
                f"{dataset}/data1/what", "nodata", SUPEROB_VRAD_NODATA, AttributeKind.FLOAT
            )
            write_quantized(
                self.target, f"{dataset}/data1", vrad.measurements[i, :na, :nr], SUPEROB_VRAD_NODATA
            )
            write_validity(self.target, f"{dataset}/quality1", vrad.quality[i, :na, :nr], SUPEROBING_TASK)
        self.target.flush()

    def run(self) -> None:
        """Run all steps; stops after the data check if it reports an error."""
        self.check_data()
        if self.diagnostics.has_errors:
            return
        self.prepare_metadata()
        self.superob()
        self.write()
