"""
Doppler velocity dealiasing with a height-sector uniform wind model.

For every height sector a uniform horizontal wind (u, v) is fitted to the
azimuthal derivative of the folded velocities, which is insensitive to
folding. Each measurement is then unfolded by the multiple of twice the
Nyquist velocity that brings it closest to the modeled radial wind.
"""

import logging
from typing import Optional

import numpy as np
from scipy.linalg import lstsq

from .constants import DEALIASING_TASK
from .container import RadarContainer
from .diagnostics import Diagnostics
from .quantize import write_quantized, write_validity
from .settings import AttributeKind, Settings
from .volume import HeightSector, SharedSnapshot

logger = logging.getLogger(__name__)


def azimuth_derivative(f: np.ndarray, azimuths: np.ndarray) -> np.ndarray:
    """
    Circular central difference along the azimuth axis.

    Parameters
    ----------
    f : np.ndarray
        Values of shape (naz, nr)
    azimuths : np.ndarray
        Azimuths in radians, shape (naz,)

    Returns
    -------
    np.ndarray
        ``(f[j+1] - f[j-1]) / (az[j+1] - az[j-1])`` with indices wrapping
        around; the azimuth step across 0/2π is taken modulo 2π. NaN for
        sweeps with fewer than three rays.
    """
    naz = f.shape[0]
    if naz < 3:
        return np.full(f.shape, np.nan)
    daz = np.mod(np.roll(azimuths, -1) - np.roll(azimuths, 1), 2.0 * np.pi)
    return (np.roll(f, -1, axis=0) - np.roll(f, 1, axis=0)) / daz[:, None]


class Dealiaser:
    """
    Dealiases the velocity volume of a snapshot and writes it back.

    Parameters
    ----------
    snapshot : SharedSnapshot
        Holds the loaded velocity volume; receives sectors, wind model and
        dealiased velocities
    target : RadarContainer
        Homogenized output file
    settings : Settings
        Sector size, maximum height, minimum sector points, maximum wind
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
        self.diagnostics = diagnostics or Diagnostics("Dealiasing")
        self.a: Optional[np.ndarray] = None
        self.b: Optional[np.ndarray] = None
        self.d: Optional[np.ndarray] = None

    def check_data(self) -> None:
        vrad = self.snapshot.vrad
        if vrad.nel == 0:
            self.diagnostics.error("no VRAD datasets in file")
        elif vrad.is_all_nan():
            self.diagnostics.error("all data in VRAD datasets are NaN")

    def compute_coefficients(self) -> None:
        """Compute the A, B and D fields of the wind model fit."""
        vrad = self.snapshot.vrad
        m = vrad.measurements
        cos_el = np.cos(vrad.elevations)[:, None, None]
        az = vrad.azimuths[:, :, None]
        nyquist = vrad.nyquist[:, None, None]

        phase = np.pi * m / nyquist
        self.a = cos_el * np.cos(az) * np.sin(phase)
        self.b = cos_el * np.sin(az) * np.sin(phase)
        f3 = nyquist * np.cos(phase) / np.pi

        self.d = np.full(m.shape, np.nan)
        for i in range(vrad.nel):
            na, nr = vrad.n_azimuths[i], vrad.n_ranges[i]
            self.d[i, :na, :nr] = azimuth_derivative(f3[i, :na, :nr], vrad.azimuths[i, :na])

    def determine_height_sectors(self) -> None:
        """
        Split the velocity cells into height layers of ``sector_size`` meters.

        Layers start at the antenna height and reach up to the lower of the
        configured maximum height and the highest beam height. A cell
        belongs to a layer only if its measurement, D and height are defined.
        """
        vrad = self.snapshot.vrad
        heights = vrad.heights
        self.snapshot.sectors = []
        if not np.any(np.isfinite(heights)):
            return

        dz = self.settings.sector_size
        z0 = self.snapshot.antenna_height
        z_max = min(float(np.nanmax(heights)), self.settings.max_height)
        n_sectors = max(int((z_max - z0) / dz) + 1, 0)

        index = np.floor((heights - z0) / dz)
        member = (
            np.isfinite(vrad.measurements)
            & np.isfinite(self.d)
            & np.isfinite(heights)
            & (heights < z_max)
            & (index >= 0)
        )
        cells = np.argwhere(member)
        cell_sector = index[member].astype(int)

        self.snapshot.sectors = [
            HeightSector(start=z0 + n * dz, end=z0 + (n + 1) * dz, indices=cells[cell_sector == n])
            for n in range(n_sectors)
        ]
        logger.debug(
            f"{n_sectors} height sectors up to {z_max:.0f} m, "
            f"{len(cells):,} cells assigned"
        )

    def fit_wind_models(self) -> None:
        """
        Fit a uniform wind to every sector with enough cells.

        The least-squares problem ``D = -A*u + B*v`` gives the wind
        components; the modeled radial velocity
        ``cos(el) * (u*sin(az) + v*cos(az))`` is kept where its magnitude
        does not exceed the maximum wind speed.
        """
        vrad = self.snapshot.vrad
        model = np.full(vrad.measurements.shape, np.nan)
        min_points = max(self.settings.min_sector_points, 1)
        n_fitted = 0

        for sector in self.snapshot.sectors:
            if sector.size < min_points:
                continue
            el, az, rg = sector.indices.T
            design = np.column_stack([-self.a[el, az, rg], self.b[el, az, rg]])
            coefficients, _, _, _ = lstsq(design, self.d[el, az, rg])
            u, v = coefficients
            azimuths = vrad.azimuths[el, az]
            radial = np.cos(vrad.elevations[el]) * (u * np.sin(azimuths) + v * np.cos(azimuths))
            keep = np.abs(radial) <= self.settings.max_wind
            model[el[keep], az[keep], rg[keep]] = radial[keep]
            n_fitted += 1

        self.snapshot.wind_model = model
        logger.debug(f"Wind models fitted in {n_fitted} of {len(self.snapshot.sectors)} sectors")

    def dealias(self) -> None:
        """
        Unfold every measurement with a modeled wind.

        The Nyquist multiple ``n`` is searched in ``[-N, N]`` with
        ``N = int(max_wind / min Nyquist)``; ties keep the most negative ``n``.
        """
        vrad = self.snapshot.vrad
        m = vrad.measurements
        model = self.snapshot.wind_model
        nyquist = vrad.nyquist[:, None, None]
        n_max = int(self.settings.max_wind / np.nanmin(vrad.nyquist))

        usable = np.isfinite(m) & np.isfinite(model)
        best = np.full(m.shape, np.inf)
        best_n = np.full(m.shape, np.nan)
        for n in range(-n_max, n_max + 1):
            mismatch = np.abs(m + 2.0 * nyquist * n - model)
            better = usable & (mismatch < best)
            best[better] = mismatch[better]
            best_n[better] = n

        defined = np.isfinite(best_n) & np.isfinite(self.d)
        self.snapshot.dealiased = np.where(defined, m + 2.0 * best_n * nyquist, np.nan)
        logger.info(
            f"Dealiased {int(defined.sum()):,} of {int(np.isfinite(m).sum()):,} velocities "
            f"(N = {n_max})"
        )

    def write(self) -> None:
        """Overwrite each VRAD data1 group with the dealiased velocities."""
        vrad = self.snapshot.vrad
        for i, dataset in enumerate(vrad.datasets):
            na, nr = vrad.n_azimuths[i], vrad.n_ranges[i]
            field = self.snapshot.dealiased[i, :na, :nr]
            nodata = self.target.get_attr(f"{dataset}/data1/what", "nodata", AttributeKind.FLOAT)
            if nodata is None:
                self.diagnostics.error(
                    f"attribute {dataset}/data1/what/nodata not found in the homogenized file"
                )
                continue
            write_quantized(self.target, f"{dataset}/data1", field, nodata)
            write_validity(self.target, f"{dataset}/quality1", field, DEALIASING_TASK)
        self.target.flush()

    def run(self) -> None:
        """Run all steps; stops after the data check if it reports an error."""
        self.check_data()
        if self.diagnostics.has_errors:
            return
        self.compute_coefficients()
        self.determine_height_sectors()
        self.fit_wind_models()
        self.dealias()
        self.write()
