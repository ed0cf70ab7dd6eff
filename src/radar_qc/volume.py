"""
In-memory polar volume and the per-file processing snapshot.
"""

from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np


@dataclass
class MeasurementVolume:
    """
    Decoded measurements of one moment across all elevations.

    Per-cell arrays have shape (nel, naz_max, nr_max). Cells outside an
    elevation's own extent are NaN.

    Attributes
    ----------
    datasets : list of str
        Output dataset group of each elevation
    n_azimuths, n_ranges : np.ndarray
        Logical extent of each elevation (int)
    elevations : np.ndarray
        Elevation angles in radians
    azimuths : np.ndarray
        Azimuths in radians, shape (nel, naz_max)
    ranges : np.ndarray
        Bin ranges in meters, shape (nel, nr_max)
    range_starts, range_scales : np.ndarray
        Per-elevation ``rstart`` and ``rscale``
    nyquist : np.ndarray, optional
        Nyquist velocity of each elevation (velocity only)
    measurements : np.ndarray
        Decoded moment
    auxiliary : np.ndarray, optional
        Decoded TH (reflectivity only)
    quality : np.ndarray, optional
        Decoded TOTAL quality (reflectivity only)
    heights : np.ndarray, optional
        Beam height of each cell in meters (velocity only)
    quality_groups : list of str
        Quality subgroup linked to each elevation ('' when absent)
    """

    datasets: List[str]
    n_azimuths: np.ndarray
    n_ranges: np.ndarray
    elevations: np.ndarray
    azimuths: np.ndarray
    ranges: np.ndarray
    range_starts: np.ndarray
    range_scales: np.ndarray
    measurements: np.ndarray
    nyquist: Optional[np.ndarray] = None
    auxiliary: Optional[np.ndarray] = None
    quality: Optional[np.ndarray] = None
    heights: Optional[np.ndarray] = None
    quality_groups: List[str] = field(default_factory=list)

    @property
    def nel(self) -> int:
        return len(self.datasets)

    @property
    def naz_max(self) -> int:
        return int(self.n_azimuths.max()) if self.nel else 0

    @property
    def nr_max(self) -> int:
        return int(self.n_ranges.max()) if self.nel else 0

    def extent_mask(self) -> np.ndarray:
        """Boolean (nel, naz_max, nr_max) mask of the cells inside each elevation's extent."""
        az = np.arange(self.naz_max)[None, :, None] < self.n_azimuths[:, None, None]
        rr = np.arange(self.nr_max)[None, None, :] < self.n_ranges[:, None, None]
        return az & rr

    def is_all_nan(self) -> bool:
        return not np.any(np.isfinite(self.measurements))

    @classmethod
    def empty(cls) -> "MeasurementVolume":
        return cls(
            datasets=[],
            n_azimuths=np.zeros(0, dtype=int),
            n_ranges=np.zeros(0, dtype=int),
            elevations=np.zeros(0),
            azimuths=np.zeros((0, 0)),
            ranges=np.zeros((0, 0)),
            range_starts=np.zeros(0),
            range_scales=np.zeros(0),
            measurements=np.zeros((0, 0, 0)),
        )

    def __repr__(self) -> str:
        return (
            f"MeasurementVolume(nel={self.nel}, naz_max={self.naz_max}, "
            f"nr_max={self.nr_max}, datasets={self.datasets})"
        )


@dataclass
class HeightSector:
    """
    Cells of the velocity volume inside one height layer.

    Attributes
    ----------
    start, end : float
        Layer bounds in meters above sea level
    indices : np.ndarray
        (k, 3) array of (elevation, azimuth, range) indices
    """

    start: float
    end: float
    indices: np.ndarray

    @property
    def size(self) -> int:
        return len(self.indices)


@dataclass
class SharedSnapshot:
    """
    Working state shared by the stages while one file is processed.
    """

    site: str
    antenna_height: float = 0.0
    dbz: MeasurementVolume = field(default_factory=MeasurementVolume.empty)
    vrad: MeasurementVolume = field(default_factory=MeasurementVolume.empty)
    sectors: List[HeightSector] = field(default_factory=list)
    wind_model: Optional[np.ndarray] = None
    dealiased: Optional[np.ndarray] = None
    superobed_dbz: Optional[MeasurementVolume] = None
    superobed_vrad: Optional[MeasurementVolume] = None
