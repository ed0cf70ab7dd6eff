"""
Load homogenized datasets into MeasurementVolume arrays.
"""

import logging
from typing import Iterable, Optional, Sequence

import numpy as np

from .constants import DBZ, VRAD
from .container import RadarContainer
from .diagnostics import Diagnostics
from .geometry import azimuth_axis, compute_beam_height, range_axis
from .settings import AttributeKind
from .volume import MeasurementVolume

logger = logging.getLogger(__name__)


def decode_raster(
    raw: np.ndarray, gain: float, offset: float, missing_codes: Iterable[float] = ()
) -> np.ndarray:
    """
    Decode a raw raster to physical values.

    Parameters
    ----------
    raw : np.ndarray
        Stored codes
    gain, offset : float
        ``value = gain*raw + offset``
    missing_codes : iterable of float
        Codes that mean "no value" (nodata, undetect); they decode to NaN

    Returns
    -------
    np.ndarray
        float64 values
    """
    raw = np.asarray(raw)
    values = raw.astype(np.float64) * gain + offset
    for code in missing_codes:
        values[raw == code] = np.nan
    return values


class _AttributeReader:
    """Reads required attributes of the homogenized file, reporting missing ones."""

    def __init__(self, container: RadarContainer, diagnostics: Diagnostics):
        self.container = container
        self.diagnostics = diagnostics
        self.missing = False

    def __call__(self, group: str, name: str, kind: AttributeKind):
        value = self.container.get_attr(group, name, kind)
        if value is None:
            self.diagnostics.error(f"attribute {group}/{name} not found in the homogenized file")
            self.missing = True
        return value


def _decode_group(
    read: _AttributeReader, group: str, quality_nodata: Optional[float] = None
) -> Optional[np.ndarray]:
    raw = read.container.get_raster(group, "data")
    if raw is None:
        read.diagnostics.error(f"dataset {group}/data not found in the homogenized file")
        read.missing = True
        return None
    gain = read(f"{group}/what", "gain", AttributeKind.FLOAT)
    offset = read(f"{group}/what", "offset", AttributeKind.FLOAT)
    if quality_nodata is not None:
        codes = [quality_nodata]
    else:
        codes = [
            read(f"{group}/what", "nodata", AttributeKind.FLOAT),
            read(f"{group}/what", "undetect", AttributeKind.FLOAT),
        ]
    if gain is None or offset is None or None in codes:
        return None
    return decode_raster(raw, gain, offset, codes)


def _place(target: np.ndarray, values: Optional[np.ndarray], group: str, read: _AttributeReader):
    if values is None:
        return
    na, nr = target.shape
    if values.shape != (na, nr):
        read.diagnostics.error(
            f"raster {group}/data has shape {values.shape}, expected ({na}, {nr})"
        )
        read.missing = True
        return
    target[:, :] = values


def load_volume(
    container: RadarContainer,
    datasets: Sequence[str],
    kind: str,
    diagnostics: Diagnostics,
    antenna_height: float = 0.0,
    quality_groups: Optional[Sequence[str]] = None,
) -> Optional[MeasurementVolume]:
    """
    Read DBZ or VRAD datasets of a homogenized file.

    Parameters
    ----------
    container : RadarContainer
        Homogenized file
    datasets : sequence of str
        Dataset groups holding the moment, in output order
    kind : str
        ``'DBZ'`` (data1 = DBZ, data2 = TH) or ``'VRAD'`` (data1 = VRAD)
    diagnostics : Diagnostics
        Receives an error for every missing attribute
    antenna_height : float, optional
        Antenna height in meters, used for velocity beam heights
    quality_groups : sequence of str, optional
        Quality subgroup holding the TOTAL quality of each DBZ dataset,
        '' when the dataset has none

    Returns
    -------
    MeasurementVolume or None
        None when a required attribute or raster is missing
    """
    datasets = list(datasets)
    if not datasets:
        return MeasurementVolume.empty()

    read = _AttributeReader(container, diagnostics)
    n_az = [read(f"{ds}/where", "nrays", AttributeKind.INT) for ds in datasets]
    n_r = [read(f"{ds}/where", "nbins", AttributeKind.INT) for ds in datasets]
    if read.missing:
        return None

    nel = len(datasets)
    n_azimuths = np.asarray(n_az, dtype=int)
    n_ranges = np.asarray(n_r, dtype=int)
    naz_max = int(n_azimuths.max())
    nr_max = int(n_ranges.max())
    shape = (nel, naz_max, nr_max)

    volume = MeasurementVolume(
        datasets=datasets,
        n_azimuths=n_azimuths,
        n_ranges=n_ranges,
        elevations=np.full(nel, np.nan),
        azimuths=np.full((nel, naz_max), np.nan),
        ranges=np.full((nel, nr_max), np.nan),
        range_starts=np.full(nel, np.nan),
        range_scales=np.full(nel, np.nan),
        measurements=np.full(shape, np.nan),
        quality_groups=list(quality_groups) if quality_groups is not None else [""] * nel,
    )
    if kind == DBZ:
        volume.auxiliary = np.full(shape, np.nan)
        volume.quality = np.full(shape, np.nan)
    elif kind == VRAD:
        volume.nyquist = np.full(nel, np.nan)
        volume.heights = np.full(shape, np.nan)

    for i, ds in enumerate(datasets):
        na, nr = n_azimuths[i], n_ranges[i]
        elangle = read(f"{ds}/where", "elangle", AttributeKind.FLOAT)
        rstart = read(f"{ds}/where", "rstart", AttributeKind.FLOAT)
        rscale = read(f"{ds}/where", "rscale", AttributeKind.FLOAT)
        if elangle is not None:
            volume.elevations[i] = np.radians(elangle)
        volume.azimuths[i, :na] = azimuth_axis(na)
        if rstart is not None and rscale is not None:
            volume.range_starts[i] = rstart
            volume.range_scales[i] = rscale
            volume.ranges[i, :nr] = range_axis(nr, rstart, rscale)

        _place(volume.measurements[i, :na, :nr], _decode_group(read, f"{ds}/data1"), f"{ds}/data1", read)

        if kind == DBZ:
            _place(volume.auxiliary[i, :na, :nr], _decode_group(read, f"{ds}/data2"), f"{ds}/data2", read)
            qgroup = volume.quality_groups[i]
            nodata = container.get_attr(f"{ds}/data1/what", "nodata", AttributeKind.FLOAT)
            if qgroup and nodata is not None:
                group = f"{ds}/{qgroup}"
                _place(volume.quality[i, :na, :nr], _decode_group(read, group, nodata), group, read)
        elif kind == VRAD:
            nyquist = read(f"{ds}/how", "NI", AttributeKind.FLOAT)
            if nyquist is not None:
                volume.nyquist[i] = nyquist
            if elangle is not None and rstart is not None and rscale is not None:
                heights = compute_beam_height(volume.ranges[i, :nr], volume.elevations[i], antenna_height)
                volume.heights[i, :na, :nr] = heights[None, :]

    if read.missing:
        return None
    logger.debug(f"Loaded {kind} volume: {volume}")
    return volume
