"""
8-bit gain/offset encoding of decoded fields.
"""

from typing import Tuple

import numpy as np

from .constants import (
    INVALID_CODE,
    MAX_CODE,
    N_LEVELS,
    VALID_CODE,
    VALIDITY_GAIN,
)
from .container import RadarContainer
from .settings import AttributeKind


def compute_gain_offset(field: np.ndarray) -> Tuple[float, float]:
    """
    Compute the linear encoding parameters of a field.

    Parameters
    ----------
    field : np.ndarray
        Decoded values, NaN where undefined

    Returns
    -------
    gain : float
        ``(max - min) / 254``, or 1.0 for a constant or all-NaN field
    offset : float
        ``(254*min - max) / 253``, or 0.0 for an all-NaN field
    """
    if not np.any(np.isfinite(field)):
        return 1.0, 0.0
    vmin = float(np.nanmin(field))
    vmax = float(np.nanmax(field))
    gain = (vmax - vmin) / N_LEVELS
    if np.isclose(gain, 0.0):
        gain = 1.0
    offset = (N_LEVELS * vmin - vmax) / (N_LEVELS - 1)
    return gain, offset


def quantize(field: np.ndarray, gain: float, offset: float, nodata: float) -> np.ndarray:
    """
    Encode a field to ``uint8`` codes.

    Defined values are rounded half up, ``floor((v - offset + gain/2) / gain)``,
    and clipped to 0..255. Undefined values get the ``nodata`` code.
    """
    field = np.asarray(field, dtype=np.float64)
    defined = np.isfinite(field)
    codes = np.full(field.shape, int(nodata), dtype=np.uint8)
    raw = np.floor((field[defined] - offset + 0.5 * gain) / gain)
    codes[defined] = np.clip(raw, 0, MAX_CODE).astype(np.uint8)
    return codes


def dequantize(codes: np.ndarray, gain: float, offset: float) -> np.ndarray:
    return np.asarray(codes, dtype=np.float64) * gain + offset


def validity_raster(field: np.ndarray) -> np.ndarray:
    """Return 255 where ``field`` is defined and 0 elsewhere."""
    return np.where(np.isfinite(field), VALID_CODE, INVALID_CODE).astype(np.uint8)


def write_quantized(
    container: RadarContainer, group: str, field: np.ndarray, nodata: float
) -> Tuple[float, float]:
    """
    Quantize ``field`` into ``<group>/data`` and store its gain/offset.

    Parameters
    ----------
    container : RadarContainer
        Output file
    group : str
        Moment group, e.g. ``'dataset4/data1'``
    field : np.ndarray
        Decoded values, shape (nrays, nbins)
    nodata : float
        Code written where ``field`` is undefined

    Returns
    -------
    tuple of float
        (gain, offset) used for the encoding
    """
    gain, offset = compute_gain_offset(field)
    container.set_attr(f"{group}/what", "gain", gain, AttributeKind.FLOAT)
    container.set_attr(f"{group}/what", "offset", offset, AttributeKind.FLOAT)
    container.set_raster(group, "data", quantize(field, gain, offset, nodata))
    return gain, offset


def write_validity(container: RadarContainer, group: str, field: np.ndarray, task: str) -> None:
    """Write the validity raster of ``field`` as a quality group."""
    container.set_attr(f"{group}/what", "gain", VALIDITY_GAIN, AttributeKind.FLOAT)
    container.set_attr(f"{group}/what", "offset", 0.0, AttributeKind.FLOAT)
    container.set_attr(f"{group}/how", "task", task, AttributeKind.STRING)
    container.set_raster(group, "data", validity_raster(field))
