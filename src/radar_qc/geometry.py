"""
Beam geometry of a polar volume.
"""

import numpy as np

from .constants import EARTH_RADIUS, EFFECTIVE_RADIUS_FACTOR


def compute_beam_height(
    slant_range: np.ndarray,
    elevation: float,
    antenna_height: float = 0.0,
    ke: float = EFFECTIVE_RADIUS_FACTOR,
    re: float = EARTH_RADIUS
) -> np.ndarray:
    """
    Compute beam height above sea level with the 4/3 effective Earth radius.

    Parameters
    ----------
    slant_range : np.ndarray
        Distance along the beam in meters
    elevation : float
        Elevation angle in radians
    antenna_height : float, optional
        Antenna height above sea level in meters (default: 0.0)

    Returns
    -------
    np.ndarray
        Beam height in meters above sea level

    Notes
    -----
        h = sqrt(r² + (ke*Re)² + 2*r*ke*Re*sin(θ)) - ke*Re + h0
    """
    ke_re = ke * re
    r = np.asarray(slant_range, dtype=np.float64)
    return np.sqrt(r**2 + ke_re**2 + 2 * r * ke_re * np.sin(elevation)) - (ke_re - antenna_height)


def azimuth_axis(n_azimuths: int) -> np.ndarray:
    """Uniform azimuths in radians over [0, 2π)."""
    return np.linspace(0.0, 2.0 * np.pi, n_azimuths, endpoint=False)


def range_axis(n_ranges: int, range_start: float, range_scale: float) -> np.ndarray:
    """Range of each bin in meters, ``rstart + i*rscale``."""
    return range_start + range_scale * np.arange(n_ranges, dtype=np.float64)
