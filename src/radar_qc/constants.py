"""
Constants for the radar volume quality-control chain.

Earth model, ODIM quantity names, quality task keywords and the sentinel
values used when aggregating decoded measurements.
"""

# Constants for Earth curvature calculations
EARTH_RADIUS = 6371200.0  # Earth's radius in meters
EFFECTIVE_RADIUS_FACTOR = 4.0 / 3.0  # Standard refraction (4/3 Earth model)

# Canonical quantity kinds
DBZ = "DBZ"
TH = "TH"
VRAD = "VRAD"
QUALITY_PREFIX = "QUALITY"

# Substring of the source how/task attribute -> canonical quality task.
# Order matters, the first matching keyword wins.
QUALITY_TASK_KEYWORDS = (
    ("ropo", "ROPO"),
    ("beamblockage", "BLOCK"),
    ("satfilter", "SAT"),
    ("qi_total", "TOTAL"),
)
TOTAL_QUALITY_TASK = "TOTAL"

# Task labels written by the processing stages
DEALIASING_TASK = "dealiasing"
SUPEROBING_TASK = "superobing"

# Stage names used as diagnostics prefixes
HOMOGENIZATION_STAGE = "Homogenization"
DEALIASING_STAGE = "Dealiasing"
SUPEROBING_STAGE = "Superobing"

# Decoded values at or above these are treated as fill values
AUXILIARY_CUTOFF = 1e5  # TH
VELOCITY_CUTOFF = 1e6  # VRAD

# Elevation angles are compared at 0.1 degree resolution
ELEVATION_RESOLUTION = 0.1
ELEVATION_TOLERANCE = 0.05

# 8-bit encoding
MAX_CODE = 255
N_LEVELS = 254
VALIDITY_GAIN = 1.0 / 255.0
VALID_CODE = 255
INVALID_CODE = 0
SUPEROB_VRAD_NODATA = 255.0
