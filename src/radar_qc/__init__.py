"""
Radar QC
========

Batch quality control of ODIM-like polar volume radar files.

Main components:
- homogenizer: Sorting and rewriting source files into a canonical layout
- dealiaser: Doppler velocity dealiasing with a height-sector wind model
- superober: Quality-gated spatial downsampling of the volumes
- pipeline: Per-file and per-directory processing
- settings: Namelist parsing and the immutable settings object
"""

__version__ = "0.1.0"

from .settings import AttributeKind, NamelistAttribute, Settings, parse_namelist
from .container import RadarContainer
from .resolver import AttributeResolver
from .homogenizer import Homogenizer
from .dealiaser import Dealiaser
from .superober import Superober, plan_bins
from .pipeline import process_file, process_directory

__all__ = [
    "AttributeKind",
    "NamelistAttribute",
    "Settings",
    "parse_namelist",
    "RadarContainer",
    "AttributeResolver",
    "Homogenizer",
    "Dealiaser",
    "Superober",
    "plan_bins",
    "process_file",
    "process_directory",
]
