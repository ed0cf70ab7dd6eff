"""
Processing settings and the namelist parser.

The namelist is a plain-text file made of ``[Section title]`` headers, each
followed by its value lines. Lines starting with ``#`` are comments.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

AttributeValue = Union[str, int, float]

TRUE_TOKENS = ("T", "TRUE")
SPECIFIC_SECTION_PREFIX = "Specific attributes and default values -"


class AttributeKind(str, Enum):
    """Type tag of a metadata attribute, as written in the namelist."""

    STRING = "S"
    INT = "I"
    FLOAT = "F"

    def coerce(self, value) -> AttributeValue:
        """Convert ``value`` to the Python type of this kind."""
        if self is AttributeKind.STRING:
            if isinstance(value, bytes):
                return value.decode("utf-8", errors="replace")
            return str(value)
        if self is AttributeKind.INT:
            return int(float(value))
        return float(value)


@dataclass(frozen=True)
class NamelistAttribute:
    """
    One metadata attribute declared in the namelist.

    Attributes
    ----------
    kind : AttributeKind
        Value type of the attribute
    group : str
        Generic group path, e.g. ``/dataset/data/what``
    name : str
        Attribute name
    value : str, int, float or None
        Default value, None when the namelist gives ``None``
    """

    kind: AttributeKind
    group: str
    name: str
    value: Optional[AttributeValue] = None

    @classmethod
    def from_line(cls, line: str) -> "NamelistAttribute":
        """Parse a line such as ``F /dataset/where/elangle = None``."""
        if "=" not in line:
            raise ValueError(f"Attribute line without '=': {line!r}")
        left, raw_value = line.split("=", 1)
        words = left.split()
        if len(words) != 2:
            raise ValueError(f"Malformed attribute line: {line!r}")
        kind = AttributeKind(words[0].upper())
        parts = [p for p in words[1].split("/") if p]
        if not parts:
            raise ValueError(f"Attribute line without a name: {line!r}")
        group = "/" + "/".join(parts[:-1]) if len(parts) > 1 else "/"
        raw_value = raw_value.strip()
        value = None if raw_value == "None" else kind.coerce(raw_value)
        return cls(kind=kind, group=group, name=parts[-1], value=value)

    @property
    def group_parts(self) -> List[str]:
        return [p for p in self.group.split("/") if p]

    def metadata_level(self) -> Optional[str]:
        """
        Return the level of the output file this attribute belongs to.

        Returns
        -------
        str or None
            One of ``'root'``, ``'dataset'``, ``'data'``, ``'quality'``,
            or None for group paths that fit no level
        """
        parts = self.group_parts
        if len(parts) == 1 and parts[0] != "dataset":
            return "root"
        if len(parts) == 2 and parts[0] == "dataset" and parts[1] not in ("data", "quality"):
            return "dataset"
        if len(parts) == 3 and parts[1] == "data":
            return "data"
        if len(parts) == 3 and parts[1] == "quality":
            return "quality"
        return None


@dataclass(frozen=True)
class Settings:
    """
    Immutable processing settings read from the namelist.

    A single instance is built once per run and handed to every stage.
    Percentages are fractions of the cells in a superob bin (0.5 = half).
    """

    file_extensions: Tuple[str, ...] = (".h5",)
    warning_tag: str = "WARNING"
    error_tag: str = "ERROR"
    print_console_warnings: bool = False
    print_console_errors: bool = True
    print_log_warnings: bool = True
    print_console_timing: bool = False
    dbz_names: Tuple[str, ...] = ("DBZH",)
    th_names: Tuple[str, ...] = ("TH",)
    vrad_names: Tuple[str, ...] = ("VRAD", "VRADH")
    dbz_quality_names: Tuple[str, ...] = ("TOTAL",)
    common_attributes: Tuple[NamelistAttribute, ...] = ()
    specific_attributes: Dict[str, Tuple[NamelistAttribute, ...]] = field(default_factory=dict)
    dealiasing: bool = True
    sector_size: float = 200.0
    max_height: float = 12000.0
    min_sector_points: int = 50
    max_wind: float = 48.0
    superobing: bool = True
    range_bin_factor: int = 2
    ray_angle_factor: int = 3
    max_arc_size: float = 1000.0
    min_quality: float = 0.5
    dbz_clear_sky: float = 0.0
    dbz_percentage: float = 0.5
    vrad_percentage: float = 0.5
    vrad_max_std: float = 5.0

    def __post_init__(self):
        if self.range_bin_factor < 1 or self.ray_angle_factor < 1:
            raise ValueError("Range bin factor and ray angle factor must be at least 1")
        if self.sector_size <= 0:
            raise ValueError("Height sector size must be positive")

    def attributes_for_site(self, site: str) -> Tuple[NamelistAttribute, ...]:
        """Return the site-specific overrides for ``site`` (may be empty)."""
        return self.specific_attributes.get(site, ())

    def is_accepted(self, path: Union[str, Path]) -> bool:
        """Check whether a file has one of the configured extensions."""
        return Path(path).suffix in self.file_extensions


def _braced_words(text: str) -> List[str]:
    return re.sub(r"[{}]", " ", text).split()


def _to_bool(text: str) -> bool:
    return text.strip().upper() in TRUE_TOKENS


def _first(lines: List[str], title: str) -> str:
    if not lines:
        raise ValueError(f"Namelist section [{title}] has no value")
    return lines[0]


def _read_sections(path: Path) -> List[Tuple[str, List[str]]]:
    sections: List[Tuple[str, List[str]]] = []
    with open(path, "r") as f:
        for raw in f:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("[") and line.endswith("]"):
                sections.append((line[1:-1].strip(), []))
            elif sections:
                sections[-1][1].append(line)
            else:
                logger.warning(f"Ignoring namelist line outside any section: {line!r}")
    return sections


# Single-value sections: title -> (field name, converter)
_SCALAR_SECTIONS = {
    "Print warnings to console": ("print_console_warnings", _to_bool),
    "Print errors to console": ("print_console_errors", _to_bool),
    "Print warnings to log": ("print_log_warnings", _to_bool),
    "Print timing to console": ("print_console_timing", _to_bool),
    "Dealiasing": ("dealiasing", _to_bool),
    "Height sector size in m": ("sector_size", float),
    "Maximum height": ("max_height", float),
    "Minimum good points in height sector": ("min_sector_points", int),
    "Maximum dealiased wind speed in m/s": ("max_wind", float),
    "Superobing": ("superobing", _to_bool),
    "Range bin factor": ("range_bin_factor", int),
    "Ray angle factor": ("ray_angle_factor", int),
    "Max arc size in m": ("max_arc_size", float),
    "DBZ min quality": ("min_quality", float),
    "DBZ clear sky threshold": ("dbz_clear_sky", float),
    "DBZ min percentage of good points": ("dbz_percentage", float),
    "VRAD min percentage of good points": ("vrad_percentage", float),
    "VRAD max standard deviation": ("vrad_max_std", float),
}

_MOMENT_FIELDS = {"DBZ": "dbz_names", "TH": "th_names", "VRAD": "vrad_names"}


def parse_namelist(path: Union[str, Path]) -> Settings:
    """
    Read a namelist file into a :class:`Settings` object.

    Parameters
    ----------
    path : str or Path
        Namelist file

    Returns
    -------
    Settings
        Settings with every value found in the namelist; sections missing
        from the file keep their defaults

    Raises
    ------
    FileNotFoundError
        If the namelist does not exist
    ValueError
        If a section holds a value that cannot be parsed
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Namelist not found: {path}")

    values = {}
    common: List[NamelistAttribute] = []
    specific: Dict[str, Tuple[NamelistAttribute, ...]] = {}

    for title, lines in _read_sections(path):
        try:
            if title in _SCALAR_SECTIONS:
                name, convert = _SCALAR_SECTIONS[title]
                values[name] = convert(_first(lines, title))
            elif title == "File extensions to read":
                values["file_extensions"] = tuple(_braced_words(_first(lines, title)))
            elif title == "Log keywords":
                for line in lines:
                    key, _, tag = line.partition("=")
                    if key.strip() == "WarningTag":
                        values["warning_tag"] = tag.strip()
                    elif key.strip() == "ErrorTag":
                        values["error_tag"] = tag.strip()
            elif title == "Radar moment names to save":
                for line in lines:
                    key, _, names = line.partition("=")
                    if key.strip() in _MOMENT_FIELDS:
                        values[_MOMENT_FIELDS[key.strip()]] = tuple(_braced_words(names))
            elif title == "Required DBZ moment quality groups":
                values["dbz_quality_names"] = tuple(_braced_words(_first(lines, title)))
            elif title == "Common attributes and default values":
                common.extend(NamelistAttribute.from_line(line) for line in lines)
            elif title.startswith(SPECIFIC_SECTION_PREFIX):
                site = title.split()[-1]
                specific[site] = tuple(NamelistAttribute.from_line(line) for line in lines)
            else:
                logger.warning(f"Unknown namelist section [{title}] ignored")
        except ValueError as e:
            raise ValueError(f"Invalid value in namelist section [{title}]: {e}") from e

    return Settings(
        common_attributes=tuple(common),
        specific_attributes=specific,
        **values,
    )
