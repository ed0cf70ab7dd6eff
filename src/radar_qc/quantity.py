"""
Quantity records used while homogenizing a source file.
"""

from dataclasses import dataclass
from typing import Optional

from .constants import DBZ, ELEVATION_TOLERANCE, QUALITY_PREFIX, TH, VRAD


@dataclass(frozen=True)
class Quantity:
    """
    One moment or quality group of the source file and its output location.

    Attributes
    ----------
    kind : str
        ``'DBZ'``, ``'TH'``, ``'VRAD'`` or ``'QUALITY<n>'``
    elevation : float
        Elevation angle in degrees, rounded to 0.1
    timestamp : str
        Scan start as ``YYYYMMDDHHMMSS``
    source_dataset : str
        Source dataset group, e.g. ``'dataset3'``
    source_group : str
        Source subgroup, e.g. ``'data2'`` or ``'quality1'``
    task : str, optional
        Canonical quality task (quality groups only)
    target_dataset : str, optional
        Output dataset group
    target_group : str, optional
        Output subgroup
    """

    kind: str
    elevation: float
    timestamp: str
    source_dataset: str
    source_group: str
    task: Optional[str] = None
    target_dataset: Optional[str] = None
    target_group: Optional[str] = None

    @property
    def is_quality(self) -> bool:
        return self.kind.startswith(QUALITY_PREFIX)

    @property
    def is_main(self) -> bool:
        """True for the quantities that own an output dataset."""
        return self.kind in (DBZ, VRAD)

    @property
    def is_moment(self) -> bool:
        return self.kind in (DBZ, TH, VRAD)

    @property
    def quality_index(self) -> int:
        if not self.is_quality:
            raise ValueError(f"{self.kind} is not a quality group")
        return int(self.kind[len(QUALITY_PREFIX):])

    @property
    def source_path(self) -> str:
        return f"{self.source_dataset}/{self.source_group}"

    @property
    def target_path(self) -> str:
        return f"{self.target_dataset}/{self.target_group}"

    def matches(self, other: "Quantity") -> bool:
        """Same sweep: equal elevation (0.1 degree resolution) and start time."""
        return (
            abs(self.elevation - other.elevation) < ELEVATION_TOLERANCE
            and self.timestamp == other.timestamp
        )
