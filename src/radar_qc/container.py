"""
Thin h5py wrapper for ODIM-like polar volume files.
"""

import logging
import re
from pathlib import Path
from typing import List, Optional, Union

import h5py
import numpy as np

from .settings import AttributeKind, AttributeValue

logger = logging.getLogger(__name__)


def _natural_key(name: str):
    return [int(tok) if tok.isdigit() else tok for tok in re.split(r"(\d+)", name)]


def _join(*parts: str) -> str:
    return "/".join(p.strip("/") for p in parts if p and p.strip("/"))


def _scalar(value):
    if isinstance(value, np.ndarray):
        if value.size != 1:
            return None
        value = value.reshape(-1)[0]
    if isinstance(value, np.generic):
        value = value.item()
    return value


class RadarContainer:
    """
    Read/write access to the groups, attributes and rasters of a radar file.

    Group paths are relative to the file root; ``""`` and ``"/"`` both
    address the root. Use as a context manager so the file is closed on
    every exit path.

    Parameters
    ----------
    path : str or Path
        HDF5 file
    mode : str
        h5py file mode (``'r'``, ``'w'``, ``'r+'``, ``'a'``)
    """

    def __init__(self, path: Union[str, Path], mode: str = "r"):
        self.path = Path(path)
        self.mode = mode
        self._file = h5py.File(self.path, mode)

    def __enter__(self) -> "RadarContainer":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    @property
    def is_open(self) -> bool:
        return bool(self._file)

    def _group(self, group: str) -> Optional[h5py.Group]:
        key = _join(group)
        if not key:
            return self._file
        obj = self._file.get(key)
        return obj if isinstance(obj, h5py.Group) else None

    def datasets(self) -> List[str]:
        """Return top-level ``datasetN`` group names in numeric order."""
        names = [
            name for name, obj in self._file.items()
            if "dataset" in name and isinstance(obj, h5py.Group)
        ]
        return sorted(names, key=_natural_key)

    def subgroups(self, dataset: str, marker: str) -> List[str]:
        """
        Return subgroup names of ``dataset`` containing ``marker``.

        Parameters
        ----------
        dataset : str
            Dataset group, e.g. ``'dataset1'``
        marker : str
            ``'data'`` or ``'quality'``
        """
        grp = self._group(dataset)
        if grp is None:
            return []
        names = [
            name for name, obj in grp.items()
            if name.startswith(marker) and isinstance(obj, h5py.Group)
        ]
        return sorted(names, key=_natural_key)

    def has_group(self, group: str) -> bool:
        return self._group(group) is not None

    def get_attr(self, group: str, name: str, kind: AttributeKind) -> Optional[AttributeValue]:
        """
        Read an attribute and convert it to ``kind``.

        Returns
        -------
        str, int, float or None
            The value, or None if the group or attribute does not exist or
            cannot be converted
        """
        grp = self._group(group)
        if grp is None or name not in grp.attrs:
            return None
        value = _scalar(grp.attrs[name])
        if value is None:
            return None
        try:
            return kind.coerce(value)
        except (TypeError, ValueError):
            logger.debug(f"Attribute {group}/{name} = {value!r} is not of kind {kind.name}")
            return None

    def set_attr(self, group: str, name: str, value: AttributeValue, kind: AttributeKind) -> None:
        """Write an attribute, creating missing groups on the way."""
        key = _join(group)
        grp = self._file.require_group(key) if key else self._file
        if kind is AttributeKind.STRING:
            grp.attrs[name] = np.bytes_(str(value))
        elif kind is AttributeKind.INT:
            grp.attrs[name] = np.int64(int(value))
        else:
            grp.attrs[name] = np.float64(float(value))

    def get_raster(self, group: str, name: str = "data") -> Optional[np.ndarray]:
        grp = self._group(group)
        if grp is None:
            return None
        obj = grp.get(name)
        if not isinstance(obj, h5py.Dataset):
            return None
        return obj[()]

    def set_raster(self, group: str, name: str, data: np.ndarray) -> None:
        """Write a 2-D ``uint8`` raster, replacing any existing one."""
        grp = self._file.require_group(_join(group))
        if name in grp:
            del grp[name]
        grp.create_dataset(name, data=np.asarray(data, dtype=np.uint8), compression="gzip")

    def copy_raster(self, target: "RadarContainer", source_path: str, target_path: str) -> None:
        """
        Copy a raster byte-exact into another open container.

        Parameters
        ----------
        target : RadarContainer
            Destination container, opened for writing
        source_path : str
            Path of the raster in this container, e.g. ``'dataset3/data2/data'``
        target_path : str
            Destination path, e.g. ``'dataset1/data1/data'``
        """
        src = _join(source_path)
        dst = _join(target_path)
        if src not in self._file:
            raise KeyError(f"{src} not found in {self.path.name}")
        parent, _, name = dst.rpartition("/")
        dst_group = target._file.require_group(parent) if parent else target._file
        if name in dst_group:
            del dst_group[name]
        self._file.copy(self._file[src], dst_group, name=name)

    def flush(self) -> None:
        self._file.flush()

    def close(self) -> None:
        if self._file:
            self._file.close()

    def __repr__(self) -> str:
        return f"RadarContainer(path={str(self.path)!r}, mode={self.mode!r})"
