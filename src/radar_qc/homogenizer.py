"""
Homogenization of heterogeneous source files into the canonical layout.

The source datasets are classified into DBZ, TH, VRAD and QUALITYn
quantities, linked to each other by sweep (elevation and start time),
filtered and renumbered so that every output file has the same structure:
DBZ datasets first (data1 = DBZ, data2 = TH, qualityN), then VRAD datasets.
"""

import logging
import math
from collections import OrderedDict
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from .constants import (
    DBZ,
    ELEVATION_RESOLUTION,
    QUALITY_PREFIX,
    QUALITY_TASK_KEYWORDS,
    TH,
    TOTAL_QUALITY_TASK,
    VRAD,
)
from .container import RadarContainer
from .diagnostics import Diagnostics
from .loader import load_volume
from .quantity import Quantity
from .resolver import AttributeResolver
from .settings import AttributeKind, NamelistAttribute, Settings
from .volume import SharedSnapshot

logger = logging.getLogger(__name__)

LEVELS = ("root", "dataset", "data", "quality")


def round_to(value: float, step: float = ELEVATION_RESOLUTION) -> float:
    """Round half away from zero to a multiple of ``step``."""
    return math.copysign(math.floor(abs(value) / step + 0.5), value) * step


def quality_task(task: Optional[str]) -> Optional[str]:
    """Map a source ``how/task`` value to its canonical quality task."""
    if task is None:
        return None
    for keyword, canonical in QUALITY_TASK_KEYWORDS:
        if keyword in task:
            return canonical
    return None


class Homogenizer:
    """
    Rewrites a source file into the homogenized layout.

    Parameters
    ----------
    source : RadarContainer
        Input file
    target : RadarContainer
        Output file, opened for writing
    snapshot : SharedSnapshot
        Per-file state; receives the loaded volumes in :meth:`store_data`
    settings : Settings
        Processing settings
    diagnostics : Diagnostics, optional
        Warning/error sink for this stage
    """

    def __init__(
        self,
        source: RadarContainer,
        target: RadarContainer,
        snapshot: SharedSnapshot,
        settings: Settings,
        diagnostics: Optional[Diagnostics] = None,
    ):
        self.source = source
        self.target = target
        self.snapshot = snapshot
        self.settings = settings
        self.diagnostics = diagnostics or Diagnostics("Homogenization")
        self.resolver = AttributeResolver(source, settings, snapshot.site)
        self.quantities: List[Quantity] = []
        self._metadata_groups = {level: self._namelist_groups(level) for level in LEVELS}

    def warning(self, message: str) -> None:
        self.diagnostics.warning(message)

    def error(self, message: str) -> None:
        self.diagnostics.error(message)

    # ------------------------------------------------------------------
    # Sorting
    # ------------------------------------------------------------------

    def _sweep(self, dataset: str) -> Tuple[Optional[float], Optional[str]]:
        elangle = self.resolver.resolve(f"{dataset}/where", "elangle", AttributeKind.FLOAT)
        startdate = self.resolver.resolve(f"{dataset}/what", "startdate", AttributeKind.STRING)
        starttime = self.resolver.resolve(f"{dataset}/what", "starttime", AttributeKind.STRING)
        elevation = round_to(elangle) if elangle is not None else None
        timestamp = startdate + starttime if startdate is not None and starttime is not None else None
        return elevation, timestamp

    def _moment_kind(self, dataset: str, group: str) -> Optional[str]:
        name = self.source.get_attr(f"{dataset}/{group}/what", "quantity", AttributeKind.STRING)
        if name is None:
            return None
        if name in self.settings.dbz_names:
            return DBZ
        if name in self.settings.th_names:
            return TH
        if name in self.settings.vrad_names:
            return VRAD
        return None

    def _enumerate(self) -> Tuple[List[Quantity], List[Quantity], List[Quantity], List[Quantity]]:
        dbzs, ths, vrads, quals = [], [], [], []
        by_kind = {DBZ: dbzs, TH: ths, VRAD: vrads}
        for dataset in self.source.datasets():
            elevation, timestamp = self._sweep(dataset)
            if elevation is None or timestamp is None:
                self.warning(f"no date or elevation angle in dataset {dataset}, skipping it")
                continue

            for group in self.source.subgroups(dataset, "data"):
                kind = self._moment_kind(dataset, group)
                if kind is not None:
                    by_kind[kind].append(Quantity(kind, elevation, timestamp, dataset, group))

            count = 0
            for group in self.source.subgroups(dataset, "quality"):
                raw_task = self.resolver.resolve(f"{dataset}/{group}/how", "task", AttributeKind.STRING)
                task = quality_task(raw_task)
                if task is None or task not in self.settings.dbz_quality_names:
                    continue
                count += 1
                quals.append(
                    Quantity(f"{QUALITY_PREFIX}{count}", elevation, timestamp, dataset, group, task=task)
                )
        return dbzs, ths, vrads, quals

    def _link_ths(self, ths: List[Quantity], dbzs: List[Quantity]) -> List[Quantity]:
        linked = []
        for th in ths:
            matches = [dbz for dbz in dbzs if dbz.matches(th)]
            owner = None
            if len(matches) == 1:
                owner = matches[0]
            elif len(matches) > 1:
                self.warning(f"more than one DBZ quantity matches the TH quantity in {th.source_path}")
                owner = next((d for d in matches if d.source_dataset == th.source_dataset), None)
            if owner is None:
                self.warning(f"TH quantity in {th.source_path} has no matching DBZ group, omitting it")
                continue
            linked.append(replace(th, target_dataset=owner.target_dataset, target_group="data2"))
        return linked

    def _dimensions(self, dataset: str) -> Tuple[Optional[int], Optional[int]]:
        return (
            self.source.get_attr(f"{dataset}/where", "nrays", AttributeKind.INT),
            self.source.get_attr(f"{dataset}/where", "nbins", AttributeKind.INT),
        )

    def _check_pairs(
        self, dbzs: List[Quantity], ths: List[Quantity]
    ) -> Tuple[List[Quantity], List[Quantity]]:
        kept_dbzs, kept_ths = [], []
        for dbz in dbzs:
            candidates = [th for th in ths if th.target_dataset == dbz.target_dataset]
            if not candidates:
                self.warning(
                    f"DBZ quantity in {dbz.source_path} has no corresponding TH group, omitting it"
                )
                continue
            th = candidates[0]
            for extra in candidates[1:]:
                self.warning(
                    f"TH quantity in {extra.source_path} duplicates {th.source_path}, omitting it"
                )
            dbz_dims = self._dimensions(dbz.source_dataset)
            th_dims = self._dimensions(th.source_dataset)
            if None in dbz_dims or None in th_dims:
                self.warning(
                    f"DBZ quantity in {dbz.source_path} or its TH quantity has no nrays/nbins, "
                    f"omitting both"
                )
                continue
            if dbz_dims != th_dims:
                self.warning(
                    f"DBZ quantity in {dbz.source_path} has a matching TH quantity, "
                    f"but dimensions are not the same, omitting both"
                )
                continue
            kept_dbzs.append(dbz)
            kept_ths.append(th)
        return kept_dbzs, kept_ths

    def _link_qualities(
        self, quals: List[Quantity], dbzs: List[Quantity], vrads: List[Quantity]
    ) -> List[Quantity]:
        linked = []
        for qual in quals:
            group = f"quality{qual.quality_index}"
            owners = [
                next((q for q in candidates if q.matches(qual)), None)
                for candidates in (dbzs, vrads)
            ]
            owners = [owner for owner in owners if owner is not None]
            if not owners:
                self.warning(
                    f"QUALITY quantity in {qual.source_path} has no matching DBZ or VRAD group, "
                    f"omitting it"
                )
            for owner in owners:
                linked.append(replace(qual, target_dataset=owner.target_dataset, target_group=group))
        return linked

    def _require_qualities(
        self,
        dbzs: List[Quantity],
        ths: List[Quantity],
        quals: List[Quantity],
        vrads: List[Quantity],
    ) -> Tuple[List[Quantity], List[Quantity], List[Quantity]]:
        required = set(self.settings.dbz_quality_names)
        kept_dbzs = []
        slots = {vrad.target_dataset for vrad in vrads}
        for dbz in dbzs:
            tasks = {q.task for q in quals if q.target_dataset == dbz.target_dataset}
            if not required.issubset(tasks):
                self.warning(
                    f"DBZ quantity in {dbz.source_path} does not have the required quality groups, "
                    f"omitting dataset"
                )
                continue
            kept_dbzs.append(dbz)
            slots.add(dbz.target_dataset)
        kept_ths = [th for th in ths if th.target_dataset in slots]
        kept_quals = [q for q in quals if q.target_dataset in slots]
        return kept_dbzs, kept_ths, kept_quals

    @staticmethod
    def _renumber(
        dbzs: List[Quantity], ths: List[Quantity], quals: List[Quantity], vrads: List[Quantity]
    ) -> List[Quantity]:
        mapping = {
            q.target_dataset: f"dataset{k}" for k, q in enumerate(dbzs + vrads, start=1)
        }

        def move(items: List[Quantity]) -> List[Quantity]:
            return [replace(q, target_dataset=mapping[q.target_dataset]) for q in items]

        return move(dbzs) + move(ths) + move(quals) + move(vrads)

    def sort(self) -> List[Quantity]:
        """
        Find the quantities of the source file and assign their output groups.

        Returns
        -------
        list of Quantity
            DBZ, then TH, then QUALITYn, then VRAD quantities with their
            target dataset and group set; also kept in ``self.quantities``
        """
        self.quantities = []
        dbzs, ths, vrads, quals = self._enumerate()

        # stable: equal timestamps keep enumeration order
        dbzs.sort(key=lambda q: q.timestamp)
        vrads.sort(key=lambda q: q.timestamp)
        dbzs = [
            replace(q, target_dataset=f"dataset{k}", target_group="data1")
            for k, q in enumerate(dbzs, start=1)
        ]
        vrads = [
            replace(q, target_dataset=f"dataset{k}", target_group="data1")
            for k, q in enumerate(vrads, start=len(dbzs) + 1)
        ]

        ths = self._link_ths(ths, dbzs)
        dbzs, ths = self._check_pairs(dbzs, ths)
        quals = self._link_qualities(quals, dbzs, vrads)
        dbzs, ths, quals = self._require_qualities(dbzs, ths, quals, vrads)
        self.quantities = self._renumber(dbzs, ths, quals, vrads)

        logger.debug(
            f"Sorted {len(self.quantities)} quantities: "
            f"{[(q.kind, q.source_path, q.target_path) for q in self.quantities]}"
        )
        return self.quantities

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def _namelist_groups(self, level: str) -> Dict[str, List[NamelistAttribute]]:
        groups: Dict[str, List[NamelistAttribute]] = OrderedDict()
        specific = self.settings.attributes_for_site(self.snapshot.site)
        for att in tuple(self.settings.common_attributes) + tuple(specific):
            if att.metadata_level() != level:
                continue
            attributes = groups.setdefault(att.group, [])
            if all(existing.name != att.name for existing in attributes):
                attributes.append(att)
        return groups

    def _write_metadata(self, level: str, quantity: Optional[Quantity] = None) -> None:
        for group, attributes in self._metadata_groups[level].items():
            meta = group.strip("/").split("/")[-1]
            if level == "root":
                source_group = target_group = meta
            elif level == "dataset":
                source_group = f"{quantity.source_dataset}/{meta}"
                target_group = f"{quantity.target_dataset}/{meta}"
            else:
                source_group = f"{quantity.source_path}/{meta}"
                target_group = f"{quantity.target_path}/{meta}"

            for att in attributes:
                if att.name == "quantity":
                    value = quantity.kind if quantity is not None else None
                else:
                    value = self.resolver.resolve(source_group, att.name, att.kind)
                if value is None:
                    self.error(f"attribute {source_group}/{att.name} not found")
                    continue
                self.target.set_attr(target_group, att.name, value, att.kind)

    def check_and_write(self) -> None:
        """
        Write the sorted quantities and their metadata to the output file.

        Every attribute the namelist declares is resolved (file, site
        override, common default) and written; unresolved attributes and
        an empty quantity list are errors.
        """
        conventions = self.resolver.resolve("", "Conventions", AttributeKind.STRING)
        if conventions is None:
            self.error("Conventions attribute not found")
        else:
            self.target.set_attr("", "Conventions", conventions, AttributeKind.STRING)

        self._write_metadata("root")

        if not self.quantities:
            self.error("no quantities to write to output file")

        for quantity in self.quantities:
            if quantity.is_main:
                self._write_metadata("dataset", quantity)
            self._write_metadata("quality" if quantity.is_quality else "data", quantity)
            self.source.copy_raster(
                self.target, f"{quantity.source_path}/data", f"{quantity.target_path}/data"
            )
        self.target.flush()

    def store_data(self) -> None:
        """
        Load the homogenized DBZ and VRAD datasets into the snapshot.
        """
        height = self.resolver.resolve("where", "height", AttributeKind.FLOAT)
        if height is None:
            self.error("attribute where/height not found")
            return
        self.snapshot.antenna_height = height

        dbz_datasets = [q.target_dataset for q in self.quantities if q.kind == DBZ]
        vrad_datasets = [q.target_dataset for q in self.quantities if q.kind == VRAD]
        quality_groups = [
            next(
                (
                    q.target_group for q in self.quantities
                    if q.is_quality and q.target_dataset == ds and q.task == TOTAL_QUALITY_TASK
                ),
                "",
            )
            for ds in dbz_datasets
        ]

        dbz = load_volume(self.target, dbz_datasets, DBZ, self.diagnostics, height, quality_groups)
        vrad = load_volume(self.target, vrad_datasets, VRAD, self.diagnostics, height)
        if dbz is not None:
            self.snapshot.dbz = dbz
        if vrad is not None:
            self.snapshot.vrad = vrad
        logger.info(
            f"Stored {self.snapshot.dbz.nel} DBZ and {self.snapshot.vrad.nel} VRAD elevations"
        )
