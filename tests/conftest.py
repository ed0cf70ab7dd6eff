"""
Pytest configuration and fixtures.
"""
import h5py
import numpy as np
import pytest

from radar_qc.settings import NamelistAttribute, Settings

NRAYS = 36
NBINS = 20

COMMON_ATTRIBUTES = [
    "S /what/object = PVOL",
    "S /what/date = None",
    "S /what/time = None",
    "F /where/height = None",
    "S /dataset/what/startdate = None",
    "S /dataset/what/starttime = None",
    "F /dataset/where/elangle = None",
    "I /dataset/where/nbins = None",
    "I /dataset/where/nrays = None",
    "F /dataset/where/rstart = 0.0",
    "F /dataset/where/rscale = None",
    "F /dataset/how/NI = None",
    "S /dataset/data/what/quantity = None",
    "F /dataset/data/what/gain = None",
    "F /dataset/data/what/offset = None",
    "F /dataset/data/what/nodata = 255.0",
    "F /dataset/data/what/undetect = 0.0",
    "F /dataset/quality/what/gain = None",
    "F /dataset/quality/what/offset = None",
    "S /dataset/quality/how/task = None",
]

TOTAL_TASK = "pl.imgw.quality.qi_total"
ROPO_TASK = "fi.fmi.ropo.detector.classification"


def make_settings(**overrides) -> Settings:
    """Settings matching the files written by OdimFactory."""
    values = dict(
        print_console_errors=False,
        print_log_warnings=True,
        dbz_names=("DBZH",),
        th_names=("TH",),
        vrad_names=("VRADH", "VRAD"),
        dbz_quality_names=("TOTAL",),
        common_attributes=tuple(NamelistAttribute.from_line(line) for line in COMMON_ATTRIBUTES),
        dealiasing=True,
        sector_size=200.0,
        max_height=12000.0,
        min_sector_points=10,
        max_wind=48.0,
        superobing=True,
        range_bin_factor=2,
        ray_angle_factor=3,
        max_arc_size=1000.0,
        min_quality=0.5,
        dbz_clear_sky=0.0,
        dbz_percentage=0.5,
        vrad_percentage=0.5,
        vrad_max_std=5.0,
    )
    values.update(overrides)
    return Settings(**values)


class OdimFactory:
    """Writes small synthetic ODIM polar volume files."""

    def __init__(self, directory):
        self.directory = directory

    @staticmethod
    def moment(quantity, raw, gain=0.5, offset=-32.0, nodata=255.0, undetect=0.0):
        return dict(quantity=quantity, raw=raw, gain=gain, offset=offset, nodata=nodata, undetect=undetect)

    @staticmethod
    def quality(task, raw, gain=1.0 / 255.0, offset=0.0):
        return dict(task=task, raw=raw, gain=gain, offset=offset)

    @staticmethod
    def sweep(moments=(), qualities=(), elangle=0.5, startdate="20240611", starttime="120000",
              nrays=NRAYS, nbins=NBINS, rscale=500.0, nyquist=16.0):
        return dict(
            moments=list(moments), qualities=list(qualities), elangle=elangle,
            startdate=startdate, starttime=starttime, nrays=nrays, nbins=nbins,
            rscale=rscale, nyquist=nyquist,
        )

    def reflectivity(self, elangle=0.5, starttime="120000", nrays=NRAYS, nbins=NBINS,
                     th=True, tasks=(TOTAL_TASK,), seed=0, th_nrays=None):
        rng = np.random.default_rng(seed)
        raw = rng.integers(1, 255, (nrays, nbins)).astype(np.uint8)
        moments = [self.moment("DBZH", raw)]
        if th:
            moments.append(self.moment("TH", raw))
        qualities = [self.quality(t, np.full((nrays, nbins), 200, dtype=np.uint8)) for t in tasks]
        return self.sweep(moments, qualities, elangle=elangle, starttime=starttime,
                          nrays=nrays, nbins=nbins)

    def velocity(self, elangle=0.5, starttime="120000", nrays=NRAYS, nbins=NBINS,
                 tasks=(), seed=1, raw=None):
        if raw is None:
            rng = np.random.default_rng(seed)
            raw = rng.integers(1, 255, (nrays, nbins)).astype(np.uint8)
        moments = [self.moment("VRADH", raw, gain=0.1, offset=-12.7)]
        qualities = [self.quality(t, np.full((nrays, nbins), 200, dtype=np.uint8)) for t in tasks]
        return self.sweep(moments, qualities, elangle=elangle, starttime=starttime,
                          nrays=nrays, nbins=nbins)

    def write(self, name, sweeps, conventions="ODIM_H5/V2_2", height=500.0):
        path = self.directory / name
        with h5py.File(path, "w") as f:
            if conventions is not None:
                f.attrs["Conventions"] = np.bytes_(conventions)
            what = f.create_group("what")
            what.attrs["object"] = np.bytes_("PVOL")
            what.attrs["date"] = np.bytes_("20240611")
            what.attrs["time"] = np.bytes_("120000")
            where = f.create_group("where")
            where.attrs["lat"] = 46.07
            where.attrs["lon"] = 15.28
            if height is not None:
                where.attrs["height"] = height

            for k, sw in enumerate(sweeps, start=1):
                ds = f.create_group(f"dataset{k}")
                ds_what = ds.create_group("what")
                if sw["startdate"] is not None:
                    ds_what.attrs["startdate"] = np.bytes_(sw["startdate"])
                if sw["starttime"] is not None:
                    ds_what.attrs["starttime"] = np.bytes_(sw["starttime"])
                ds_where = ds.create_group("where")
                if sw["elangle"] is not None:
                    ds_where.attrs["elangle"] = sw["elangle"]
                ds_where.attrs["nrays"] = np.int64(sw["nrays"])
                ds_where.attrs["nbins"] = np.int64(sw["nbins"])
                ds_where.attrs["rscale"] = sw["rscale"]
                ds_where.attrs["rstart"] = 0.0
                ds.create_group("how").attrs["NI"] = sw["nyquist"]

                for j, m in enumerate(sw["moments"], start=1):
                    grp = ds.create_group(f"data{j}")
                    grp.create_dataset("data", data=m["raw"])
                    gw = grp.create_group("what")
                    gw.attrs["quantity"] = np.bytes_(m["quantity"])
                    for key in ("gain", "offset", "nodata", "undetect"):
                        gw.attrs[key] = float(m[key])

                for j, q in enumerate(sw["qualities"], start=1):
                    grp = ds.create_group(f"quality{j}")
                    grp.create_dataset("data", data=q["raw"])
                    gw = grp.create_group("what")
                    gw.attrs["gain"] = float(q["gain"])
                    gw.attrs["offset"] = float(q["offset"])
                    grp.create_group("how").attrs["task"] = np.bytes_(q["task"])
        return path


@pytest.fixture
def settings():
    """Default settings for the synthetic files."""
    return make_settings()


@pytest.fixture
def odim(tmp_path):
    """Factory for synthetic ODIM files in a temporary directory."""
    source = tmp_path / "input"
    source.mkdir()
    return OdimFactory(source)


@pytest.fixture
def output_dir(tmp_path):
    """Create temporary output directory."""
    output = tmp_path / "output"
    output.mkdir()
    return output


@pytest.fixture
def settings_factory():
    """Build settings with some values overridden."""
    return make_settings
