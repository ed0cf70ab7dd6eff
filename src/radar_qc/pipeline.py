"""
Batch driver: runs homogenization, dealiasing and superobing per file.
"""

import logging
import time
import traceback
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Sequence, TextIO, Tuple, Union

from .constants import DEALIASING_STAGE, HOMOGENIZATION_STAGE, SUPEROBING_STAGE
from .container import RadarContainer
from .dealiaser import Dealiaser
from .diagnostics import Diagnostics
from .homogenizer import Homogenizer
from .settings import Settings
from .superober import Superober
from .volume import SharedSnapshot

logger = logging.getLogger(__name__)

SITE_CODE_LENGTH = 5

Step = Tuple[str, Callable[[], None]]


@dataclass
class BatchResult:
    """Summary of a directory run."""

    analysed: int = 0
    total: int = 0
    elapsed_ms: float = 0.0
    failed: List[str] = field(default_factory=list)

    def summary(self) -> str:
        return (
            f"Successfully analysed {self.analysed} out of {self.total} files "
            f"in {self.elapsed_ms:.0f} ms"
        )


def site_code(path: Union[str, Path]) -> str:
    """The site code is the last five characters of the file name stem."""
    return Path(path).stem[-SITE_CODE_LENGTH:]


def _run_steps(steps: Sequence[Step], diagnostics: Diagnostics, timings: Dict[str, float]) -> bool:
    for name, step in steps:
        start = time.time()
        step()
        timings[name] = (time.time() - start) * 1000.0
        if diagnostics.has_errors:
            return False
    return True


def _process(
    path: Path, out_path: Path, settings: Settings, log: TextIO, timings: Dict[str, float]
) -> bool:
    snapshot = SharedSnapshot(site=site_code(path))

    with RadarContainer(path, "r") as source, RadarContainer(out_path, "w") as target:
        diagnostics = Diagnostics(HOMOGENIZATION_STAGE)
        homogenizer = Homogenizer(source, target, snapshot, settings, diagnostics)
        steps = [
            ("Homogenization", homogenizer.sort),
            ("Homogenization check/write", homogenizer.check_and_write),
        ]
        if settings.dealiasing or settings.superobing:
            steps.append(("Storing homogenized data", homogenizer.store_data))
        ok = _run_steps(steps, diagnostics, timings)
        diagnostics.output(log, settings)
        if not ok:
            return False

        if settings.dealiasing:
            diagnostics = Diagnostics(DEALIASING_STAGE)
            dealiaser = Dealiaser(snapshot, target, settings, diagnostics)
            steps = [
                ("Checking dealiasing data", dealiaser.check_data),
                ("Calculating wind model quantities", dealiaser.compute_coefficients),
                ("Determining height sectors", dealiaser.determine_height_sectors),
                ("Calculating wind models", dealiaser.fit_wind_models),
                ("Dealiasing", dealiaser.dealias),
                ("Writing dealiased data", dealiaser.write),
            ]
            ok = _run_steps(steps, diagnostics, timings)
            diagnostics.output(log, settings)
            if not ok:
                return False

        if settings.superobing:
            diagnostics = Diagnostics(SUPEROBING_STAGE)
            superober = Superober(snapshot, target, settings, diagnostics)
            steps = [
                ("Checking superobing data", superober.check_data),
                ("Preparing superobed metadata", superober.prepare_metadata),
                ("Superobing", superober.superob),
                ("Writing superobed data", superober.write),
            ]
            ok = _run_steps(steps, diagnostics, timings)
            diagnostics.output(log, settings)
            if not ok:
                return False
    return True


def process_file(path: Union[str, Path], settings: Settings, output_dir: Union[str, Path]) -> bool:
    """
    Process one radar file.

    Parameters
    ----------
    path : str or Path
        Input file; the last five characters of its stem are the site code
    settings : Settings
        Processing settings
    output_dir : str or Path
        Receives the processed file (same name as the input) and
        ``<stem>.log``; the log is deleted when nothing was written to it

    Returns
    -------
    bool
        True if every enabled stage finished without errors
    """
    path = Path(path)
    output_dir = Path(output_dir)
    log_path = output_dir / f"{path.stem}.log"
    timings: Dict[str, float] = {}

    logger.info(f"Processing file {path.name}")
    start = time.time()
    with open(log_path, "w") as log:
        try:
            ok = _process(path, output_dir / path.name, settings, log, timings)
        except Exception as e:
            logger.exception(f"Unexpected error while processing {path.name}")
            log.write(f"{settings.error_tag}: {type(e).__name__}: {e}\n")
            log.write(traceback.format_exc())
            ok = False

    if log_path.stat().st_size == 0:
        log_path.unlink()

    if settings.print_console_timing:
        for name, ms in timings.items():
            logger.info(f"   {name + ':':<36}{ms:8.0f} ms")
        logger.info(f"   {'Total:':<36}{(time.time() - start) * 1000.0:8.0f} ms")
    return ok


def process_directory(
    settings: Settings, input_dir: Union[str, Path], output_dir: Union[str, Path]
) -> BatchResult:
    """
    Process every accepted file of ``input_dir``, in name order.

    Returns
    -------
    BatchResult
        Number of files analysed successfully, number of files attempted,
        elapsed time and failed file names
    """
    input_dir = Path(input_dir)
    output_dir = Path(output_dir)
    if not input_dir.is_dir():
        raise FileNotFoundError(f"Input directory not found: {input_dir}")
    output_dir.mkdir(parents=True, exist_ok=True)

    files = sorted(p for p in input_dir.iterdir() if p.is_file() and settings.is_accepted(p))
    result = BatchResult(total=len(files))
    start = time.time()
    for path in files:
        if process_file(path, settings, output_dir):
            result.analysed += 1
        else:
            result.failed.append(path.name)
    result.elapsed_ms = (time.time() - start) * 1000.0
    return result
