"""
Warning and error accumulation for a processing stage.
"""

import logging
from typing import List, Optional, TextIO

from .settings import Settings

logger = logging.getLogger(__name__)


class Diagnostics:
    """
    Collects the warnings and errors raised while a stage processes a file.

    Messages are kept in order and written to the per-file log (and,
    optionally, the console) once the stage is done.

    Parameters
    ----------
    stage : str
        Stage name used as the message prefix
    """

    def __init__(self, stage: str):
        self.stage = stage
        self.warnings: List[str] = []
        self.errors: List[str] = []

    def warning(self, message: str) -> None:
        self.warnings.append(f"{self.stage} - {message}")

    def error(self, message: str) -> None:
        self.errors.append(f"{self.stage} - {message}")

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def output(self, log: Optional[TextIO], settings: Settings) -> None:
        """
        Write the collected messages.

        Parameters
        ----------
        log : file-like or None
            Per-file log; warnings go there only when ``print_log_warnings``
            is set, errors always do
        settings : Settings
            Supplies the log tags and the print toggles
        """
        for message in self.warnings:
            if settings.print_console_warnings:
                logger.warning(message)
            if log is not None and settings.print_log_warnings:
                log.write(f"{settings.warning_tag}: {message}\n")
        for message in self.errors:
            if settings.print_console_errors:
                logger.error(message)
            if log is not None:
                log.write(f"{settings.error_tag}: {message}\n")

    def __repr__(self) -> str:
        return (
            f"Diagnostics(stage={self.stage!r}, "
            f"warnings={len(self.warnings)}, errors={len(self.errors)})"
        )
