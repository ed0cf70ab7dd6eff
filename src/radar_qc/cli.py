"""
Command line interface: ``radar-qc <namelist> <input dir> <output dir>``.
"""

import argparse
import logging
import sys

from .pipeline import process_directory
from .settings import parse_namelist

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="radar-qc",
        description=(
            "Homogenize, dealias and superob polar volume radar files. "
            "The last five characters of each file name must be the radar site code."
        ),
    )
    parser.add_argument("namelist", help="Namelist file with the processing settings")
    parser.add_argument("input_dir", help="Folder with the radar files to process")
    parser.add_argument("output_dir", help="Folder receiving processed files and logs")
    return parser


def main(argv=None) -> int:
    """
    Entry point of the ``radar-qc`` command.

    Returns
    -------
    int
        0 after processing the folder; a wrong number of arguments makes
        argparse print the usage and exit with status 2
    """
    logging.basicConfig(
        level="INFO",
        force=True,
        format='[%(levelname)s] (%(name)s): %(message)s'
    )
    args = build_parser().parse_args(argv)

    settings = parse_namelist(args.namelist)
    result = process_directory(settings, args.input_dir, args.output_dir)
    print(result.summary())
    return 0


if __name__ == "__main__":
    sys.exit(main())
