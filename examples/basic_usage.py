"""
Basic example: Quality-control a single radar volume.

This example processes one ODIM polar volume with the example namelist
and prints what ended up in the output file.
"""
from pathlib import Path

from radar_qc import RadarContainer, parse_namelist, process_file


def main():
    # The last five characters of the file name are the site code
    radar_file = Path("data/odim/T_PAGZ41_C_LJLM_20240611120000_SIVIS.h5")

    # Output directory for processed files and logs
    output_dir = Path("output")
    output_dir.mkdir(exist_ok=True)

    settings = parse_namelist(Path(__file__).parent / "namelist.txt")

    ok = process_file(radar_file, settings, output_dir)
    print(f"Processed {radar_file.name}: {'OK' if ok else 'FAILED'}")

    # Errors and warnings, if any, are in <stem>.log
    log_file = output_dir / f"{radar_file.stem}.log"
    if log_file.exists():
        print(log_file.read_text())

    with RadarContainer(output_dir / radar_file.name) as out:
        for dataset in out.datasets():
            groups = out.subgroups(dataset, "data") + out.subgroups(dataset, "quality")
            print(f"{dataset}: {', '.join(groups)}")


if __name__ == "__main__":
    main()
