# -*- coding: utf-8 -*-
"""Command line interface for vicimage."""

# Import argparse for CLI parsing.
import argparse

# Import typing primitives.
from typing import List, Optional

# Import partition policy names.
from .mpi_utils import PARTITION_POLICIES


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    ap = argparse.ArgumentParser(prog="vicimage")
    ap.add_argument("--config", default="config.json", help="Path to configuration JSON file.")
    ap.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    # Common operational overrides for pipelines.
    ap.add_argument("--domain-nc", default=None, help="Domain NetCDF with the active-cell mask.")
    ap.add_argument("--history-nc", default=None, help="History NetCDF path to write (rank 0 only).")
    ap.add_argument("--state-nc", default=None, help="State NetCDF path to write (rank 0 only).")
    ap.add_argument("--nrec", default=None, type=int, help="Number of history records (time dimension size).")
    ap.add_argument("--param-file", default=None, help="Global parameter file with OUTVAR lines.")
    ap.add_argument(
        "--partition",
        default=None,
        choices=list(PARTITION_POLICIES),
        help="Cell ownership policy across MPI ranks.",
    )
    ap.add_argument(
        "--mpi-mode",
        default=None,
        choices=["auto", "enabled", "disabled"],
        help="Force MPI on/off or auto-detect based on launcher.",
    )
    ap.add_argument("--print-domain", action="store_true", help="Log every location of the global domain.")
    return ap.parse_args(argv)
