#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""vicimage entry point.

This file is intentionally small:
- parse CLI
- load+merge configuration
- initialize MPI (optional)
- build+broadcast the global domain and the local domains
- open history/state files, register variables and write the file skeleton

All real logic lives in the `vicimage/` package.
"""

# Import logging (for module-level logger).
import json
import logging

# Import typing primitives.
from typing import Any, Dict, Iterable, List, Optional

# Import lightweight config helpers early for shared utilities.
from vicimage.config import deep_update, default_config, load_json


def apply_cli_overrides(cfg: Dict[str, Any], args: Any) -> Dict[str, Any]:
    """Apply CLI overrides (only options that were explicitly supplied)."""
    if args.domain_nc is not None:
        cfg["domain"]["domain_nc"] = args.domain_nc
    if args.history_nc is not None:
        cfg["output"]["history_nc"] = args.history_nc
    if args.state_nc is not None:
        cfg["state"]["state_nc"] = args.state_nc
    if args.nrec is not None:
        cfg["output"]["nrec"] = args.nrec
    if args.partition is not None:
        cfg["partition"]["policy"] = args.partition
    mpi_cfg_overrides = cfg.setdefault("compute", {}).setdefault("mpi", {})
    if args.mpi_mode == "enabled":
        mpi_cfg_overrides["enabled"] = True
    elif args.mpi_mode == "disabled":
        mpi_cfg_overrides["enabled"] = False
    elif args.mpi_mode == "auto":
        mpi_cfg_overrides["enabled"] = None
    return cfg


def _file_attrs(cfg: Dict[str, Any], title: str) -> Dict[str, str]:
    """Global attributes shared by history and state files."""
    from vicimage.time_utils import utc_now_iso

    out_cfg = cfg.get("output", {})
    return {
        "title": title,
        "institution": str(out_cfg.get("institution", "")),
        "source": "vicimage",
        "history": f"{utc_now_iso()}: created by vicimage",
        "Conventions": str(out_cfg.get("Conventions", "CF-1.6")),
        "vicimage_config_json": json.dumps(cfg, separators=(",", ":"), sort_keys=True, default=str),
    }


def run(cfg: Dict[str, Any], param_lines: Optional[Iterable[str]] = None, print_loc: bool = False) -> None:
    """Build domains and write the history/state file skeletons."""
    import numpy as np

    from vicimage.domain import bcast_domain, check_local_domain, get_global_domain, get_local_domain, print_domain
    from vicimage.location import MISSING
    from vicimage.mpi_utils import HAVE_MPI, MPI, MPIConfig, build_owner_map, initialize_mpi
    from vicimage.nc_file import NcFile, close_all_files, initialize_history_file, initialize_state_file, print_nc_file
    from vicimage.nc_vars import record_schema, vic_nc_info
    from vicimage.output import build_output_list, build_state_list
    from vicimage.time_utils import TIME_UNITS, record_time_hours
    from vicimage.writer import write_coordinates, write_history_step, write_state_file, write_time

    logger = logging.getLogger("vicimage")

    world_size_guess = MPI.COMM_WORLD.Get_size() if HAVE_MPI else 1
    mpi_cfg = MPIConfig.from_dict(cfg.get("compute", {}).get("mpi", {}), cfg.get("partition", {}),
                                  world_size=world_size_guess)
    comm, rank, size, world_size, mpi_active = initialize_mpi(mpi_cfg)
    if rank == 0 and not mpi_active and world_size > 1:
        logger.info("MPI explicitly disabled in configuration; running serial on rank0 (world_size=%d).", world_size)

    # Global domain: rank0 reads, everybody else receives.
    if rank == 0:
        global_domain, _ = get_global_domain(cfg["domain"]["domain_nc"], cfg["domain"])
        print_domain(global_domain, print_loc)
    else:
        global_domain = None
    if size > 1:
        global_domain = bcast_domain(comm, global_domain)

    part_cfg = cfg.get("partition", {})
    owners = build_owner_map(global_domain, size, policy=mpi_cfg.partition,
                             owner_map=part_cfg.get("owner_map"), min_rows_per_rank=mpi_cfg.min_rows_per_rank)
    local_domain = get_local_domain(global_domain, owners, rank)
    check_local_domain(global_domain, local_domain)
    logger.info("Local domain: %d of %d active cells (policy=%s)",
                local_domain.ncells_local, global_domain.ncells_global, mpi_cfg.partition)

    out_cfg = cfg["output"]
    state_cfg = cfg.get("state", {})
    out_data = build_output_list(out_cfg, param_lines)
    history: Optional[NcFile] = None
    state: Optional[NcFile] = None
    hist_vars: List[Any] = []
    state_vars: List[Any] = []
    try:
        if rank == 0:
            history = initialize_history_file(NcFile(), cfg, global_domain)
            history.open_for_write(attrs=_file_attrs(cfg, str(out_cfg.get("title", "VIC image driver history"))))
            print_nc_file(history)
            write_coordinates(history, global_domain)
            hist_vars = vic_nc_info(history, out_data, with_time=True)
            record_schema(history, hist_vars)
        if size > 1:
            hist_vars = comm.bcast(hist_vars, root=0)

        nrec = int(out_cfg.get("nrec", 1))
        step_s = float(out_cfg.get("step_s", 86400))
        for t in range(nrec):
            if rank == 0:
                write_time(history, t, record_time_hours(out_cfg.get("start_time"), t, step_s),
                           units=str(out_cfg.get("time_units", TIME_UNITS)))
            values = {v.nc_var_name: np.full((local_domain.ncells_local,) + v.cell_shape, MISSING)
                      for v in hist_vars}
            write_history_step(history, hist_vars, values, global_domain, local_domain, t, comm=comm)

        if state_cfg.get("enabled", True):
            if rank == 0:
                state = initialize_state_file(NcFile(), cfg, global_domain)
                state.open_for_write(attrs=_file_attrs(cfg, "VIC image driver state"))
                write_coordinates(state, global_domain)
                state_vars = vic_nc_info(state, build_state_list(state_cfg), with_time=False)
                record_schema(state, state_vars)
            if size > 1:
                state_vars = comm.bcast(state_vars, root=0)
            values = {v.nc_var_name: np.full((local_domain.ncells_local,) + v.cell_shape, MISSING)
                      for v in state_vars}
            write_state_file(state, state_vars, values, global_domain, local_domain, comm=comm)
    except Exception:
        # Leave whatever was written readable before aborting.
        closed = close_all_files()
        logger.error("Aborting run; closed %d open file(s)", closed)
        raise
    finally:
        for nc in (history, state):
            if nc is not None:
                nc.close()

    if rank == 0:
        logger.info("vicimage finished: %d history variable(s), %d state variable(s)",
                    len(hist_vars), len(state_vars))


def main(argv: Optional[List[str]] = None) -> int:
    """Program entry point."""
    from vicimage.cli import parse_args
    from vicimage.logging_utils import setup_logging

    args = parse_args(argv)

    # Load the built-in defaults and merge the user-provided config file.
    cfg = default_config()
    cfg = deep_update(cfg, load_json(args.config))
    cfg = apply_cli_overrides(cfg, args)

    # The rank only decorates log lines; MPI may still be disabled later.
    from vicimage.mpi_utils import HAVE_MPI, MPI
    rank = MPI.COMM_WORLD.Get_rank() if HAVE_MPI else 0
    setup_logging(args.log_level, rank)

    param_lines = None
    if args.param_file:
        with open(args.param_file, "r", encoding="utf-8") as f:
            param_lines = f.readlines()

    run(cfg, param_lines=param_lines, print_loc=args.print_domain)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
