# -*- coding: utf-8 -*-
"""History records, state snapshots and state restore.

Every rank hands in the values of its local cells; they are gathered on
rank0, placed on the global grid through their global indices and written
as one block per variable. Only rank0 touches the files.
"""

from __future__ import annotations

# Import stdlib helpers.
import logging
from typing import Any, Dict, Mapping, Optional, Sequence

# Import numpy.
import numpy as np

# Import local helpers.
from .domain import Domain, cells_to_grid, grid_to_cells
from .errors import NotOpenError, SchemaMismatchError, ShapeError, VariableNotFoundError
from .location import MISSING
from .mpi_utils import gather_cells_to_rank0, scatter_cells_from_rank0
from .nc_file import DimensionKind, NcFile
from .nc_io import get_nc_field_double, get_nc_fill_value, get_nc_var_shape, put_nc_field, put_nc_field_double, put_nc_field_int
from .nc_vars import NcVar
from .output import WritePolicy
from .time_utils import TIME_UNITS

logger = logging.getLogger("vicimage.writer")


def _rank(comm: Any) -> int:
    return 0 if comm is None else comm.Get_rank()


def _require_open(nc_file: NcFile, what: str) -> None:
    if not nc_file.open:
        raise NotOpenError(f"{nc_file.fname}: cannot write {what}, file is not open")


def apply_mult(values: np.ndarray, mult: float) -> np.ndarray:
    """Scale values by `mult`, leaving MISSING entries untouched."""
    values = np.asarray(values, dtype=np.float64)
    if float(mult) == 1.0:
        return values
    return np.where(values == MISSING, MISSING, values * float(mult))


def write_cell_variable(nc_file: NcFile, nc_var: NcVar, local_values: Any, global_domain: Domain,
                        local_domain: Domain, comm: Any = None, time_idx: Optional[int] = None) -> None:
    """Gather one variable and write it as a single block."""
    if nc_var.nc_write is not WritePolicy.WRITE:
        return
    rank = _rank(comm)
    if rank == 0:
        _require_open(nc_file, nc_var.nc_var_name)
    if nc_var.has_time and time_idx is None:
        raise SchemaMismatchError(f"{nc_file.fname}:{nc_var.nc_var_name}: a time index is required")
    if not nc_var.has_time and time_idx is not None:
        raise SchemaMismatchError(f"{nc_file.fname}:{nc_var.nc_var_name}: variable has no time dimension")

    expected = (local_domain.ncells_local,) + nc_var.cell_shape
    values = np.asarray(local_values, dtype=np.float64)
    if values.shape != expected:
        raise ShapeError(
            f"{nc_file.fname}:{nc_var.nc_var_name}: local buffer has shape {values.shape}, expected {expected}"
        )
    full = gather_cells_to_rank0(comm, local_domain, apply_mult(values, nc_var.mult))
    if rank != 0:
        return

    grid = cells_to_grid(global_domain, full, fill=MISSING)
    start = [0] * nc_var.nc_dims
    if nc_var.has_time:
        start[0] = int(time_idx)
        grid = grid[None, ...]
    put_nc_field(
        nc_file,
        nc_var.nc_type,
        nc_file.fillvalue_for(nc_var.nc_type),
        nc_var.nc_dimids,
        nc_var.nc_dims,
        nc_var.nc_var_name,
        start,
        nc_var.nc_counts,
        grid,
    )


def write_history_step(nc_file: NcFile, nc_vars: Sequence[NcVar], values: Mapping[str, Any], global_domain: Domain,
                       local_domain: Domain, time_idx: int, comm: Any = None) -> None:
    """Write one history record for every written variable."""
    for nc_var in nc_vars:
        if nc_var.nc_write is not WritePolicy.WRITE:
            continue
        if nc_var.nc_var_name not in values:
            raise VariableNotFoundError(f"No values supplied for history variable '{nc_var.nc_var_name}'")
        write_cell_variable(nc_file, nc_var, values[nc_var.nc_var_name], global_domain, local_domain,
                            comm=comm, time_idx=time_idx)
    if _rank(comm) == 0:
        nc_file.sync()
        logger.debug("%s: wrote record %d", nc_file.fname, time_idx)


def write_state_file(nc_file: NcFile, nc_vars: Sequence[NcVar], values: Mapping[str, Any], global_domain: Domain,
                     local_domain: Domain, comm: Any = None) -> None:
    """Write the end-of-run state snapshot."""
    for nc_var in nc_vars:
        if nc_var.nc_write is not WritePolicy.WRITE:
            continue
        if nc_var.nc_var_name not in values:
            raise VariableNotFoundError(f"No values supplied for state variable '{nc_var.nc_var_name}'")
        write_cell_variable(nc_file, nc_var, values[nc_var.nc_var_name], global_domain, local_domain, comm=comm)
    if _rank(comm) == 0:
        nc_file.sync()
        logger.info("State written to %s (%d variables)", nc_file.fname, len(nc_vars))


def write_time(nc_file: NcFile, time_idx: int, value: float, units: str = TIME_UNITS) -> None:
    """Write the time coordinate of record `time_idx`."""
    _require_open(nc_file, "time")
    dimid = nc_file.dimid(DimensionKind.TIME)
    put_nc_field_double(nc_file, nc_file.d_fillvalue, [dimid], 1, "time", [int(time_idx)], [1], [float(value)])
    var = nc_file.nc_id.variables["time"]
    if "units" not in var.ncattrs():
        var.setncatts({"units": units, "long_name": "time", "standard_name": "time"})


def write_coordinates(nc_file: NcFile, global_domain: Domain) -> None:
    """Write lat/lon/mask grids of the global domain."""
    _require_open(nc_file, "coordinates")
    dimids = [nc_file.dimid(DimensionKind.NJ), nc_file.dimid(DimensionKind.NI)]
    shape = [global_domain.n_ny, global_domain.n_nx]
    lat = cells_to_grid(global_domain, np.array([loc.latitude for loc in global_domain.locations]))
    lon = cells_to_grid(global_domain, np.array([loc.longitude for loc in global_domain.locations]))
    mask = cells_to_grid(global_domain, np.ones(global_domain.ncells_global, dtype=np.int32), fill=0)
    put_nc_field_double(nc_file, nc_file.d_fillvalue, dimids, 2, "lat", [0, 0], shape, lat)
    put_nc_field_double(nc_file, nc_file.d_fillvalue, dimids, 2, "lon", [0, 0], shape, lon)
    put_nc_field_int(nc_file, nc_file.i_fillvalue, dimids, 2, "mask", [0, 0], shape, mask)
    ds = nc_file.nc_id
    ds.variables["lat"].setncatts({"long_name": "latitude", "units": "degrees_north"})
    ds.variables["lon"].setncatts({"long_name": "longitude", "units": "degrees_east"})
    ds.variables["mask"].setncatts({"long_name": "active cell mask", "units": "1"})


def read_state_field(nc_name: str, var_name: str, global_domain: Domain, local_domain: Domain,
                     comm: Any = None) -> np.ndarray:
    """Read a (..., nj, ni) state field and return (ncells_local, ...) values.

    File fill values come back as MISSING.
    """
    cells = None
    if _rank(comm) == 0:
        shape = get_nc_var_shape(nc_name, var_name)
        if shape[-2:] != (global_domain.n_ny, global_domain.n_nx):
            raise ShapeError(
                f"{nc_name}:{var_name}: shape {shape} does not end with ({global_domain.n_ny}, {global_domain.n_nx})"
            )
        grid = get_nc_field_double(nc_name, var_name, [0] * len(shape), list(shape))
        fill = get_nc_fill_value(nc_name, var_name)
        if fill is not None:
            grid = np.where(grid == float(fill), MISSING, grid)
        cells = grid_to_cells(global_domain, grid)
    return scatter_cells_from_rank0(comm, local_domain, cells)


def read_state_file(nc_name: str, var_names: Sequence[str], global_domain: Domain, local_domain: Domain,
                    comm: Any = None) -> Dict[str, np.ndarray]:
    """Restore every listed state variable for the local cells."""
    return {name: read_state_field(nc_name, name, global_domain, local_domain, comm=comm) for name in var_names}
