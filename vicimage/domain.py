# -*- coding: utf-8 -*-
"""Global and local domains of active grid cells.

The global domain lists every active cell of the `nj x ni` grid in row-major
order (y outer, x inner), numbered from 0. A local domain keeps the cells
owned by one process, in the same relative order, and shares the grid shape
of the global domain.
"""

from __future__ import annotations

# Import dataclass helpers.
from dataclasses import dataclass, field
from functools import cached_property

# Import typing primitives.
from typing import Any, Dict, Optional, Sequence, Tuple

# Import logging.
import logging

# Import numpy.
import numpy as np

# Import local helpers.
from .errors import DomainIntegrityError
from .location import MISSING, Location, print_location
from .nc_io import get_nc_dimension, get_nc_field_double, get_nc_fill_value, get_nc_var_shape, has_nc_variable

logger = logging.getLogger("vicimage.domain")


@dataclass(frozen=True)
class Domain:
    """Active cells for one scope ('global' or 'local')."""

    ncells_global: int = 0
    n_nx: int = 0
    n_ny: int = 0
    ncells_local: int = 0
    locations: Tuple[Location, ...] = field(default_factory=tuple)
    scope: str = "global"

    @cached_property
    def global_cell_idx(self) -> np.ndarray:
        """Global flattened index of each cell in this scope."""
        return np.array([loc.global_cell_idx for loc in self.locations], dtype=np.int64)

    @cached_property
    def x_idx(self) -> np.ndarray:
        """Grid column of each cell."""
        return np.array([loc.global_x_idx for loc in self.locations], dtype=np.int64)

    @cached_property
    def y_idx(self) -> np.ndarray:
        """Grid row of each cell."""
        return np.array([loc.global_y_idx for loc in self.locations], dtype=np.int64)

    @cached_property
    def grid_idx(self) -> np.ndarray:
        """Flat full-grid index (y * n_nx + x) of each cell."""
        return self.y_idx * int(self.n_nx) + self.x_idx


def initialize_domain(scope: str = "global") -> Domain:
    """Return an empty Domain (zero counts, no locations)."""
    return Domain(scope=scope)


def _cell_value(arr: Optional[np.ndarray], y: int, x: int, axis: str) -> float:
    """Pick a per-cell value from a 2D field or a 1D axis vector."""
    if arr is None:
        return MISSING
    if arr.ndim == 2:
        return float(arr[y, x])
    return float(arr[y] if axis == "y" else arr[x])


def build_domain_from_mask(mask: np.ndarray, frac: Optional[np.ndarray] = None, area: Optional[np.ndarray] = None,
                           lat: Optional[np.ndarray] = None, lon: Optional[np.ndarray] = None) -> Tuple[Domain, int]:
    """Build the global domain from an in-memory (n_ny, n_nx) mask."""
    mask = np.asarray(mask)
    if mask.ndim != 2:
        raise DomainIntegrityError(f"Activity mask must be 2-D (nj, ni); got shape {mask.shape}")
    n_ny, n_nx = (int(n) for n in mask.shape)
    if n_ny <= 0 or n_nx <= 0:
        raise DomainIntegrityError(f"Grid sizes must be positive; got n_ny={n_ny}, n_nx={n_nx}")

    active = np.isfinite(mask) & (mask != 0) if mask.dtype.kind == "f" else mask != 0
    if frac is not None:
        frac = np.asarray(frac, dtype=np.float64)
        if frac.shape != mask.shape:
            raise DomainIntegrityError(f"frac shape {frac.shape} does not match mask shape {mask.shape}")
        active &= np.isfinite(frac) & (frac > 0.0)

    # np.nonzero walks the array in C (row-major) order.
    ys, xs = np.nonzero(active)
    count = int(ys.size)
    if count == 0:
        raise DomainIntegrityError(f"Activity mask ({n_ny}x{n_nx}) declares no active cells")

    lat_arr = None if lat is None else np.asarray(lat, dtype=np.float64)
    lon_arr = None if lon is None else np.asarray(lon, dtype=np.float64)
    area_arr = None if area is None else np.asarray(area, dtype=np.float64)

    locations = []
    for j, (y, x) in enumerate(zip(ys.tolist(), xs.tolist())):
        locations.append(Location(
            latitude=_cell_value(lat_arr, y, x, "y"),
            longitude=_cell_value(lon_arr, y, x, "x"),
            area=_cell_value(area_arr, y, x, "y"),
            frac=float(frac[y, x]) if frac is not None else 1.0,
            global_cell_idx=j,
            global_x_idx=x,
            global_y_idx=y,
            local_cell_idx=j,
            local_x_idx=x,
            local_y_idx=y,
        ))

    domain = Domain(
        ncells_global=count,
        n_nx=n_nx,
        n_ny=n_ny,
        ncells_local=count,
        locations=tuple(locations),
        scope="global",
    )
    return domain, count


def cell_area_from_coords(lat: np.ndarray, lon: np.ndarray) -> Optional[np.ndarray]:
    """Estimate per-cell area (m2) on WGS84 from 1-D lat/lon centres.

    Returns None when the spacing cannot be derived (fewer than two points on
    an axis).
    """
    # Geod is only needed when the domain file carries no area field.
    from pyproj import Geod

    y = np.asarray(lat, dtype=np.float64)
    x = np.asarray(lon, dtype=np.float64)
    if y.size < 2 or x.size < 2:
        return None
    # Estimate spacings robustly via median.
    dx = float(np.median(np.abs(np.diff(x))))
    dy = float(np.median(np.abs(np.diff(y))))
    geod = Geod(ellps="WGS84")
    areas_row = np.zeros(y.size, dtype=np.float64)
    for i in range(y.size):
        lat_top = float(y[i] + 0.5 * dy)
        lat_bot = float(y[i] - 0.5 * dy)
        lons = [0.0, dx, dx, 0.0]
        lats = [lat_top, lat_top, lat_bot, lat_bot]
        poly_area, _ = geod.polygon_area_perimeter(lons, lats)
        areas_row[i] = abs(poly_area)
    return np.repeat(areas_row[:, None], x.size, axis=1)


def _read_coord(fname: str, var_name: str, n_ny: int, n_nx: int) -> Optional[np.ndarray]:
    """Read a 1-D or 2-D coordinate/field if present."""
    if not var_name or not has_nc_variable(fname, var_name):
        return None
    shape = get_nc_var_shape(fname, var_name)
    if shape not in ((n_ny, n_nx), (n_ny,), (n_nx,)):
        raise DomainIntegrityError(
            f"{fname}: '{var_name}' has shape {shape}, expected ({n_ny}, {n_nx}) or a 1-D axis"
        )
    return get_nc_field_double(fname, var_name, [0] * len(shape), list(shape))


def _read_activity_field(fname: str, var_name: str, n_ny: int, n_nx: int) -> np.ndarray:
    """Read a mask/frac field as float64 with _FillValue cells set to 0 (inactive)."""
    values = get_nc_field_double(fname, var_name, [0, 0], [n_ny, n_nx])
    fill = get_nc_fill_value(fname, var_name)
    if fill is not None:
        values[values == float(fill)] = 0.0
    return values


def get_global_domain(fname: str, dom_cfg: Optional[Dict[str, Any]] = None) -> Tuple[Domain, int]:
    """Read the global domain from a domain NetCDF file.

    Returns the domain and the number of active cells.
    """
    dom_cfg = dom_cfg or {}
    varmap = dom_cfg.get("varmap", {})
    dims = dom_cfg.get("dims", {})
    x_dim = dims.get("x", "ni")
    y_dim = dims.get("y", "nj")

    n_ny = get_nc_dimension(fname, y_dim)
    n_nx = get_nc_dimension(fname, x_dim)
    if n_ny <= 0 or n_nx <= 0:
        raise DomainIntegrityError(f"{fname}: grid sizes must be positive; got {y_dim}={n_ny}, {x_dim}={n_nx}")

    # Masks may be stored as integer flags or as fractional cover.
    mask = _read_activity_field(fname, varmap.get("mask", "mask"), n_ny, n_nx)

    frac = None
    frac_name = varmap.get("frac", "frac")
    if has_nc_variable(fname, frac_name):
        frac = _read_activity_field(fname, frac_name, n_ny, n_nx)

    lat = _read_coord(fname, varmap.get("lat", "lat"), n_ny, n_nx)
    lon = _read_coord(fname, varmap.get("lon", "lon"), n_ny, n_nx)

    area = None
    area_name = varmap.get("area", "area")
    if has_nc_variable(fname, area_name):
        area = get_nc_field_double(fname, area_name, [0, 0], [n_ny, n_nx])
    elif lat is not None and lon is not None:
        lat_axis = lat[:, 0] if lat.ndim == 2 else lat
        lon_axis = lon[0, :] if lon.ndim == 2 else lon
        area = cell_area_from_coords(lat_axis, lon_axis)
        logger.debug("No '%s' variable in %s; derived cell areas from coordinate spacing", area_name, fname)

    domain, count = build_domain_from_mask(mask, frac=frac, area=area, lat=lat, lon=lon)
    logger.info("Global domain %s: %d active cells on %dx%d grid", fname, count, n_ny, n_nx)
    return domain, count


def get_local_domain(global_domain: Domain, owners: Sequence[int], rank: int) -> Domain:
    """Restrict the global domain to the cells owned by `rank`."""
    owners = np.asarray(owners, dtype=np.int64)
    if owners.shape != (global_domain.ncells_global,):
        raise DomainIntegrityError(
            f"Owner map has shape {owners.shape}, expected ({global_domain.ncells_global},)"
        )
    owned = np.flatnonzero(owners == int(rank))
    locations = tuple(
        global_domain.locations[int(g)].with_local_indices(j) for j, g in enumerate(owned.tolist())
    )
    return Domain(
        ncells_global=global_domain.ncells_global,
        n_nx=global_domain.n_nx,
        n_ny=global_domain.n_ny,
        ncells_local=len(locations),
        locations=locations,
        scope="local",
    )


def check_local_domain(global_domain: Domain, local_domain: Domain) -> None:
    """Raise DomainIntegrityError unless `local_domain` is a subset of `global_domain`."""
    if (local_domain.n_nx, local_domain.n_ny) != (global_domain.n_nx, global_domain.n_ny):
        raise DomainIntegrityError(
            f"Local grid {local_domain.n_ny}x{local_domain.n_nx} differs from global "
            f"{global_domain.n_ny}x{global_domain.n_nx}"
        )
    if local_domain.ncells_local > global_domain.ncells_global:
        raise DomainIntegrityError(
            f"ncells_local={local_domain.ncells_local} exceeds ncells_global={global_domain.ncells_global}"
        )
    for loc in local_domain.locations:
        g = loc.global_cell_idx
        if g < 0 or g >= global_domain.ncells_global:
            raise DomainIntegrityError(f"Local cell {loc.local_cell_idx} has invalid global index {g}")
        ref = global_domain.locations[g]
        if (ref.global_x_idx, ref.global_y_idx) != (loc.global_x_idx, loc.global_y_idx):
            raise DomainIntegrityError(
                f"Local cell {loc.local_cell_idx} (x={loc.global_x_idx}, y={loc.global_y_idx}) does not match "
                f"global cell {g} (x={ref.global_x_idx}, y={ref.global_y_idx})"
            )


def get_global_idx(domain: Domain, i: int) -> int:
    """Return the global flattened index of local position `i`."""
    if i < 0 or i >= domain.ncells_local:
        raise IndexError(f"Cell position {i} outside domain of {domain.ncells_local} cells")
    return domain.locations[i].global_cell_idx


def get_grid_idx(domain: Domain, i: int) -> int:
    """Return the full-grid flat index (y * n_nx + x) of local position `i`."""
    if i < 0 or i >= domain.ncells_local:
        raise IndexError(f"Cell position {i} outside domain of {domain.ncells_local} cells")
    loc = domain.locations[i]
    return loc.global_y_idx * domain.n_nx + loc.global_x_idx


def cells_to_grid(domain: Domain, values: np.ndarray, fill: Any = MISSING) -> np.ndarray:
    """Scatter (ncells, ...) values onto a (..., n_ny, n_nx) grid."""
    values = np.asarray(values)
    if values.shape[:1] != (len(domain.locations),):
        raise DomainIntegrityError(
            f"Expected {len(domain.locations)} cell values on the leading axis, got shape {values.shape}"
        )
    extra = values.shape[1:]
    grid = np.full(extra + (domain.n_ny, domain.n_nx), fill, dtype=np.result_type(values.dtype, np.asarray(fill).dtype))
    grid[..., domain.y_idx, domain.x_idx] = np.moveaxis(values, 0, -1)
    return grid


def grid_to_cells(domain: Domain, grid: np.ndarray) -> np.ndarray:
    """Gather (..., n_ny, n_nx) grid values into (ncells, ...) cell order."""
    grid = np.asarray(grid)
    if grid.shape[-2:] != (domain.n_ny, domain.n_nx):
        raise DomainIntegrityError(
            f"Grid shape {grid.shape} does not end with ({domain.n_ny}, {domain.n_nx})"
        )
    return np.moveaxis(grid[..., domain.y_idx, domain.x_idx], -1, 0)


def print_domain(domain: Domain, print_loc: bool = False) -> None:
    """Log a domain summary and, optionally, every location."""
    logger.info("domain (%s):", domain.scope)
    logger.info("  ncells_global: %d", domain.ncells_global)
    logger.info("  n_nx         : %d", domain.n_nx)
    logger.info("  n_ny         : %d", domain.n_ny)
    logger.info("  ncells_local : %d", domain.ncells_local)
    if print_loc:
        for loc in domain.locations:
            print_location(loc)


_FLOAT_FIELDS = ("latitude", "longitude", "area", "frac")
_INT_FIELDS = ("global_cell_idx", "global_x_idx", "global_y_idx", "local_cell_idx", "local_x_idx", "local_y_idx")


def bcast_domain(comm, dom0: Optional[Domain]) -> Domain:
    """Broadcast a Domain from rank0 to all ranks."""
    rank = comm.Get_rank()

    # Prepare metadata dict on root.
    if rank == 0:
        meta = {
            "ncells_global": dom0.ncells_global,
            "n_nx": dom0.n_nx,
            "n_ny": dom0.n_ny,
            "ncells_local": dom0.ncells_local,
            "nloc": len(dom0.locations),
            "scope": dom0.scope,
        }
    else:
        meta = None
    meta = comm.bcast(meta, root=0)
    nloc = int(meta["nloc"])

    # Location fields travel as two dense arrays.
    if rank == 0:
        fvals = np.array([[getattr(loc, f) for f in _FLOAT_FIELDS] for loc in dom0.locations],
                         dtype=np.float64).reshape(nloc, len(_FLOAT_FIELDS))
        ivals = np.array([[getattr(loc, f) for f in _INT_FIELDS] for loc in dom0.locations],
                         dtype=np.int64).reshape(nloc, len(_INT_FIELDS))
    else:
        fvals = np.empty((nloc, len(_FLOAT_FIELDS)), dtype=np.float64)
        ivals = np.empty((nloc, len(_INT_FIELDS)), dtype=np.int64)
    comm.Bcast(fvals, root=0)
    comm.Bcast(ivals, root=0)

    if rank == 0:
        return dom0
    locations = tuple(
        Location(**{f: float(v) for f, v in zip(_FLOAT_FIELDS, frow)},
                 **{f: int(v) for f, v in zip(_INT_FIELDS, irow)})
        for frow, irow in zip(fvals.tolist(), ivals.tolist())
    )
    return Domain(
        ncells_global=int(meta["ncells_global"]),
        n_nx=int(meta["n_nx"]),
        n_ny=int(meta["n_ny"]),
        ncells_local=int(meta["ncells_local"]),
        locations=locations,
        scope=str(meta["scope"]),
    )
