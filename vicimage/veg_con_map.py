# -*- coding: utf-8 -*-
"""Per-cell mapping of vegetation tiles onto a regular class array."""

from __future__ import annotations

# Import dataclass for the map record.
from dataclasses import dataclass

# Import stdlib helpers.
import logging
from typing import List, Optional, Sequence

# Import numpy.
import numpy as np

# Import local helpers.
from .domain import Domain, grid_to_cells
from .errors import ParameterError
from .nc_io import get_nc_field_double, get_nc_var_shape

logger = logging.getLogger("vicimage.veg_con_map")

# Tolerance on the sum of fractional coverages.
CV_SUM_TOLERANCE = 1e-6


@dataclass
class VegConMap:
    """Vegetation classes of one cell.

    `nv_active` counts the vegetated tiles plus bare soil, plus one more when
    the treeline option is active. `vidx[j]` is the tile index of class `j`,
    or -1 when the class is absent from the cell.
    """

    nv_types: int
    nv_active: int
    vidx: np.ndarray
    Cv: np.ndarray

    def validate(self, tol: float = CV_SUM_TOLERANCE) -> None:
        """Raise ParameterError if the map is inconsistent."""
        if self.vidx.shape != (self.nv_types,) or self.Cv.shape != (self.nv_types,):
            raise ParameterError(
                f"vidx/Cv must have {self.nv_types} entries; got {self.vidx.shape} and {self.Cv.shape}"
            )
        if self.nv_active > self.nv_types:
            raise ParameterError(f"nv_active={self.nv_active} exceeds nv_types={self.nv_types}")
        if np.any(self.Cv < 0.0):
            raise ParameterError(f"negative vegetation coverage in Cv={self.Cv.tolist()}")
        total = float(np.sum(self.Cv))
        if abs(total - 1.0) > tol:
            raise ParameterError(f"vegetation coverage sums to {total:.9f}, expected 1 (tolerance {tol:g})")


def veg_con_map_from_cover(cv: Sequence[float], nv_types: Optional[int] = None,
                           treeline: bool = False) -> VegConMap:
    """Build a map from per-class coverage fractions (0 = class absent)."""
    cover = np.asarray(cv, dtype=np.float64).ravel()
    ntypes = int(nv_types) if nv_types is not None else int(cover.size)
    if cover.size > ntypes:
        raise ParameterError(f"{cover.size} coverage entries for only {ntypes} vegetation types")
    Cv = np.zeros(ntypes, dtype=np.float64)
    Cv[: cover.size] = cover
    vidx = np.full(ntypes, -1, dtype=np.int32)
    present = np.flatnonzero(Cv > 0.0)
    vidx[present] = np.arange(present.size, dtype=np.int32)
    nv_active = int(present.size) + 1 + (1 if treeline else 0)
    return VegConMap(nv_types=ntypes, nv_active=nv_active, vidx=vidx, Cv=Cv)


def read_veg_con_maps(nc_name: str, domain: Domain, var_name: str = "Cv", treeline: bool = False,
                      validate: bool = True) -> List[VegConMap]:
    """Build one map per cell of `domain` from a (veg, nj, ni) coverage field."""
    shape = get_nc_var_shape(nc_name, var_name)
    if len(shape) != 3 or shape[1:] != (domain.n_ny, domain.n_nx):
        raise ParameterError(
            f"{nc_name}:{var_name} has shape {shape}, expected (veg, {domain.n_ny}, {domain.n_nx})"
        )
    grid = get_nc_field_double(nc_name, var_name, [0, 0, 0], list(shape))
    cells = grid_to_cells(domain, grid)
    maps = []
    for loc, cv in zip(domain.locations, cells):
        vmap = veg_con_map_from_cover(cv, nv_types=shape[0], treeline=treeline)
        if validate:
            try:
                vmap.validate()
            except ParameterError as exc:
                raise ParameterError(
                    f"{nc_name}: cell {loc.global_cell_idx} (y={loc.global_y_idx}, x={loc.global_x_idx}): {exc}"
                ) from exc
        maps.append(vmap)
    return maps


def print_veg_con_map(vmap: VegConMap) -> None:
    """Log one vegetation map."""
    logger.info("veg_con_map: nv_types=%d nv_active=%d", vmap.nv_types, vmap.nv_active)
    for j in range(vmap.nv_types):
        logger.info("  class %2d: vidx=%3d Cv=%.4f", j, int(vmap.vidx[j]), float(vmap.Cv[j]))
