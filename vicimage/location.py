# -*- coding: utf-8 -*-
"""Per-cell location records (global and local indices)."""

# Import dataclass helpers for the immutable record.
from dataclasses import dataclass, replace

# Import logging.
import logging

logger = logging.getLogger("vicimage.location")

# Missing-value sentinel shared by coordinates and output buffers.
MISSING = -99999.0

# Unset index marker.
UNSET_IDX = -1


@dataclass(frozen=True)
class Location:
    """One active grid cell.

    The global indices give the position of the cell in the full grid and in
    the flattened list of globally active cells; the local indices give its
    position within the cells owned by the current process. On a single
    process both sets are identical.
    """

    latitude: float = MISSING
    longitude: float = MISSING
    area: float = MISSING
    frac: float = MISSING
    global_cell_idx: int = UNSET_IDX
    global_x_idx: int = UNSET_IDX
    global_y_idx: int = UNSET_IDX
    local_cell_idx: int = UNSET_IDX
    local_x_idx: int = UNSET_IDX
    local_y_idx: int = UNSET_IDX

    @property
    def is_set(self) -> bool:
        """Return True once the global indices have been populated."""
        return self.global_cell_idx != UNSET_IDX

    def with_local_indices(self, local_cell_idx: int) -> "Location":
        """Return a copy placed at `local_cell_idx` in a local domain."""
        # The grid shape is shared by all scopes, so x/y carry over unchanged.
        return replace(
            self,
            local_cell_idx=int(local_cell_idx),
            local_x_idx=self.global_x_idx,
            local_y_idx=self.global_y_idx,
        )


def initialize_location() -> Location:
    """Return a Location with every field set to its unset sentinel."""
    return Location()


def sprint_location(loc: Location) -> str:
    """Render a Location on one fixed-width line."""
    return (
        f"lat:{loc.latitude:10.4f} lon:{loc.longitude:10.4f} "
        f"area:{loc.area:14.4f} frac:{loc.frac:8.4f} "
        f"gidx:{loc.global_cell_idx:d} gx:{loc.global_x_idx:d} gy:{loc.global_y_idx:d} "
        f"lidx:{loc.local_cell_idx:d} lx:{loc.local_x_idx:d} ly:{loc.local_y_idx:d}"
    )


def print_location(loc: Location) -> None:
    """Log a Location at INFO level."""
    logger.info("location %s", sprint_location(loc))
