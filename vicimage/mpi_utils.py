# -*- coding: utf-8 -*-
"""MPI utilities for vicimage.

This module provides:
- MPI initialization (optional)
- cell ownership policies (contiguous, round-robin, row slabs, explicit map)
- gather/scatter of per-cell fields between local domains and rank0
"""

# Import typing primitives.
from typing import Any, List, Optional, Sequence, Tuple

# Import dataclass for structured configs.
from dataclasses import dataclass

# Import sys for optional early exits when MPI is disabled explicitly.
import sys

# Import numpy for counts/displacements arrays.
import numpy as np

# Import local helpers.
from .domain import Domain
from .errors import ConfigurationError, DomainIntegrityError
from .location import MISSING


# Try importing mpi4py; allow serial fallback.
try:
    from mpi4py import MPI  # type: ignore
    HAVE_MPI = True
except ImportError:
    MPI = None  # type: ignore
    HAVE_MPI = False


PARTITION_POLICIES = ("contiguous", "round_robin", "rows", "owner_map")


@dataclass(frozen=True)
class MPIConfig:
    """User-facing MPI configuration resolved from JSON/CLI."""

    enabled: bool
    partition: str
    min_rows_per_rank: int

    @classmethod
    def from_dict(cls, cfg: dict, partition_cfg: Optional[dict] = None, world_size: int | None = None) -> "MPIConfig":
        """Build MPIConfig with safe defaults."""
        partition_cfg = partition_cfg or {}
        world = int(world_size) if world_size is not None else 1
        enabled_raw = cfg.get("enabled", None)
        enabled = bool(enabled_raw) if enabled_raw is not None else (HAVE_MPI and world > 1)
        # If mpi4py is missing, force-disable even if the user requested it.
        if enabled and not HAVE_MPI:
            enabled = False
        partition = str(partition_cfg.get("policy", "contiguous") or "contiguous").lower()
        if partition not in PARTITION_POLICIES:
            raise ConfigurationError(
                f"Unknown partition policy '{partition}' (expected one of {', '.join(PARTITION_POLICIES)})"
            )
        min_rows = max(1, int(partition_cfg.get("min_rows_per_rank", 1) or 1))
        return cls(enabled=enabled, partition=partition, min_rows_per_rank=min_rows)


def get_comm(force_disabled: bool = False) -> tuple[Any, int, int]:
    """Return (comm, rank, size) for MPI or serial, honoring an explicit disable flag."""
    # If MPI is unavailable or explicitly disabled, behave as serial.
    if force_disabled or not HAVE_MPI:
        return None, 0, 1
    comm = MPI.COMM_WORLD
    return comm, comm.Get_rank(), comm.Get_size()


def initialize_mpi(mpi_cfg: MPIConfig) -> tuple[Any, int, int, int, bool]:
    """Return (comm, rank, size, world_size, active) honoring user MPI preferences."""
    if not HAVE_MPI:
        return None, 0, 1, 1, False

    world = MPI.COMM_WORLD
    world_rank = world.Get_rank()
    world_size = world.Get_size()

    # Auto-disable when only one rank is present.
    if world_size == 1:
        return None, 0, 1, 1, False

    # Respect explicit disable requests even if launched under mpirun.
    if not mpi_cfg.enabled:
        if world_rank != 0:
            # Non-root ranks exit quietly so only rank0 proceeds in serial mode.
            MPI.Finalize()
            sys.exit(0)
        return None, 0, 1, world_size, False

    return world, world_rank, world_size, world_size, True


def slab_counts_starts(nrows: int, size: int) -> tuple[np.ndarray, np.ndarray]:
    """Compute even contiguous counts and starts for each rank."""
    # Start with floor division.
    counts = np.full(size, nrows // size, dtype=np.int64)
    # Distribute remainder to the first ranks.
    counts[: (nrows % size)] += 1
    # Compute starts as prefix sums of counts.
    starts = np.zeros(size, dtype=np.int64)
    starts[1:] = np.cumsum(counts[:-1])
    return counts, starts


def _balanced_row_counts(weights: np.ndarray, size: int, min_rows: int) -> tuple[np.ndarray, np.ndarray]:
    """Return (counts, starts) targeting equal cumulative weight per rank."""
    nrows = int(weights.size)
    # Do not allocate more slabs than rows.
    effective_size = min(size, nrows)
    # Guard against zero weights: treat them as 1 to keep partitions non-empty.
    safe_weights = np.where(weights <= 0.0, 1.0, weights).astype(np.float64)
    total = float(safe_weights.sum())
    target = total / max(1, effective_size)
    prefix = np.cumsum(safe_weights)
    boundaries: List[int] = []
    prev_start = 0

    for i in range(effective_size - 1):
        desired = target * float(i + 1)
        cut = int(np.searchsorted(prefix, desired, side="right"))
        # Enforce minimum rows on each side of the cut.
        cut = max(cut, prev_start + min_rows)
        remaining_rows = nrows - cut
        remaining_slots = effective_size - (i + 1)
        min_required = remaining_slots * min_rows
        if remaining_rows < min_required:
            cut = nrows - min_required
        boundaries.append(cut)
        prev_start = cut

    starts_eff = np.zeros(effective_size, dtype=np.int64)
    for i in range(1, effective_size):
        starts_eff[i] = int(boundaries[i - 1])
    counts_eff = np.zeros(effective_size, dtype=np.int64)
    for i in range(effective_size):
        end = boundaries[i] if i < len(boundaries) else nrows
        counts_eff[i] = max(0, end - int(starts_eff[i]))

    # Pad to full size (zero rows for unused ranks) to keep communicator alignment.
    if effective_size < size:
        pad = size - effective_size
        starts_eff = np.concatenate([starts_eff, np.full(pad, nrows, dtype=np.int64)])
        counts_eff = np.concatenate([counts_eff, np.zeros(pad, dtype=np.int64)])

    return counts_eff, starts_eff


def contiguous_owners(ncells: int, size: int) -> np.ndarray:
    """Assign balanced contiguous ranges of the global cell list to ranks."""
    counts, _ = slab_counts_starts(ncells, size)
    return np.repeat(np.arange(size, dtype=np.int64), counts)


def round_robin_owners(ncells: int, size: int) -> np.ndarray:
    """Deal cells to ranks in turn."""
    return np.arange(ncells, dtype=np.int64) % size


def row_slab_owners(domain: Domain, size: int, min_rows_per_rank: int = 1) -> np.ndarray:
    """Assign whole grid rows to ranks, balancing active cells per slab."""
    weights = np.bincount(domain.y_idx, minlength=domain.n_ny).astype(np.float64)
    counts, starts = _balanced_row_counts(weights=weights, size=size, min_rows=min_rows_per_rank)
    ends = starts + counts
    owners = np.searchsorted(ends, domain.y_idx, side="right").astype(np.int64)
    return np.minimum(owners, size - 1)


def build_owner_map(domain: Domain, size: int, policy: str = "contiguous",
                    owner_map: Optional[Sequence[int]] = None, min_rows_per_rank: int = 1) -> np.ndarray:
    """Return the owning rank of every global cell."""
    ncells = int(domain.ncells_global)
    if size <= 1:
        return np.zeros(ncells, dtype=np.int64)
    pol = (policy or "contiguous").lower().strip()
    if pol == "contiguous":
        return contiguous_owners(ncells, size)
    if pol == "round_robin":
        return round_robin_owners(ncells, size)
    if pol == "rows":
        return row_slab_owners(domain, size, min_rows_per_rank=min_rows_per_rank)
    if pol == "owner_map":
        if owner_map is None:
            raise ConfigurationError("partition.policy 'owner_map' requires partition.owner_map")
        owners = np.asarray(owner_map, dtype=np.int64)
        if owners.shape != (ncells,):
            raise DomainIntegrityError(f"owner_map has {owners.size} entries, expected {ncells}")
        bad = np.flatnonzero((owners < 0) | (owners >= size))
        if bad.size:
            raise DomainIntegrityError(
                f"owner_map assigns cell {int(bad[0])} to rank {int(owners[bad[0]])} outside [0, {size})"
            )
        return owners
    raise ConfigurationError(f"Unknown partition policy '{policy}'")


def _mpitype(dtype) -> Any:
    """Map a numpy dtype to its MPI datatype."""
    return MPI._typedict[np.dtype(dtype).char]


def _empty_cells(ncells: int, extra: Tuple[int, ...], dtype) -> np.ndarray:
    """Allocate a global cell buffer; cells nobody sends stay MISSING (or 0)."""
    fill = MISSING if np.dtype(dtype).kind == "f" else 0
    return np.full((int(ncells),) + tuple(extra), fill, dtype=dtype)


def gather_cells_to_rank0(comm, local_domain: Domain, values: np.ndarray) -> Optional[np.ndarray]:
    """Gather (ncells_local, ...) values into global cell order on rank0."""
    values = np.ascontiguousarray(values)
    extra = values.shape[1:]
    if comm is None or comm.Get_size() == 1:
        full = _empty_cells(local_domain.ncells_global, extra, values.dtype)
        full[local_domain.global_cell_idx] = values
        return full

    rank = comm.Get_rank()
    per_cell = int(np.prod(extra, dtype=np.int64))
    ncells = np.array(comm.allgather(int(local_domain.ncells_local)), dtype=np.int64)
    displs = np.zeros(ncells.size, dtype=np.int64)
    displs[1:] = np.cumsum(ncells[:-1])

    # Global indices first, then the payload with the same layout.
    idx_all = np.empty(int(ncells.sum()), dtype=np.int64) if rank == 0 else None
    comm.Gatherv(local_domain.global_cell_idx, [idx_all, ncells, displs, MPI.INT64_T], root=0)
    flat_all = np.empty(int(ncells.sum()) * per_cell, dtype=values.dtype) if rank == 0 else None
    comm.Gatherv(values.ravel(), [flat_all, ncells * per_cell, displs * per_cell, _mpitype(values.dtype)], root=0)

    if rank != 0:
        return None
    full = _empty_cells(local_domain.ncells_global, extra, values.dtype)
    full[idx_all] = flat_all.reshape((-1,) + extra)
    return full


def scatter_cells_from_rank0(comm, local_domain: Domain, full: Optional[np.ndarray]) -> np.ndarray:
    """Scatter (ncells_global, ...) values from rank0 to each local domain."""
    if comm is None or comm.Get_size() == 1:
        return np.asarray(full)[local_domain.global_cell_idx]

    rank = comm.Get_rank()
    meta: Optional[Tuple[Tuple[int, ...], str]] = None
    if rank == 0:
        arr = np.asarray(full)
        meta = (tuple(arr.shape[1:]), arr.dtype.str)
    extra, dtype_str = comm.bcast(meta, root=0)
    dtype = np.dtype(dtype_str)
    per_cell = int(np.prod(extra, dtype=np.int64))

    idx_by_rank = comm.gather(local_domain.global_cell_idx, root=0)
    ncells = np.array(comm.allgather(int(local_domain.ncells_local)), dtype=np.int64)
    displs = np.zeros(ncells.size, dtype=np.int64)
    displs[1:] = np.cumsum(ncells[:-1])

    if rank == 0:
        order = np.concatenate(idx_by_rank) if idx_by_rank else np.zeros(0, dtype=np.int64)
        sendbuf = np.ascontiguousarray(arr[order].astype(dtype, copy=False)).ravel()
    else:
        sendbuf = None
    local = np.empty((int(local_domain.ncells_local),) + tuple(extra), dtype=dtype)
    comm.Scatterv([sendbuf, ncells * per_cell, displs * per_cell, _mpitype(dtype)], local.ravel(), root=0)
    return local
