# -*- coding: utf-8 -*-
"""Output file handles (history and state) and their lifecycle.

A handle moves through CLOSED -> OPENING -> DIMENSIONED -> OPEN -> CLOSED.
Dimension sizes are frozen when the file is opened; a size of 0 means the
dimension kind is not used by this run and is not declared in the file.
"""

from __future__ import annotations

# Import stdlib helpers.
import logging
import os
from enum import Enum
from typing import Any, Dict, Mapping, Optional

# Import netCDF4 for incremental writes on an open dataset.
import netCDF4

# Import local helpers.
from .errors import ConfigurationError, DoubleOpenError, IoError, SchemaMismatchError
from .nc_io import STORAGE_DTYPES, storage_dtype

logger = logging.getLogger("vicimage.nc_file")


class DimensionKind(str, Enum):
    """Fixed dimension vocabulary shared by history and state files."""

    TIME = "time"
    NJ = "nj"
    NI = "ni"
    VEG = "veg"
    LAYER = "layer"
    NODE = "node"
    BAND = "band"
    FRONT = "front"
    FROST = "frost"
    ROOT_ZONE = "root_zone"


class FileState(str, Enum):
    """Lifecycle states of an NcFile."""

    CLOSED = "closed"
    OPENING = "opening"
    DIMENSIONED = "dimensioned"
    OPEN = "open"


# Physical files currently held open, keyed by absolute path.
_OPEN_FILES: Dict[str, "NcFile"] = {}


def _dimension_kind(key: Any) -> DimensionKind:
    """Resolve a DimensionKind from an enum member or its name."""
    try:
        return DimensionKind(key.value if isinstance(key, DimensionKind) else str(key))
    except ValueError:
        raise SchemaMismatchError(f"Unknown dimension kind '{key}'") from None


class NcFile:
    """Handle for one structured output file."""

    def __init__(self, fname: str = "") -> None:
        self.fname = str(fname)
        self.c_fillvalue = int(netCDF4.default_fillvals["i1"])
        self.i_fillvalue = int(netCDF4.default_fillvals["i4"])
        self.f_fillvalue = float(netCDF4.default_fillvals["f4"])
        self.d_fillvalue = float(netCDF4.default_fillvals["f8"])
        self.nc_id: Optional[netCDF4.Dataset] = None
        self.dimids: Dict[DimensionKind, Optional[str]] = {k: None for k in DimensionKind}
        self.sizes: Dict[DimensionKind, int] = {k: 0 for k in DimensionKind}
        self.state = FileState.CLOSED
        self._registry_key: Optional[str] = None

    @property
    def open(self) -> bool:
        """True while the handle accepts writes."""
        return self.state is FileState.OPEN

    def fillvalue_for(self, nc_type: str) -> Any:
        """Return the fill value declared for a storage type."""
        kind = str(nc_type).lower()
        storage_dtype(kind)
        return {
            "char": self.c_fillvalue,
            "int": self.i_fillvalue,
            "float": self.f_fillvalue,
            "double": self.d_fillvalue,
        }[kind]

    def set_fillvalues(self, fill_values: Mapping[str, Any]) -> None:
        """Override per-type fill values (only allowed while closed)."""
        if self.state is not FileState.CLOSED:
            raise DoubleOpenError(f"{self.fname}: fill values are frozen once the file is opened")
        for key, value in fill_values.items():
            kind = str(key).lower()
            if kind not in STORAGE_DTYPES:
                raise ConfigurationError(f"Unknown storage type '{key}' in fill values")
            if kind == "char":
                self.c_fillvalue = int(value)
            elif kind == "int":
                self.i_fillvalue = int(value)
            elif kind == "float":
                self.f_fillvalue = float(value)
            else:
                self.d_fillvalue = float(value)

    def set_sizes(self, sizes: Mapping[Any, int]) -> None:
        """Set dimension sizes (only allowed while closed)."""
        if self.state is not FileState.CLOSED:
            raise DoubleOpenError(f"{self.fname}: dimension sizes are frozen once the file is opened")
        for key, value in sizes.items():
            kind = _dimension_kind(key)
            size = int(value or 0)
            if size < 0:
                raise SchemaMismatchError(f"{self.fname}: negative size {size} for dimension '{kind.value}'")
            self.sizes[kind] = size

    def has_dimension(self, kind: Any) -> bool:
        """Return True if `kind` is declared on the open file."""
        return self.dimids[_dimension_kind(kind)] is not None

    def dimid(self, kind: Any) -> str:
        """Return the file dimension name for `kind`."""
        k = _dimension_kind(kind)
        name = self.dimids[k]
        if name is None:
            raise SchemaMismatchError(f"{self.fname}: dimension '{k.value}' was not declared (size 0)")
        return name

    def dimension_size(self, kind: Any) -> int:
        """Return the declared size for `kind` (0 when unused)."""
        return self.sizes[_dimension_kind(kind)]

    def open_for_write(self, path: Optional[str] = None, sizes: Optional[Mapping[Any, int]] = None,
                       attrs: Optional[Mapping[str, Any]] = None) -> None:
        """Create/truncate the file and declare its dimensions."""
        if self.state is not FileState.CLOSED:
            raise DoubleOpenError(f"{self.fname}: handle is already {self.state.value}")
        if path is not None:
            self.fname = str(path)
        if not self.fname:
            raise ConfigurationError("Cannot open an NcFile without a file name")
        key = os.path.abspath(self.fname)
        if key in _OPEN_FILES:
            raise DoubleOpenError(f"{self.fname}: file is already open through another handle")
        if sizes is not None:
            self.set_sizes(sizes)

        self.state = FileState.OPENING
        try:
            ds = netCDF4.Dataset(self.fname, "w", format="NETCDF4")
        except (OSError, RuntimeError) as exc:
            self.state = FileState.CLOSED
            raise IoError(f"Cannot create '{self.fname}': {exc}") from exc

        try:
            for kind in DimensionKind:
                size = self.sizes[kind]
                if size > 0:
                    ds.createDimension(kind.value, size)
                    self.dimids[kind] = kind.value
                else:
                    self.dimids[kind] = None
            if attrs:
                ds.setncatts(dict(attrs))
        except (OSError, RuntimeError, ValueError) as exc:
            ds.close()
            self.dimids = {k: None for k in DimensionKind}
            self.state = FileState.CLOSED
            raise IoError(f"Cannot declare dimensions in '{self.fname}': {exc}") from exc
        self.state = FileState.DIMENSIONED

        self.nc_id = ds
        self._registry_key = key
        _OPEN_FILES[key] = self
        self.state = FileState.OPEN
        logger.debug("Opened %s with dimensions %s", self.fname,
                     {k.value: v for k, v in self.sizes.items() if v > 0})

    def sync(self) -> None:
        """Flush pending writes to disk."""
        if self.open:
            self.nc_id.sync()

    def close(self) -> None:
        """Flush and close; a no-op when the handle is not open."""
        if self.nc_id is None:
            self.state = FileState.CLOSED
            return
        ds = self.nc_id
        self.nc_id = None
        self.state = FileState.CLOSED
        _OPEN_FILES.pop(self._registry_key or os.path.abspath(self.fname), None)
        self._registry_key = None
        try:
            ds.close()
        except (OSError, RuntimeError) as exc:
            raise IoError(f"Error closing '{self.fname}': {exc}") from exc
        logger.debug("Closed %s", self.fname)

    def __enter__(self) -> "NcFile":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


def dimension_sizes_from_config(cfg: Dict[str, Any], domain: Any, with_time: bool) -> Dict[DimensionKind, int]:
    """Derive the per-kind dimension sizes for a run."""
    opts = cfg.get("options", {})
    nrec = int(cfg.get("output", {}).get("nrec", 1)) if with_time else 0
    return {
        DimensionKind.TIME: nrec,
        DimensionKind.NJ: int(domain.n_ny),
        DimensionKind.NI: int(domain.n_nx),
        DimensionKind.VEG: int(opts.get("nveg", 0)),
        DimensionKind.LAYER: int(opts.get("nlayer", 0)),
        DimensionKind.NODE: int(opts.get("nnode", 0)),
        DimensionKind.BAND: int(opts.get("snow_band", 0)),
        DimensionKind.FRONT: int(opts.get("nfront", 0)),
        DimensionKind.FROST: int(opts.get("nfrost", 0)),
        DimensionKind.ROOT_ZONE: int(opts.get("root_zones", 0)),
    }


def _require_closed(nc: NcFile) -> None:
    if nc.state is not FileState.CLOSED:
        raise DoubleOpenError(f"{nc.fname}: cannot re-initialize a handle that is {nc.state.value}")


def initialize_history_file(nc: NcFile, cfg: Dict[str, Any], domain: Any) -> NcFile:
    """Prepare a closed handle for the history file."""
    _require_closed(nc)
    out_cfg = cfg.get("output", {})
    nc.fname = str(out_cfg.get("history_nc", nc.fname))
    nc.set_fillvalues(out_cfg.get("fill_values", {}) or {})
    nc.set_sizes(dimension_sizes_from_config(cfg, domain, with_time=True))
    return nc


def initialize_state_file(nc: NcFile, cfg: Dict[str, Any], domain: Any) -> NcFile:
    """Prepare a closed handle for the state file (no time dimension)."""
    _require_closed(nc)
    nc.fname = str(cfg.get("state", {}).get("state_nc", nc.fname))
    nc.set_fillvalues(cfg.get("output", {}).get("fill_values", {}) or {})
    nc.set_sizes(dimension_sizes_from_config(cfg, domain, with_time=False))
    return nc


def open_files() -> list[NcFile]:
    """Return the handles currently open."""
    return list(_OPEN_FILES.values())


def close_all_files() -> int:
    """Close every open handle; return how many were closed."""
    closed = 0
    for nc in open_files():
        try:
            nc.close()
        except IoError:
            logger.exception("Could not close %s", nc.fname)
            continue
        closed += 1
    return closed


def print_nc_file(nc: NcFile) -> None:
    """Log the handle's path, state, fill values and dimensions."""
    logger.info("nc_file %s (state=%s)", nc.fname, nc.state.value)
    logger.info("  fill values: char=%d int=%d float=%g double=%g",
                nc.c_fillvalue, nc.i_fillvalue, nc.f_fillvalue, nc.d_fillvalue)
    for kind in DimensionKind:
        logger.info("  %-10s dimid=%-10s size=%d", kind.value, nc.dimids[kind], nc.sizes[kind])
