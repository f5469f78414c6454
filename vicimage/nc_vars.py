# -*- coding: utf-8 -*-
"""Variable descriptors bound to an open output file."""

from __future__ import annotations

# Import dataclass for the descriptor.
from dataclasses import dataclass, field

# Import stdlib helpers.
import json
import logging
from typing import Any, Dict, List, Mapping, Sequence

# Import local helpers.
from .errors import NotOpenError, SchemaMismatchError
from .nc_file import DimensionKind, NcFile
from .nc_io import MAXDIMS, storage_dtype
from .output import AggType, OutputVariable, WritePolicy

logger = logging.getLogger("vicimage.nc_vars")


@dataclass
class NcVar:
    """One variable as laid out in a NetCDF file."""

    nc_var_name: str
    nc_units: str = ""
    nc_dimids: List[str] = field(default_factory=list)
    nc_counts: List[int] = field(default_factory=list)
    nc_type: str = "float"
    nc_aggtype: AggType = AggType.DEFAULT
    nc_dims: int = 0
    nc_write: WritePolicy = WritePolicy.SKIP
    mult: float = 1.0
    has_time: bool = False
    long_name: str = ""

    @property
    def cell_shape(self) -> tuple[int, ...]:
        """Per-cell extents (dimensions between time and the spatial axes)."""
        lo = 1 if self.has_time else 0
        return tuple(self.nc_counts[lo:self.nc_dims - 2])


def register_variable(nc_file: NcFile, name: str, units: str, dims: Sequence[Any], nc_type: str,
                      aggtype: AggType = AggType.DEFAULT, write: WritePolicy = WritePolicy.WRITE,
                      mult: float = 1.0, long_name: str = "") -> NcVar:
    """Bind logical dimension kinds to the file's declared dimensions.

    `dims` lists every axis of the variable, e.g. ("time", "layer", "nj", "ni").
    """
    if not nc_file.open:
        raise NotOpenError(f"{nc_file.fname}: cannot register '{name}', file is not open")
    if len(dims) > MAXDIMS:
        raise SchemaMismatchError(f"{nc_file.fname}:{name}: {len(dims)} dimensions exceed the maximum of {MAXDIMS}")
    storage_dtype(nc_type)

    dimids: List[str] = []
    counts: List[int] = []
    has_time = False
    for d in dims:
        try:
            dimid = nc_file.dimid(d)
        except SchemaMismatchError as exc:
            raise SchemaMismatchError(f"{nc_file.fname}:{name}: {exc}") from exc
        kind = DimensionKind(dimid)
        dimids.append(dimid)
        if kind is DimensionKind.TIME:
            has_time = True
            counts.append(1)
        else:
            counts.append(nc_file.dimension_size(kind))
    if has_time and dimids[0] != DimensionKind.TIME.value:
        raise SchemaMismatchError(f"{nc_file.fname}:{name}: time must be the leading dimension")
    if dimids[-2:] != [DimensionKind.NJ.value, DimensionKind.NI.value]:
        raise SchemaMismatchError(f"{nc_file.fname}:{name}: variables must end with the (nj, ni) grid axes")

    nc_var = NcVar(
        nc_var_name=name,
        nc_units=units,
        nc_dimids=dimids,
        nc_counts=counts,
        nc_type=str(nc_type).lower(),
        nc_aggtype=aggtype,
        nc_dims=len(dimids),
        nc_write=write,
        mult=float(mult),
        has_time=has_time,
        long_name=long_name,
    )
    if nc_var.nc_write is WritePolicy.WRITE:
        define_nc_var(nc_file, nc_var)
    return nc_var


def register(out_var: OutputVariable, nc_file: NcFile, with_time: bool = True) -> NcVar:
    """Register a catalog variable on an open file."""
    dims = (("time",) if with_time else ()) + tuple(out_var.dims) + ("nj", "ni")
    return register_variable(
        nc_file,
        out_var.varname,
        out_var.units,
        dims,
        out_var.type,
        aggtype=out_var.aggtype,
        write=out_var.write,
        mult=out_var.mult,
        long_name=out_var.description,
    )


def define_nc_var(nc_file: NcFile, nc_var: NcVar) -> None:
    """Create the variable in the file with its metadata attributes."""
    ds = nc_file.nc_id
    if nc_var.nc_var_name in ds.variables:
        existing = tuple(ds.variables[nc_var.nc_var_name].dimensions)
        if existing != tuple(nc_var.nc_dimids):
            raise SchemaMismatchError(
                f"{nc_file.fname}:{nc_var.nc_var_name}: already defined on {existing}"
            )
        return
    var = ds.createVariable(
        nc_var.nc_var_name,
        storage_dtype(nc_var.nc_type),
        tuple(nc_var.nc_dimids),
        fill_value=nc_file.fillvalue_for(nc_var.nc_type),
    )
    attrs = {"units": nc_var.nc_units, "aggregation": nc_var.nc_aggtype.value}
    if nc_var.long_name:
        attrs["long_name"] = nc_var.long_name
    var.setncatts(attrs)


def vic_nc_info(nc_file: NcFile, out_data: Mapping[str, OutputVariable], with_time: bool = True) -> List[NcVar]:
    """Register every enabled variable of `out_data` on `nc_file`."""
    nc_vars = [register(var, nc_file, with_time=with_time) for var in out_data.values() if var.enabled]
    logger.debug("%s: registered %d variables", nc_file.fname, len(nc_vars))
    return nc_vars


def schema_records(nc_vars: Sequence[NcVar]) -> List[Dict[str, Any]]:
    """Return the per-variable schema tuple as plain dictionaries."""
    return [
        {
            "name": v.nc_var_name,
            "units": v.nc_units,
            "dimids": list(v.nc_dimids),
            "counts": [int(c) for c in v.nc_counts],
            "type": v.nc_type,
            "aggtype": v.nc_aggtype.value,
            "write": v.nc_write is WritePolicy.WRITE,
        }
        for v in nc_vars
    ]


def record_schema(nc_file: NcFile, nc_vars: Sequence[NcVar]) -> None:
    """Embed the variable schema as a JSON global attribute."""
    if not nc_file.open:
        raise NotOpenError(f"{nc_file.fname}: cannot record schema, file is not open")
    nc_file.nc_id.setncattr("vicimage_schema_json", json.dumps(schema_records(nc_vars), separators=(",", ":")))


def print_nc_var(nc_var: NcVar) -> None:
    """Log one variable descriptor."""
    logger.info("nc_var %s [%s] type=%s agg=%s write=%s",
                nc_var.nc_var_name, nc_var.nc_units, nc_var.nc_type, nc_var.nc_aggtype.value, nc_var.nc_write.value)
    for i in range(nc_var.nc_dims):
        logger.info("  dim %d: %-10s count=%d", i, nc_var.nc_dimids[i], nc_var.nc_counts[i])
