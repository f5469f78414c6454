# -*- coding: utf-8 -*-
"""Hyperslab transfer between numpy buffers and NetCDF files.

Reads go through xarray (raw values, no mask/scale decoding); writes go
through the netCDF4 dataset held by an open `NcFile`, so that a run can keep
appending blocks to the same file. Every window is addressed by per-dimension
`start` / `count` sequences, exactly as in the NetCDF C API.
"""

# Import typing primitives.
from typing import Any, Sequence

# Import logging.
import logging

# Import numpy.
import numpy as np

# Import xarray for reading.
import xarray as xr

# Import local helpers.
from .errors import IoError, NotOpenError, SchemaMismatchError, ShapeError, VariableNotFoundError
from .location import MISSING

logger = logging.getLogger("vicimage.nc_io")

# Maximum number of dimensions a variable may carry.
MAXDIMS = 10

# Supported storage types and their NetCDF (numpy) representation.
STORAGE_DTYPES = {
    "char": np.dtype("i1"),
    "int": np.dtype("i4"),
    "float": np.dtype("f4"),
    "double": np.dtype("f8"),
}


def storage_dtype(nc_type: str) -> np.dtype:
    """Return the numpy dtype for a storage type name."""
    try:
        return STORAGE_DTYPES[str(nc_type).lower()]
    except KeyError:
        raise SchemaMismatchError(
            f"Unsupported storage type '{nc_type}' (expected one of {sorted(STORAGE_DTYPES)})"
        ) from None


def _open_dataset(nc_name: str) -> xr.Dataset:
    """Open a NetCDF file for reading, mapping failures to IoError."""
    try:
        return xr.open_dataset(nc_name, mask_and_scale=False, decode_times=False)
    except (OSError, ValueError) as exc:
        raise IoError(f"Cannot open '{nc_name}' for reading: {exc}") from exc


def check_window(label: str, sizes: Sequence[int], start: Sequence[int], count: Sequence[int]) -> None:
    """Raise ShapeError unless start/count lie inside the declared sizes."""
    if len(start) != len(sizes) or len(count) != len(sizes):
        raise ShapeError(
            f"{label}: window rank mismatch (start={list(start)}, count={list(count)}, ndims={len(sizes)})"
        )
    for i, (s, c, n) in enumerate(zip(start, count, sizes)):
        if int(s) < 0 or int(c) < 0 or int(s) + int(c) > int(n):
            raise ShapeError(
                f"{label}: window out of bounds on dimension {i} "
                f"(start={int(s)}, count={int(c)}, size={int(n)})"
            )


def get_nc_dimension(nc_name: str, dim_name: str) -> int:
    """Return the size of dimension `dim_name` in file `nc_name`."""
    with _open_dataset(nc_name) as ds:
        if dim_name not in ds.sizes:
            raise SchemaMismatchError(f"{nc_name}: dimension '{dim_name}' not found")
        return int(ds.sizes[dim_name])


def has_nc_variable(nc_name: str, var_name: str) -> bool:
    """Return True if `var_name` is present in file `nc_name`."""
    with _open_dataset(nc_name) as ds:
        return var_name in ds.variables


def get_nc_var_shape(nc_name: str, var_name: str) -> tuple[int, ...]:
    """Return the shape of variable `var_name`."""
    with _open_dataset(nc_name) as ds:
        if var_name not in ds.variables:
            raise VariableNotFoundError(f"{nc_name}: variable '{var_name}' not found")
        return tuple(int(n) for n in ds.variables[var_name].shape)


def get_nc_fill_value(nc_name: str, var_name: str) -> Any:
    """Return the declared _FillValue of a variable (None if absent)."""
    with _open_dataset(nc_name) as ds:
        if var_name not in ds.variables:
            raise VariableNotFoundError(f"{nc_name}: variable '{var_name}' not found")
        var = ds.variables[var_name]
        value = var.attrs.get("_FillValue", var.encoding.get("_FillValue"))
        return None if value is None else np.asarray(value).item()


def _get_nc_field(nc_name: str, var_name: str, start: Sequence[int], count: Sequence[int],
                  dtype: np.dtype) -> np.ndarray:
    """Read a hyperslab and return it as `dtype` (no narrowing)."""
    with _open_dataset(nc_name) as ds:
        if var_name not in ds.variables:
            raise VariableNotFoundError(f"{nc_name}: variable '{var_name}' not found")
        var = ds.variables[var_name]
        check_window(f"{nc_name}:{var_name}", var.shape, start, count)
        if not np.can_cast(var.dtype, dtype, casting="safe"):
            raise SchemaMismatchError(
                f"{nc_name}:{var_name}: stored type {var.dtype} cannot be read as {dtype} without narrowing"
            )
        slices = tuple(slice(int(s), int(s) + int(c)) for s, c in zip(start, count))
        return np.asarray(var[slices].values).astype(dtype)


def get_nc_field_double(nc_name: str, var_name: str, start: Sequence[int], count: Sequence[int]) -> np.ndarray:
    """Read a float64 hyperslab."""
    return _get_nc_field(nc_name, var_name, start, count, np.dtype("f8"))


def get_nc_field_float(nc_name: str, var_name: str, start: Sequence[int], count: Sequence[int]) -> np.ndarray:
    """Read a float32 hyperslab."""
    return _get_nc_field(nc_name, var_name, start, count, np.dtype("f4"))


def get_nc_field_int(nc_name: str, var_name: str, start: Sequence[int], count: Sequence[int]) -> np.ndarray:
    """Read an int32 hyperslab."""
    return _get_nc_field(nc_name, var_name, start, count, np.dtype("i4"))


def substitute_missing(var: Any, fillval: Any) -> np.ndarray:
    """Replace the MISSING sentinel with `fillval`.

    Detection is an equality test against MISSING, so NaN entries pass
    through unchanged.
    """
    buf = np.asarray(var)
    missing = buf == MISSING
    if not np.any(missing):
        return buf
    out = buf.astype(np.result_type(buf.dtype, np.asarray(fillval).dtype), copy=True)
    out[missing] = fillval
    return out


def _check_integer_range(label: str, block: np.ndarray, dtype: np.dtype) -> None:
    """Raise ShapeError if a value cannot be stored in integer `dtype`.

    Float values are truncated toward zero before the test, as a C cast does.
    """
    if dtype.kind not in "iu":
        return
    info = np.iinfo(dtype)
    vals = np.asarray(block)
    if vals.dtype.kind == "f":
        bad = ~np.isfinite(vals)
        vals = np.trunc(np.where(bad, 0.0, vals))
    else:
        bad = np.zeros(vals.shape, dtype=bool)
    bad |= (vals < info.min) | (vals > info.max)
    if np.any(bad):
        where = tuple(int(i) for i in np.argwhere(bad)[0])
        raise ShapeError(
            f"{label}: value {np.asarray(block)[where]!r} at index {list(where)} "
            f"does not fit {dtype} storage [{info.min}, {info.max}]"
        )


def _put_nc_field(nc_file: Any, fillval: Any, dimids: Sequence[str], ndims: int, var_name: str,
                  start: Sequence[int], count: Sequence[int], var: Any, dtype: np.dtype) -> None:
    """Write one hyperslab of `var_name` into an open NcFile.

    The window, buffer size and value range are all checked before the
    variable is defined, so a rejected first write leaves the file unchanged.
    """
    if not nc_file.open:
        raise NotOpenError(f"{nc_file.fname}: cannot write '{var_name}', file is not open")
    ndims = int(ndims)
    if ndims < 0 or ndims > MAXDIMS or ndims > len(dimids):
        raise SchemaMismatchError(
            f"{nc_file.fname}:{var_name}: invalid dimension count {ndims} "
            f"(max {MAXDIMS}, {len(dimids)} ids given)"
        )
    dims = tuple(str(d) for d in dimids[:ndims])
    ds = nc_file.nc_id
    label = f"{nc_file.fname}:{var_name}"
    for d in dims:
        if d not in ds.dimensions:
            raise SchemaMismatchError(f"{label}: dimension '{d}' is not declared")

    if var_name in ds.variables:
        ncvar = ds.variables[var_name]
        if tuple(ncvar.dimensions) != dims:
            raise SchemaMismatchError(
                f"{label}: defined on {tuple(ncvar.dimensions)}, write requested on {dims}"
            )
    else:
        ncvar = None

    sizes = [len(ds.dimensions[d]) for d in dims]
    check_window(label, sizes, start, count)

    shape = tuple(int(c) for c in count)
    buf = substitute_missing(var, fillval)
    if buf.size != int(np.prod(shape, dtype=np.int64)):
        raise ShapeError(
            f"{label}: buffer holds {buf.size} values, window {list(shape)} needs "
            f"{int(np.prod(shape, dtype=np.int64))}"
        )
    buf = buf.reshape(shape)
    _check_integer_range(label, buf, dtype)
    block = buf.astype(dtype)

    if ncvar is None:
        try:
            ncvar = ds.createVariable(var_name, dtype, dims, fill_value=fillval)
        except (RuntimeError, OSError) as exc:
            raise IoError(f"{nc_file.fname}: cannot define '{var_name}': {exc}") from exc

    slices = tuple(slice(int(s), int(s) + int(c)) for s, c in zip(start, count))
    try:
        ncvar[slices] = block
    except (RuntimeError, OSError) as exc:
        raise IoError(f"{nc_file.fname}: write of '{var_name}' failed at start={list(start)}: {exc}") from exc


def put_nc_field_double(nc_file: Any, fillval: float, dimids: Sequence[str], ndims: int, var_name: str,
                        start: Sequence[int], count: Sequence[int], var: Any) -> None:
    """Write a float64 hyperslab."""
    _put_nc_field(nc_file, float(fillval), dimids, ndims, var_name, start, count, var, STORAGE_DTYPES["double"])


def put_nc_field_float(nc_file: Any, fillval: float, dimids: Sequence[str], ndims: int, var_name: str,
                       start: Sequence[int], count: Sequence[int], var: Any) -> None:
    """Write a float32 hyperslab."""
    _put_nc_field(nc_file, np.float32(fillval), dimids, ndims, var_name, start, count, var, STORAGE_DTYPES["float"])


def put_nc_field_int(nc_file: Any, fillval: int, dimids: Sequence[str], ndims: int, var_name: str,
                     start: Sequence[int], count: Sequence[int], var: Any) -> None:
    """Write an int32 hyperslab."""
    _put_nc_field(nc_file, np.int32(fillval), dimids, ndims, var_name, start, count, var, STORAGE_DTYPES["int"])


def put_nc_field_char(nc_file: Any, fillval: int, dimids: Sequence[str], ndims: int, var_name: str,
                      start: Sequence[int], count: Sequence[int], var: Any) -> None:
    """Write a byte hyperslab (character storage)."""
    _put_nc_field(nc_file, np.int8(fillval), dimids, ndims, var_name, start, count, var, STORAGE_DTYPES["char"])


PUT_FIELD = {
    "char": put_nc_field_char,
    "int": put_nc_field_int,
    "float": put_nc_field_float,
    "double": put_nc_field_double,
}


def put_nc_field(nc_file: Any, nc_type: str, fillval: Any, dimids: Sequence[str], ndims: int, var_name: str,
                 start: Sequence[int], count: Sequence[int], var: Any) -> None:
    """Dispatch to the typed writer for `nc_type`."""
    storage_dtype(nc_type)
    PUT_FIELD[str(nc_type).lower()](nc_file, fillval, dimids, ndims, var_name, start, count, var)
