#!/usr/bin/env python3
"""Create a VIC image domain NetCDF (mask/frac/area/lat/lon on nj x ni)."""
from __future__ import annotations

import argparse  # Parse command-line arguments for the CLI.
from dataclasses import dataclass  # Provide a simple data container for grid metadata.
from datetime import datetime, timezone  # Timestamp domain creation for metadata.
from typing import Iterable, Optional  # Define type hints for optional iterables.

import numpy as np  # Numerical arrays and math utilities.
from tqdm import tqdm  # Progress bar for long-running workflows.
import xarray as xr  # Dataset and DataArray abstractions for NetCDF.

from vicimage.domain import cell_area_from_coords  # WGS84 cell areas from axis spacing.


@dataclass
class GridSpec:
    x: np.ndarray  # 1D longitude centres.
    y: np.ndarray  # 1D latitude centres.


def _slice_for_bbox(coord: np.ndarray, minv: float, maxv: float) -> slice:
    # Build a slice that respects axis direction.
    if coord[0] < coord[-1]:
        return slice(minv, maxv)
    return slice(maxv, minv)


def _build_axis(minv: float, maxv: float, step: float) -> np.ndarray:
    if step <= 0:
        raise ValueError("Resolution must be positive")
    # Cell centres, half a step inside the bounds.
    return np.arange(minv + 0.5 * step, maxv, step, dtype=np.float64)


def _grid_from_bbox(bbox: Iterable[float], resolution: Iterable[float]) -> GridSpec:
    xmin, ymin, xmax, ymax = (float(v) for v in bbox)
    res_vals = list(resolution)
    if len(res_vals) == 1:
        dx = dy = float(res_vals[0])
    elif len(res_vals) == 2:
        dx, dy = (float(v) for v in res_vals)
    else:
        raise ValueError("Resolution expects 1 or 2 values")
    return GridSpec(x=_build_axis(xmin, xmax, dx), y=_build_axis(ymin, ymax, dy))


def _load_mask(path: str, var_name: str, longitude_name: str, latitude_name: str,
               bbox: Optional[Iterable[float]]) -> tuple[xr.DataArray, xr.Dataset]:
    ds = xr.open_dataset(path)
    if var_name not in ds:
        raise KeyError(f"Variable '{var_name}' not found in {path}")
    da = ds[var_name]
    if len(da.dims) != 2:
        raise ValueError(f"Expected 2D variable; got dims={da.dims}")
    if da.dims != (latitude_name, longitude_name):
        da = da.rename({da.dims[0]: latitude_name, da.dims[1]: longitude_name})
    if bbox is not None:
        xmin, ymin, xmax, ymax = bbox
        da = da.sel(
            {
                longitude_name: _slice_for_bbox(np.asarray(da[longitude_name].values), xmin, xmax),
                latitude_name: _slice_for_bbox(np.asarray(da[latitude_name].values), ymin, ymax),
            }
        )
    return da, ds


def build_domain(
    output_path: str,
    mask_path: Optional[str],
    mask_var: str,
    frac_var: Optional[str],
    longitude_name: str,
    latitude_name: str,
    bbox: Optional[Iterable[float]],
    resolution: Optional[Iterable[float]],
) -> None:
    total_steps = 5  # Grid, mask, area, assembly, write.

    with tqdm(total=total_steps, desc="Building domain", unit="step") as progress:
        progress.set_description("Preparing grid")
        src_ds = None
        mask_da = None
        if mask_path:
            mask_da, src_ds = _load_mask(mask_path, mask_var, longitude_name, latitude_name, bbox)
            grid = GridSpec(x=np.asarray(mask_da[longitude_name].values, dtype=np.float64),
                            y=np.asarray(mask_da[latitude_name].values, dtype=np.float64))
        else:
            if bbox is None or resolution is None:
                raise ValueError("Without --mask both --bbox and --resolution are required")
            grid = _grid_from_bbox(bbox, resolution)
        progress.update(1)

        progress.set_description("Preparing mask")
        shape = (grid.y.size, grid.x.size)
        if mask_da is not None:
            raw = np.asarray(mask_da.values, dtype=np.float64)
            mask = (np.isfinite(raw) & (raw > 0)).astype(np.int32)
        else:
            mask = np.ones(shape, dtype=np.int32)
        frac = mask.astype(np.float64)
        if frac_var and src_ds is not None and frac_var in src_ds:
            frac_src = np.asarray(src_ds[frac_var].values, dtype=np.float64).reshape(shape)
            frac = np.where(mask > 0, np.clip(np.nan_to_num(frac_src), 0.0, 1.0), 0.0)
        progress.update(1)

        progress.set_description("Computing cell areas")
        area = cell_area_from_coords(grid.y, grid.x)
        if area is None:
            raise ValueError("At least two cells per axis are needed to derive cell areas")
        progress.update(1)

        progress.set_description("Assembling dataset")
        lon2d, lat2d = np.meshgrid(grid.x, grid.y)
        ds_out = xr.Dataset(
            {
                "mask": (("nj", "ni"), mask, {"long_name": "domain mask", "comment": "0 = inactive cell", "units": "1"}),
                "frac": (("nj", "ni"), frac, {"long_name": "fraction of grid cell that is active", "units": "1"}),
                "area": (("nj", "ni"), area, {"long_name": "area of grid cell", "units": "m2"}),
                "lat": (("nj", "ni"), lat2d, {"long_name": "latitude of grid cell center", "units": "degrees_north"}),
                "lon": (("nj", "ni"), lon2d, {"long_name": "longitude of grid cell center", "units": "degrees_east"}),
            }
        )
        ds_out.attrs.update(
            {
                "title": "VIC image driver domain",
                "source": "utils/make_domain.py",
                "history": f"{datetime.now(timezone.utc).isoformat()}: domain created",
                "Conventions": "CF-1.6",
            }
        )
        progress.update(1)

        progress.set_description("Writing NetCDF")
        ds_out.to_netcdf(output_path)
        if src_ds is not None:
            src_ds.close()
        progress.update(1)


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)  # CLI parser with module docstring.
    parser.add_argument("--mask", help="NetCDF with a 2D land/basin mask (cells > 0 are active)")
    parser.add_argument("--mask-var", default="mask", help="Mask variable name")
    parser.add_argument("--frac-var", default=None, help="Optional active-fraction variable in the mask file")
    parser.add_argument("--longitude-name", default="longitude", help="Longitude coordinate name")
    parser.add_argument("--latitude-name", default="latitude", help="Latitude coordinate name")
    parser.add_argument("--bbox", nargs=4, type=float, metavar=("min_lon", "min_lat", "max_lon", "max_lat"))
    parser.add_argument(
        "--resolution",
        nargs="+",
        type=float,
        metavar=("DX", "DY"),
        help="Grid spacing (dx [dy]) in degrees, used when no --mask is given",
    )
    parser.add_argument("--output", required=True, help="Output NetCDF path")
    args = parser.parse_args()

    build_domain(
        output_path=args.output,
        mask_path=args.mask,
        mask_var=args.mask_var,
        frac_var=args.frac_var,
        longitude_name=args.longitude_name,
        latitude_name=args.latitude_name,
        bbox=args.bbox,
        resolution=args.resolution,
    )


if __name__ == "__main__":
    main()  # Entry point for CLI execution.
