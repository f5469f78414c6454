"""Shared fixtures for the vicimage test suite."""

import json
import logging

import numpy as np
import pytest
import xarray as xr

from vicimage.config import deep_update, default_config
from vicimage.domain import build_domain_from_mask
from vicimage.nc_file import NcFile, close_all_files


SCENARIO_MASK = np.array(
    [
        [1, 1, 0],
        [1, 0, 0],
        [0, 1, 1],
        [1, 1, 1],
    ],
    dtype=np.int32,
)


@pytest.fixture(autouse=True)
def _close_leftover_files():
    """Never leak open handles between tests."""
    yield
    close_all_files()


@pytest.fixture
def scenario_mask():
    return SCENARIO_MASK.copy()


@pytest.fixture
def scenario_domain():
    """Global domain of the 4x3 scenario mask (8 active cells)."""
    lat = np.array([45.0, 45.5, 46.0, 46.5])
    lon = np.array([10.0, 10.5, 11.0])
    domain, _ = build_domain_from_mask(SCENARIO_MASK, lat=lat, lon=lon)
    return domain


def _write_domain_nc(path, mask, with_area=True, frac=None):
    ny, nx = mask.shape
    lat1d = 45.0 + 0.5 * np.arange(ny)
    lon1d = 10.0 + 0.5 * np.arange(nx)
    lon2d, lat2d = np.meshgrid(lon1d, lat1d)
    data = {
        "mask": (("nj", "ni"), mask.astype(np.int32)),
        "frac": (("nj", "ni"), mask.astype(np.float64) if frac is None else frac),
        "lat": (("nj", "ni"), lat2d),
        "lon": (("nj", "ni"), lon2d),
    }
    if with_area:
        data["area"] = (("nj", "ni"), np.full(mask.shape, 1.0e6))
    xr.Dataset(data).to_netcdf(path)
    return str(path)


@pytest.fixture
def write_domain_nc():
    """Factory writing a domain NetCDF (mask/frac/lat/lon[/area]) to a path."""
    return _write_domain_nc


@pytest.fixture
def domain_nc(tmp_path, scenario_mask):
    return _write_domain_nc(tmp_path / "domain.nc", scenario_mask)


@pytest.fixture
def run_config(tmp_path, domain_nc):
    """Small but complete run configuration pointing into tmp_path."""
    return deep_update(
        default_config(),
        {
            "domain": {"domain_nc": domain_nc},
            "options": {
                "nveg": 3,
                "nlayer": 2,
                "nnode": 2,
                "snow_band": 1,
                "nfrost": 1,
                "nfront": 1,
                "root_zones": 2,
            },
            "output": {
                "history_nc": str(tmp_path / "history.nc"),
                "nrec": 2,
                "step_s": 3600,
                "start_time": "2000-01-01T00:00:00Z",
            },
            "state": {"state_nc": str(tmp_path / "state.nc")},
        },
    )


@pytest.fixture
def config_file(tmp_path, run_config):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(run_config))
    return str(path)


@pytest.fixture
def grid_file(tmp_path):
    """Open handle with time=2, layer=2, nj=4, ni=3; closed after the test."""
    nc = NcFile(str(tmp_path / "grid.nc"))
    nc.open_for_write(sizes={"time": 2, "layer": 2, "nj": 4, "ni": 3})
    yield nc
    nc.close()


@pytest.fixture
def vic_caplog(caplog, monkeypatch):
    """caplog that also sees the 'vicimage' logger after setup_logging()."""
    monkeypatch.setattr(logging.getLogger("vicimage"), "propagate", True)
    caplog.set_level(logging.INFO, logger="vicimage")
    return caplog
