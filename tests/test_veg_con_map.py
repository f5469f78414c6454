"""Tests for the per-cell vegetation class map."""

import numpy as np
import pytest
import xarray as xr

from vicimage.errors import ParameterError
from vicimage.veg_con_map import VegConMap, print_veg_con_map, read_veg_con_maps, veg_con_map_from_cover


class TestFromCover:
    def test_four_active_types(self):
        vmap = veg_con_map_from_cover([0.2, 0.3, 0.1, 0.4], nv_types=5)
        assert abs(vmap.Cv.sum() - 1.0) < 1e-9
        assert vmap.nv_active == 5
        assert vmap.vidx.tolist() == [0, 1, 2, 3, -1]
        vmap.validate()

    def test_fifth_entry_breaks_the_sum(self):
        vmap = veg_con_map_from_cover([0.2, 0.3, 0.1, 0.4, 0.2], nv_types=5)
        with pytest.raises(ParameterError):
            vmap.validate()

    def test_absent_classes_are_skipped(self):
        vmap = veg_con_map_from_cover([0.0, 0.5, 0.0, 0.5], nv_types=4)
        assert vmap.vidx.tolist() == [-1, 0, -1, 1]
        assert vmap.nv_active == 3

    def test_treeline_adds_a_tile(self):
        vmap = veg_con_map_from_cover([0.5, 0.5, 0.0, 0.0], treeline=True)
        assert vmap.nv_active == 4

    def test_too_many_entries(self):
        with pytest.raises(ParameterError):
            veg_con_map_from_cover([0.5, 0.5, 0.0], nv_types=2)


class TestValidate:
    def test_negative_cover(self):
        vmap = VegConMap(nv_types=2, nv_active=2, vidx=np.array([0, 1]), Cv=np.array([1.5, -0.5]))
        with pytest.raises(ParameterError, match="negative"):
            vmap.validate()

    def test_too_many_active_tiles(self):
        vmap = VegConMap(nv_types=2, nv_active=3, vidx=np.array([0, 1]), Cv=np.array([0.5, 0.5]))
        with pytest.raises(ParameterError, match="nv_active"):
            vmap.validate()

    def test_shape_mismatch(self):
        vmap = VegConMap(nv_types=3, nv_active=2, vidx=np.array([0, 1]), Cv=np.array([0.5, 0.5]))
        with pytest.raises(ParameterError):
            vmap.validate()


class TestReadMaps:
    def _write(self, path, cover):
        xr.Dataset({"Cv": (("veg", "nj", "ni"), cover)}).to_netcdf(path)
        return str(path)

    def test_one_map_per_cell(self, tmp_path, scenario_domain):
        cover = np.zeros((3, 4, 3))
        cover[0] = 0.6
        cover[2] = 0.4
        maps = read_veg_con_maps(self._write(tmp_path / "veg.nc", cover), scenario_domain)
        assert len(maps) == 8
        assert maps[0].vidx.tolist() == [0, -1, 1]
        assert maps[0].nv_active == 3

    def test_invalid_cell_is_reported(self, tmp_path, scenario_domain):
        cover = np.zeros((3, 4, 3))
        cover[0] = 0.6
        cover[2] = 0.4
        cover[:, 3, 2] = [0.5, 0.0, 0.3]
        path = self._write(tmp_path / "veg.nc", cover)
        with pytest.raises(ParameterError, match="cell 7"):
            read_veg_con_maps(path, scenario_domain)
        assert len(read_veg_con_maps(path, scenario_domain, validate=False)) == 8

    def test_wrong_grid(self, tmp_path, scenario_domain):
        path = self._write(tmp_path / "veg.nc", np.full((2, 2, 2), 0.5))
        with pytest.raises(ParameterError, match="expected"):
            read_veg_con_maps(path, scenario_domain)


def test_print_veg_con_map(vic_caplog):
    print_veg_con_map(veg_con_map_from_cover([0.25, 0.75]))
    assert "nv_active=3" in vic_caplog.text
