"""Tests for global/local domain construction and index mapping."""

import numpy as np
import pytest

from vicimage.domain import (
    build_domain_from_mask,
    cells_to_grid,
    check_local_domain,
    get_global_domain,
    get_global_idx,
    get_grid_idx,
    get_local_domain,
    grid_to_cells,
    initialize_domain,
    print_domain,
)
from vicimage.errors import DomainIntegrityError, IoError
from vicimage.location import MISSING
from vicimage.mpi_utils import build_owner_map


def _position(domain, row, col):
    for i, loc in enumerate(domain.locations):
        if (loc.global_y_idx, loc.global_x_idx) == (row, col):
            return i
    raise AssertionError(f"({row}, {col}) is not an active cell")


class TestScenarioMask:
    def test_active_cell_count(self, scenario_mask):
        domain, count = build_domain_from_mask(scenario_mask)
        assert count == 8
        assert domain.ncells_global == 8
        assert domain.ncells_local == 8
        assert (domain.n_ny, domain.n_nx) == (4, 3)

    def test_row_major_numbering(self, scenario_domain):
        i = _position(scenario_domain, 2, 1)
        assert get_global_idx(scenario_domain, i) == 3
        assert get_grid_idx(scenario_domain, i) == 7

    def test_global_indices_ascending(self, scenario_domain):
        assert scenario_domain.global_cell_idx.tolist() == list(range(8))
        assert scenario_domain.grid_idx.tolist() == [0, 1, 3, 7, 8, 9, 10, 11]

    def test_single_process_local_equals_global(self, scenario_domain):
        for loc in scenario_domain.locations:
            assert loc.local_cell_idx == loc.global_cell_idx
            assert (loc.local_x_idx, loc.local_y_idx) == (loc.global_x_idx, loc.global_y_idx)

    def test_coordinates_from_axes(self, scenario_domain):
        loc = scenario_domain.locations[_position(scenario_domain, 3, 2)]
        assert loc.latitude == pytest.approx(46.5)
        assert loc.longitude == pytest.approx(11.0)
        assert loc.area == MISSING
        assert loc.frac == 1.0


class TestMaskValidation:
    def test_empty_domain(self):
        domain = initialize_domain()
        assert domain.ncells_global == 0
        assert domain.locations == ()

    def test_all_inactive(self):
        with pytest.raises(DomainIntegrityError, match="no active cells"):
            build_domain_from_mask(np.zeros((3, 2), dtype=np.int32))

    def test_not_two_dimensional(self):
        with pytest.raises(DomainIntegrityError):
            build_domain_from_mask(np.ones(5, dtype=np.int32))

    def test_zero_sized_axis(self):
        with pytest.raises(DomainIntegrityError):
            build_domain_from_mask(np.ones((0, 3), dtype=np.int32))

    def test_frac_shape_mismatch(self, scenario_mask):
        with pytest.raises(DomainIntegrityError, match="frac shape"):
            build_domain_from_mask(scenario_mask, frac=np.ones((3, 4)))

    def test_zero_frac_is_inactive(self, scenario_mask):
        frac = scenario_mask.astype(np.float64)
        frac[0, 0] = 0.0
        domain, count = build_domain_from_mask(scenario_mask, frac=frac)
        assert count == 7
        assert (domain.locations[0].global_y_idx, domain.locations[0].global_x_idx) == (0, 1)


class TestLocalDomain:
    @pytest.mark.parametrize("policy", ["contiguous", "round_robin", "rows"])
    def test_locals_partition_global(self, scenario_domain, policy):
        size = 3
        owners = build_owner_map(scenario_domain, size, policy=policy)
        seen = []
        for rank in range(size):
            local = get_local_domain(scenario_domain, owners, rank)
            check_local_domain(scenario_domain, local)
            assert local.ncells_local <= local.ncells_global
            assert local.scope == "local"
            assert [loc.local_cell_idx for loc in local.locations] == list(range(local.ncells_local))
            seen.extend(local.global_cell_idx.tolist())
        assert sorted(seen) == list(range(scenario_domain.ncells_global))

    def test_relative_order_is_kept(self, scenario_domain):
        owners = np.array([0, 1, 0, 1, 0, 1, 0, 1])
        local = get_local_domain(scenario_domain, owners, 1)
        assert local.global_cell_idx.tolist() == [1, 3, 5, 7]
        assert get_global_idx(local, 2) == 5
        assert get_grid_idx(local, 1) == 7

    def test_owner_map_wrong_length(self, scenario_domain):
        with pytest.raises(DomainIntegrityError):
            get_local_domain(scenario_domain, [0, 0, 0], 0)

    def test_index_out_of_range(self, scenario_domain):
        with pytest.raises(IndexError):
            get_global_idx(scenario_domain, 8)
        with pytest.raises(IndexError):
            get_grid_idx(scenario_domain, -1)

    def test_foreign_local_domain_is_rejected(self, scenario_domain):
        other, _ = build_domain_from_mask(np.ones((4, 4), dtype=np.int32))
        with pytest.raises(DomainIntegrityError):
            check_local_domain(scenario_domain, other)


class TestGridMapping:
    def test_cells_to_grid_fills_inactive(self, scenario_domain):
        grid = cells_to_grid(scenario_domain, np.arange(8, dtype=np.float64))
        assert grid.shape == (4, 3)
        assert grid[2, 1] == 3.0
        assert grid[0, 2] == MISSING
        assert grid[1, 1] == MISSING

    def test_extra_axes_lead_the_grid(self, scenario_domain):
        values = np.stack([np.arange(8.0), -np.arange(8.0)], axis=1)
        grid = cells_to_grid(scenario_domain, values)
        assert grid.shape == (2, 4, 3)
        assert grid[1, 3, 2] == -7.0

    def test_grid_to_cells_inverts(self, scenario_domain):
        values = np.arange(16.0).reshape(8, 2)
        back = grid_to_cells(scenario_domain, cells_to_grid(scenario_domain, values))
        np.testing.assert_array_equal(back, values)

    def test_wrong_cell_count(self, scenario_domain):
        with pytest.raises(DomainIntegrityError):
            cells_to_grid(scenario_domain, np.zeros(5))


class TestGlobalDomainFromFile:
    def test_reads_mask_and_fields(self, domain_nc):
        domain, count = get_global_domain(domain_nc)
        assert count == 8
        loc = domain.locations[3]
        assert (loc.global_y_idx, loc.global_x_idx) == (2, 1)
        assert loc.latitude == pytest.approx(46.0)
        assert loc.longitude == pytest.approx(10.5)
        assert loc.area == pytest.approx(1.0e6)

    def test_area_derived_when_absent(self, tmp_path, scenario_mask, write_domain_nc):
        path = write_domain_nc(tmp_path / "noarea.nc", scenario_mask, with_area=False)
        domain, _ = get_global_domain(path)
        areas = np.array([loc.area for loc in domain.locations])
        # 0.5 degree cells at mid latitudes are a few thousand km2.
        assert np.all(areas > 1.0e9)
        assert np.all(areas < 1.0e10)

    def test_custom_varmap(self, tmp_path, scenario_mask):
        import xarray as xr

        path = tmp_path / "renamed.nc"
        xr.Dataset({"landmask": (("y", "x"), scenario_mask)}).to_netcdf(path)
        cfg = {"varmap": {"mask": "landmask"}, "dims": {"x": "x", "y": "y"}}
        domain, count = get_global_domain(str(path), cfg)
        assert count == 8
        assert domain.locations[0].latitude == MISSING

    def test_fractional_mask(self, tmp_path):
        import xarray as xr

        path = tmp_path / "fracmask.nc"
        mask = np.array([[0.5, 1.0, 0.0], [1.0, 0.0, 0.0]])
        xr.Dataset({"mask": (("nj", "ni"), mask)}).to_netcdf(path)
        domain, count = get_global_domain(str(path))
        assert count == 3
        assert [(loc.global_y_idx, loc.global_x_idx) for loc in domain.locations] == [(0, 0), (0, 1), (1, 0)]

    def test_fill_values_are_inactive(self, tmp_path, scenario_mask):
        import netCDF4

        path = str(tmp_path / "filled.nc")
        fill = netCDF4.default_fillvals["f4"]
        frac = scenario_mask.astype(np.float32)
        frac[3, 2] = fill
        mask = scenario_mask.astype(np.float32)
        mask[0, 0] = fill
        with netCDF4.Dataset(path, "w") as ds:
            ds.createDimension("nj", 4)
            ds.createDimension("ni", 3)
            ds.createVariable("mask", "f4", ("nj", "ni"), fill_value=fill)[:] = mask
            ds.createVariable("frac", "f4", ("nj", "ni"), fill_value=fill)[:] = frac
        domain, count = get_global_domain(path)
        assert count == 6
        cells = [(loc.global_y_idx, loc.global_x_idx) for loc in domain.locations]
        assert (0, 0) not in cells
        assert (3, 2) not in cells

    def test_missing_file(self, tmp_path):
        with pytest.raises(IoError):
            get_global_domain(str(tmp_path / "absent.nc"))


def test_print_domain_with_locations(scenario_domain, vic_caplog):
    print_domain(scenario_domain, print_loc=True)
    assert "ncells_global: 8" in vic_caplog.text
    assert vic_caplog.text.count("location ") == 8
