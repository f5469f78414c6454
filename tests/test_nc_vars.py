"""Tests for binding variables to an open file."""

import json

import pytest

from vicimage.errors import NotOpenError, SchemaMismatchError
from vicimage.nc_file import NcFile
from vicimage.nc_vars import print_nc_var, record_schema, register, register_variable, schema_records, vic_nc_info
from vicimage.output import AggType, WritePolicy, create_output_list


class TestRegister:
    def test_layered_history_variable(self, grid_file):
        var = register(create_output_list()["OUT_SOIL_LIQ"], grid_file)
        assert var.nc_dimids == ["time", "layer", "nj", "ni"]
        assert var.nc_counts == [1, 2, 4, 3]
        assert var.nc_dims == 4
        assert var.has_time
        assert var.cell_shape == (2,)
        ncvar = grid_file.nc_id.variables["OUT_SOIL_LIQ"]
        assert ncvar.units == "mm"
        assert ncvar.aggregation == "end"

    def test_without_time(self, grid_file):
        var = register(create_output_list()["OUT_PREC"], grid_file, with_time=False)
        assert var.nc_dimids == ["nj", "ni"]
        assert var.cell_shape == ()

    def test_skip_policy_is_not_defined(self, grid_file):
        var = register_variable(grid_file, "OUT_RAINF", "mm", ("time", "nj", "ni"), "float",
                                write=WritePolicy.SKIP)
        assert var.nc_write is WritePolicy.SKIP
        assert "OUT_RAINF" not in grid_file.nc_id.variables

    def test_undeclared_dimension(self, grid_file):
        with pytest.raises(SchemaMismatchError, match="veg"):
            register_variable(grid_file, "STATE_X", "1", ("veg", "nj", "ni"), "double")

    def test_time_must_lead(self, grid_file):
        with pytest.raises(SchemaMismatchError, match="leading"):
            register_variable(grid_file, "X", "1", ("layer", "time", "nj", "ni"), "double")

    def test_grid_axes_must_trail(self, grid_file):
        with pytest.raises(SchemaMismatchError):
            register_variable(grid_file, "X", "1", ("time", "ni", "nj"), "double")

    def test_dimension_count_bound(self, grid_file):
        with pytest.raises(SchemaMismatchError, match="maximum"):
            register_variable(grid_file, "X", "1", ("layer",) * 9 + ("nj", "ni"), "double")

    def test_unsupported_type(self, grid_file):
        with pytest.raises(SchemaMismatchError):
            register_variable(grid_file, "X", "1", ("nj", "ni"), "complex")

    def test_closed_handle(self, tmp_path):
        with pytest.raises(NotOpenError):
            register_variable(NcFile(str(tmp_path / "x.nc")), "X", "1", ("nj", "ni"), "double")


class TestSchema:
    def test_vic_nc_info_registers_enabled_variables(self, grid_file):
        out_data = create_output_list()
        nc_vars = vic_nc_info(grid_file, out_data)
        assert [v.nc_var_name for v in nc_vars] == [n for n, v in out_data.items() if v.enabled]

    def test_schema_records_round_trip_as_attribute(self, grid_file):
        var = register_variable(grid_file, "OUT_PREC", "mm", ("time", "nj", "ni"), "float", aggtype=AggType.SUM)
        record_schema(grid_file, [var])
        stored = json.loads(grid_file.nc_id.getncattr("vicimage_schema_json"))
        assert stored == schema_records([var])
        assert stored[0] == {
            "name": "OUT_PREC",
            "units": "mm",
            "dimids": ["time", "nj", "ni"],
            "counts": [1, 4, 3],
            "type": "float",
            "aggtype": "sum",
            "write": True,
        }


def test_print_nc_var(grid_file, vic_caplog):
    var = register(create_output_list()["OUT_SOIL_LIQ"], grid_file)
    print_nc_var(var)
    assert "OUT_SOIL_LIQ" in vic_caplog.text
    assert "layer" in vic_caplog.text
