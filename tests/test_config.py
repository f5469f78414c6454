"""Tests for configuration merging, CLI overrides and time helpers."""

import json

from main import apply_cli_overrides
from vicimage.cli import parse_args
from vicimage.config import deep_update, default_config, load_json
from vicimage.time_utils import datetime_to_hours_since_1900, parse_iso8601_to_utc_datetime, record_time_hours


class TestConfig:
    def test_deep_update_is_non_destructive(self):
        base = default_config()
        merged = deep_update(base, {"output": {"nrec": 24}, "partition": {"policy": "rows"}})
        assert merged["output"]["nrec"] == 24
        assert merged["output"]["history_nc"] == "history.nc"
        assert merged["partition"]["policy"] == "rows"
        assert base["output"]["nrec"] == 1

    def test_load_json(self, tmp_path):
        path = tmp_path / "cfg.json"
        path.write_text(json.dumps({"state": {"enabled": False}}))
        assert load_json(str(path)) == {"state": {"enabled": False}}

    def test_cli_overrides(self):
        args = parse_args(["--config", "c.json", "--nrec", "5", "--partition", "round_robin",
                           "--history-nc", "h.nc", "--mpi-mode", "disabled"])
        cfg = apply_cli_overrides(default_config(), args)
        assert cfg["output"]["nrec"] == 5
        assert cfg["output"]["history_nc"] == "h.nc"
        assert cfg["partition"]["policy"] == "round_robin"
        assert cfg["compute"]["mpi"]["enabled"] is False
        assert cfg["domain"]["domain_nc"] == "domain.nc"


class TestTimeUtils:
    def test_epoch(self):
        dt = parse_iso8601_to_utc_datetime("1900-01-01T00:00:00Z")
        assert datetime_to_hours_since_1900(dt) == 0.0

    def test_record_times(self):
        assert record_time_hours("1900-01-02T00:00:00Z", 0, 3600) == 24.0
        assert record_time_hours("1900-01-02T00:00:00Z", 3, 3600) == 27.0

    def test_naive_input_is_utc(self):
        assert record_time_hours("2000-01-01T00:00:00", 0, 86400) == 876576.0
