# -*- coding: utf-8 -*-
"""Configuration handling for vicimage.

The run is configured via:
1) A JSON configuration file (config.json).
2) Optional CLI overrides (handled in cli.py / main.py).
"""

# Import JSON for reading configuration files.
import json

# Import typing primitives.
from typing import Any, Dict


def default_config() -> Dict[str, Any]:
    """Return a complete default configuration dictionary."""
    return {
        "domain": {
            "domain_nc": "domain.nc",
            "varmap": {
                "mask": "mask",
                "frac": "frac",
                "area": "area",
                "lat": "lat",
                "lon": "lon",
            },
            "dims": {
                "x": "ni",
                "y": "nj",
            },
        },
        "options": {
            "nveg": 12,
            "nlayer": 3,
            "nnode": 3,
            "snow_band": 1,
            "nfrost": 1,
            "nfront": 3,
            "root_zones": 3,
            "treeline": False,
        },
        "output": {
            "history_nc": "history.nc",
            "nrec": 1,
            "step_s": 86400,
            "start_time": "2000-01-01T00:00:00Z",
            "time_units": "hours since 1900-01-01 00:00:0.0",
            "default_set": True,
            "variables": [],
            "fill_values": {},
            "Conventions": "CF-1.6",
            "title": "VIC image driver history",
            "institution": "",
        },
        "state": {
            "enabled": True,
            "state_nc": "state.nc",
            "variables": [],
        },
        "partition": {
            "policy": "contiguous",
            "owner_map": None,
            "min_rows_per_rank": 1,
        },
        "compute": {
            "mpi": {
                "enabled": None,
            },
        },
    }


def load_json(path: str) -> Dict[str, Any]:
    """Load a JSON file into a Python dictionary."""
    # Open the file with UTF-8 encoding.
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def deep_update(base: Dict[str, Any], other: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge dict `other` into dict `base` (non-destructive)."""
    # Start from a shallow copy of base.
    out = dict(base)
    for k, v in other.items():
        # If both sides are dicts, merge recursively.
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = deep_update(out[k], v)  # type: ignore[arg-type]
        else:
            # Otherwise override.
            out[k] = v
    return out
