# -*- coding: utf-8 -*-
"""Output and state variable catalogs and the output-request parser.

The default variable set is built first; explicit requests (from the JSON
configuration or from `OUTVAR` lines of a global parameter file) then replace
the set of written variables. A request naming an unknown variable is a
configuration error.
"""

from __future__ import annotations

# Import dataclass for the variable record.
from dataclasses import dataclass, field

# Import stdlib helpers.
import logging
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

# Import local helpers.
from .errors import ConfigurationError
from .nc_io import STORAGE_DTYPES

logger = logging.getLogger("vicimage.output")


class AggType(str, Enum):
    """How sub-timestep values combine into one output value."""

    DEFAULT = "default"
    END = "end"
    BEG = "beg"
    SUM = "sum"
    AVG = "avg"
    MAX = "max"
    MIN = "min"


class WritePolicy(str, Enum):
    """Whether a variable is written to file."""

    WRITE = "write"
    SKIP = "skip"


DEFAULT_FORMAT = "%.4f"
DEFAULT_TYPE = "float"
DEFAULT_MULT = 1.0


@dataclass
class OutputVariable:
    """One named output variable and its write settings."""

    varname: str
    units: str
    dims: Tuple[str, ...] = ()
    aggtype: AggType = AggType.AVG
    write: WritePolicy = WritePolicy.SKIP
    format: str = DEFAULT_FORMAT
    type: str = DEFAULT_TYPE
    mult: float = DEFAULT_MULT
    description: str = ""
    default_write: bool = field(default=False, repr=False)

    @property
    def enabled(self) -> bool:
        return self.write is WritePolicy.WRITE


# (name, units, dims, aggtype, description, written by default)
HISTORY_CATALOG: Tuple[Tuple[str, str, Tuple[str, ...], AggType, str, bool], ...] = (
    ("OUT_PREC", "mm", (), AggType.SUM, "incoming precipitation", True),
    ("OUT_RAINF", "mm", (), AggType.SUM, "rainfall", False),
    ("OUT_SNOWF", "mm", (), AggType.SUM, "snowfall", False),
    ("OUT_EVAP", "mm", (), AggType.SUM, "total net evaporation", True),
    ("OUT_EVAP_BARE", "mm", (), AggType.SUM, "net evaporation from bare soil", False),
    ("OUT_EVAP_CANOP", "mm", (), AggType.SUM, "net evaporation from canopy interception", False),
    ("OUT_TRANSP_VEG", "mm", (), AggType.SUM, "net transpiration from vegetation", False),
    ("OUT_RUNOFF", "mm", (), AggType.SUM, "surface runoff", True),
    ("OUT_BASEFLOW", "mm", (), AggType.SUM, "baseflow out of the bottom layer", True),
    ("OUT_WDEW", "mm", (), AggType.END, "total moisture interception in canopy", True),
    ("OUT_SOIL_LIQ", "mm", ("layer",), AggType.END, "soil liquid moisture content per layer", True),
    ("OUT_SOIL_ICE", "mm", ("layer",), AggType.END, "soil ice content per layer", False),
    ("OUT_SOIL_MOIST", "mm", ("layer",), AggType.END, "soil total moisture content per layer", False),
    ("OUT_SOIL_TEMP", "C", ("layer",), AggType.AVG, "soil temperature per layer", False),
    ("OUT_SOIL_TNODE", "C", ("node",), AggType.AVG, "soil temperature per thermal node", False),
    ("OUT_FDEPTH", "cm", ("front",), AggType.END, "depth of freezing fronts", False),
    ("OUT_TDEPTH", "cm", ("front",), AggType.END, "depth of thawing fronts", False),
    ("OUT_SWE", "mm", (), AggType.END, "snow water equivalent in snow pack", True),
    ("OUT_SNOW_DEPTH", "cm", (), AggType.END, "depth of snow pack", False),
    ("OUT_SNOW_COVER", "fraction", (), AggType.END, "fractional area of snow cover", False),
    ("OUT_SWE_BAND", "mm", ("band",), AggType.END, "snow water equivalent per elevation band", False),
    ("OUT_AIR_TEMP", "C", (), AggType.AVG, "air temperature", True),
    ("OUT_SURF_TEMP", "C", (), AggType.AVG, "average surface temperature", True),
    ("OUT_RAD_TEMP", "K", (), AggType.AVG, "average radiative surface temperature", True),
    ("OUT_ALBEDO", "fraction", (), AggType.AVG, "average surface albedo", True),
    ("OUT_REL_HUMID", "%", (), AggType.AVG, "relative humidity", True),
    ("OUT_WIND", "m/s", (), AggType.AVG, "near-surface wind speed", True),
    ("OUT_NET_SHORT", "W/m2", (), AggType.AVG, "net downward shortwave flux", True),
    ("OUT_NET_LONG", "W/m2", (), AggType.AVG, "net downward longwave flux", False),
    ("OUT_R_NET", "W/m2", (), AggType.AVG, "net downward radiation flux", True),
    ("OUT_LATENT", "W/m2", (), AggType.AVG, "net upward latent heat flux", True),
    ("OUT_SENSIBLE", "W/m2", (), AggType.AVG, "net upward sensible heat flux", True),
    ("OUT_GRND_FLUX", "W/m2", (), AggType.AVG, "net heat flux into ground", True),
    ("OUT_AERO_RESIST", "s/m", (), AggType.AVG, "aerodynamic resistance", False),
)

# State snapshot variables; all are written when the state file is enabled.
STATE_CATALOG: Tuple[Tuple[str, str, Tuple[str, ...], str, str], ...] = (
    ("STATE_SOIL_MOISTURE", "mm", ("veg", "band", "layer"), "double", "soil total moisture"),
    ("STATE_SOIL_ICE", "mm", ("veg", "band", "layer", "frost"), "double", "soil ice per frost subarea"),
    ("STATE_CANOPY_WATER", "mm", ("veg", "band"), "double", "canopy interception storage"),
    ("STATE_SNOW_AGE", "1", ("veg", "band"), "int", "timesteps since last snowfall"),
    ("STATE_SNOW_MELT_STATE", "1", ("veg", "band"), "int", "melting-season flag"),
    ("STATE_SNOW_COVERAGE", "1", ("veg", "band"), "double", "snow covered fraction"),
    ("STATE_SNOW_WATER_EQUIVALENT", "m", ("veg", "band"), "double", "snow water equivalent"),
    ("STATE_SNOW_SURF_TEMP", "C", ("veg", "band"), "double", "snow surface layer temperature"),
    ("STATE_SNOW_PACK_TEMP", "C", ("veg", "band"), "double", "snow pack layer temperature"),
    ("STATE_SNOW_DENSITY", "kg m-3", ("veg", "band"), "double", "snow density"),
    ("STATE_ENERGY_T", "C", ("veg", "band", "node"), "double", "soil node temperatures"),
    ("STATE_FDEPTH", "m", ("veg", "band", "front"), "double", "freezing front depths"),
    ("STATE_TDEPTH", "m", ("veg", "band", "front"), "double", "thawing front depths"),
)

# Tokens accepted in OUTVAR lines, keyed by their upper-case spelling.
_TYPE_TOKENS = {
    "OUT_TYPE_DEFAULT": None,
    "OUT_TYPE_CHAR": "char",
    "OUT_TYPE_INT": "int",
    "OUT_TYPE_FLOAT": "float",
    "OUT_TYPE_DOUBLE": "double",
}
_AGG_TOKENS = {f"AGG_TYPE_{a.name}": a for a in AggType}


def create_output_list() -> Dict[str, OutputVariable]:
    """Return the full history catalog with default write flags applied."""
    out_data: Dict[str, OutputVariable] = {}
    for name, units, dims, agg, desc, default in HISTORY_CATALOG:
        out_data[name] = OutputVariable(
            varname=name,
            units=units,
            dims=dims,
            aggtype=agg,
            write=WritePolicy.WRITE if default else WritePolicy.SKIP,
            description=desc,
            default_write=default,
        )
    return out_data


def create_state_list() -> Dict[str, OutputVariable]:
    """Return the state catalog (all variables written, end-of-period)."""
    return {
        name: OutputVariable(
            varname=name,
            units=units,
            dims=dims,
            aggtype=AggType.END,
            write=WritePolicy.WRITE,
            type=nc_type,
            description=desc,
            default_write=True,
        )
        for name, units, dims, nc_type, desc in STATE_CATALOG
    }


def init_output_list(out_data: Mapping[str, OutputVariable], write: bool | WritePolicy, format: str,
                     type: str, mult: float) -> None:
    """Reset write flag, format, type and multiplier of every entry."""
    policy = _write_policy(write)
    nc_type = parse_type(type)
    for var in out_data.values():
        var.write = policy
        var.format = str(format)
        var.type = nc_type
        var.mult = float(mult)


def _write_policy(write: Any) -> WritePolicy:
    if isinstance(write, WritePolicy):
        return write
    if isinstance(write, str):
        try:
            return WritePolicy(write.lower())
        except ValueError:
            raise ConfigurationError(f"Unknown write policy '{write}'") from None
    return WritePolicy.WRITE if write else WritePolicy.SKIP


def parse_type(token: Optional[str], default: str = DEFAULT_TYPE) -> str:
    """Normalize a storage-type token ('float', 'OUT_TYPE_DOUBLE', '*')."""
    if token is None or str(token).strip() in ("", "*"):
        return default
    text = str(token).strip()
    if text.upper() in _TYPE_TOKENS:
        return _TYPE_TOKENS[text.upper()] or default
    if text.lower() in STORAGE_DTYPES:
        return text.lower()
    raise ConfigurationError(f"Unknown output storage type '{token}'")


def parse_aggtype(token: Optional[str], default: AggType) -> AggType:
    """Normalize an aggregation token ('sum', 'AGG_TYPE_SUM', '*')."""
    if token is None or str(token).strip() in ("", "*"):
        return default
    text = str(token).strip()
    if text.upper() in _AGG_TOKENS:
        agg = _AGG_TOKENS[text.upper()]
    else:
        try:
            agg = AggType(text.lower())
        except ValueError:
            raise ConfigurationError(f"Unknown aggregation type '{token}'") from None
    return default if agg is AggType.DEFAULT else agg


def parse_output_info(lines: Iterable[str]) -> List[Dict[str, Any]]:
    """Parse `OUTVAR name [format [type [mult [aggtype]]]]` lines.

    Other keys and comments are ignored; '*' keeps the default for a field.
    """
    requests: List[Dict[str, Any]] = []
    for lineno, raw in enumerate(lines, start=1):
        line = raw.split("#", 1)[0].strip()
        if not line:
            continue
        tokens = line.split()
        if tokens[0].upper() != "OUTVAR":
            continue
        if len(tokens) < 2:
            raise ConfigurationError(f"line {lineno}: OUTVAR without a variable name")
        req: Dict[str, Any] = {"name": tokens[1]}
        keys = ("format", "type", "mult", "aggtype")
        for key, tok in zip(keys, tokens[2:]):
            if tok == "*":
                continue
            if key == "mult":
                try:
                    req[key] = float(tok)
                except ValueError:
                    raise ConfigurationError(f"line {lineno}: invalid multiplier '{tok}'") from None
            else:
                req[key] = tok
        requests.append(req)
    return requests


def apply_output_requests(out_data: Mapping[str, OutputVariable], requests: Iterable[Any],
                          default_set: bool = True) -> List[str]:
    """Apply explicit requests on top of the default set.

    With no requests the catalog defaults stay in place (or nothing is written
    when `default_set` is False). With requests, only the requested variables
    are written, each with its optional format/type/mult/aggtype overrides.
    Returns the names of the variables that will be written.
    """
    reqs = [r if isinstance(r, Mapping) else {"name": str(r)} for r in requests]
    if reqs:
        for var in out_data.values():
            var.write = WritePolicy.SKIP
        for req in reqs:
            name = str(req.get("name", "")).strip()
            if name not in out_data:
                raise ConfigurationError(f"Unknown output variable '{name}'")
            var = out_data[name]
            var.write = WritePolicy.WRITE
            if req.get("format") not in (None, "*"):
                var.format = str(req["format"])
            var.type = parse_type(req.get("type"), default=var.type)
            if req.get("mult") not in (None, "*"):
                var.mult = float(req["mult"])
            var.aggtype = parse_aggtype(req.get("aggtype"), default=var.aggtype)
    elif not default_set:
        for var in out_data.values():
            var.write = WritePolicy.SKIP
    written = [name for name, var in out_data.items() if var.enabled]
    logger.debug("Output variables selected: %s", ", ".join(written) or "(none)")
    return written


def build_output_list(out_cfg: Mapping[str, Any], param_lines: Optional[Iterable[str]] = None) -> Dict[str, OutputVariable]:
    """Build the history variable list for a run from configuration."""
    out_data = create_output_list()
    requests = list(out_cfg.get("variables", []) or [])
    if param_lines is not None:
        requests.extend(parse_output_info(param_lines))
    apply_output_requests(out_data, requests, default_set=bool(out_cfg.get("default_set", True)))
    return out_data


def build_state_list(state_cfg: Mapping[str, Any]) -> Dict[str, OutputVariable]:
    """Build the state variable list, optionally restricted to a subset."""
    state_data = create_state_list()
    subset = state_cfg.get("variables") or []
    if subset:
        apply_output_requests(state_data, subset)
    return state_data
