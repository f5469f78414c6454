# -*- coding: utf-8 -*-
"""Exception hierarchy for the VIC image I/O layer.

Lifecycle and shape errors are unrecoverable at this layer: they are raised
with the file path, variable name and offending indices and left to the
caller to log and abort the run.
"""


class VicImageError(Exception):
    """Base exception for all vicimage errors."""
    pass


class ConfigurationError(VicImageError, ValueError):
    """Invalid configuration (unknown output variable, storage type, policy)."""
    pass


class DomainIntegrityError(VicImageError):
    """Malformed or empty active-cell mask, or inconsistent grid shape."""
    pass


class SchemaMismatchError(VicImageError):
    """Variable references an undeclared dimension or an incompatible type."""
    pass


class ShapeError(VicImageError):
    """Requested read/write window exceeds the declared extents."""
    pass


class VariableNotFoundError(VicImageError, KeyError):
    """Variable name is absent from the file."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message.
        return str(self.args[0]) if self.args else ""


class NotOpenError(VicImageError):
    """Write attempted against a closed file handle."""
    pass


class DoubleOpenError(VicImageError):
    """File handle (or physical file) is already open."""
    pass


class IoError(VicImageError, OSError):
    """Underlying storage failure (surfaced, never retried)."""
    pass


class ParameterError(VicImageError, ValueError):
    """Invalid per-cell parameter structure (e.g. vegetation cover)."""
    pass
