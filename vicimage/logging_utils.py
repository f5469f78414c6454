# -*- coding: utf-8 -*-
"""Logging setup shared by the CLI and tools."""

# Import logging.
import logging

# Import sys for the stream handler.
import sys

_HANDLER_NAME = "vicimage-console"


def setup_logging(level: str = "INFO", rank: int = 0) -> logging.Logger:
    """Configure the 'vicimage' logger; the format carries the MPI rank."""
    logger = logging.getLogger("vicimage")
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    # Replace a previously installed console handler instead of stacking.
    for h in list(logger.handlers):
        if h.get_name() == _HANDLER_NAME:
            logger.removeHandler(h)
    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(
        f"%(asctime)s [rank {int(rank)}] %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
