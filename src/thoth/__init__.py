"""Thoth package root."""

import logging

from thoth.exceptions import NeverThrown, ThothError
from thoth.invariants import never

__all__ = ["__version__", "NeverThrown", "ThothError", "never"]

__version__ = "0.3.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())
