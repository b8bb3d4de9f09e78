"""Tracemark package root."""

from tracemark.exceptions import NeverThrown, TracemarkError
from tracemark.invariants import never

__all__ = ["__version__", "NeverThrown", "TracemarkError", "never"]

__version__ = "0.1.0"
