"""Command builders for the compile and link stages."""

from .c import CBuilder
from .rust import CargoBuilder

__all__ = ["CBuilder", "CargoBuilder"]
