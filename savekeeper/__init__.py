"""savekeeper - tiered retention for game save files."""

__version__ = "0.1.0"
