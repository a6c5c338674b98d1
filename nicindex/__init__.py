"""Local, read-optimised index over RIR delegation records."""

__version__ = "0.1.0"
