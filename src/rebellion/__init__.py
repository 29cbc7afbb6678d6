"""Rules-tracking engine for a tabletop rebellion organization."""

__version__ = "0.1.0"
