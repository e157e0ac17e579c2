"""Live dashboard for a shredstream proxy."""

__version__ = "0.1.0"
