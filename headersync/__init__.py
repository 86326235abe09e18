"""Light-client block header synchronizer."""

__version__ = "0.1.0"
