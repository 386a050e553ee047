"""Insurance application lifecycle and rate-table resolution engine."""

__version__ = "1.0.0"
