"""Settlement optimization engine for group expense ledgers."""

__version__ = "0.1.0"
