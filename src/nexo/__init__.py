"""Nexo price aggregation service: crypto, forex and VES quotes plus price alerts."""

__version__ = "1.0.0"
