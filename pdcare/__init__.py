"""Peritoneal dialysis clinic dashboard."""

__version__ = "0.1.0"
