"""Savannah's emotional relationship engine."""

__version__ = "0.1.0"
