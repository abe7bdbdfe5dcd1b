"""Grounded question answering client for Dream of the Red Chamber."""

__version__ = "0.1.0"
