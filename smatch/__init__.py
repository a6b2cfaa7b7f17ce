"""Semantic key matching and column transfer between spreadsheets."""

__version__ = "0.1.0"
