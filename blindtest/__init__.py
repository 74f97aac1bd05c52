"""Blind test builder: render music/image clips behind a shared countdown."""

__version__ = "0.1.0"
