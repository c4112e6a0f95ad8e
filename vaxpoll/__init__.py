"""Polls vaccination appointment sites and notifies when new slots open."""

__version__ = "0.1.0"
