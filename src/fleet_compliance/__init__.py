"""Drone fleet compliance engine."""

__version__ = "1.0.0"
