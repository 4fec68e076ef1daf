"""Headless map surface for the city problems map."""

__version__ = "0.1.0"
