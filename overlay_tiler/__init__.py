"""Serve Web-Mercator tiles cut from rotated, georeferenced overlay images."""

__version__ = "0.1.0"
