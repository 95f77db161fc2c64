"""Proximity search over the spatial index."""
