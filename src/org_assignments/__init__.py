"""Org Assignments - position assignment, delegation resolution and occupant swaps."""

__version__ = "0.4.0"
