"""AURA: session lifecycle, beacon matching, and commit coordination
for a two-sided agent marketplace."""

__version__ = "0.1.0"
