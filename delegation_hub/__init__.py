"""Delegation Hub - coordinates work delegated between specialist agents."""

__version__ = "1.0.0"
