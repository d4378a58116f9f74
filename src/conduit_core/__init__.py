"""Conduit core: task, escrow and reputation coordination for agent marketplaces."""

__version__ = "0.1.0"
