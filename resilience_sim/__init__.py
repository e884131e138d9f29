"""Resilience pattern simulator: a tick-driven request pipeline model."""

__version__ = "0.1.0"
