"""Copyflow: webhook-driven copy generation runs."""

__version__ = "1.0.0"
