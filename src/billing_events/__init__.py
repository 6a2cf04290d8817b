"""Billing lifecycle event engine."""

__version__ = "0.1.0"
