"""Coverwatch — vendor insurance renewal escalation and compliance rules."""

__version__ = "0.1.0"
