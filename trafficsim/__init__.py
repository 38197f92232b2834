"""Trafficsim: a controllable HTTP traffic generator."""

__version__ = "1.0.0"
