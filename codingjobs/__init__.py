"""Coding job distribution, background job queue and agreement statistics."""

__version__ = "0.1.0"
