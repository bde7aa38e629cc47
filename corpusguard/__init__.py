"""Distributed per-client rate limiting for the document corpus service."""

__version__ = "0.1.0"
