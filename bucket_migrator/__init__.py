"""Bulk object migration between storage buckets."""

__version__ = "0.1.0"
