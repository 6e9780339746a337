"""Affiliate holiday-property ingestion and search."""

__version__ = "0.1.0"
