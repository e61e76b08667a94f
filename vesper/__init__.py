"""Vesper: feed ingestion and synchronization engine for an RSS/Atom reader."""

__version__ = "0.1.0"
