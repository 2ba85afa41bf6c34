"""Data-access layer for a book-sharing service."""

__version__ = "0.1.0"
