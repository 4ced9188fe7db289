"""A small RSS feed aggregator library backed by a local SQLite database."""

__version__ = "0.1.0"