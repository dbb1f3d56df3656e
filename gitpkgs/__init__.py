"""Dependency history of git repositories, stored in and read from SQLite."""

__version__ = "0.1.0"