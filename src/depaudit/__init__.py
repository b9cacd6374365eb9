"""Dependency security analysis for npm packages."""

__version__ = "0.1.0"
