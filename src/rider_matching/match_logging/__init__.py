"""Logging configuration for the matching engine."""

from .setup import setup_logging

__all__ = ["setup_logging"]
