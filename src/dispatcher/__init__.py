"""Adaptive Dispatcher - learning executor selection with quality-gated retries."""

__version__ = "0.1.0"
