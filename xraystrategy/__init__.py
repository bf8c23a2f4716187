"""Sampling, exception formatting and context-missing strategies for tracing clients."""

__version__ = "0.1.0"