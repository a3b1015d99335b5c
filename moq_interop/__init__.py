"""Interop test planning, execution and result aggregation for MoQT implementations."""

__version__ = "0.3.0"
