"""Lease-based generation task queue with a checkpointed article pipeline."""

__version__ = "0.1.0"
