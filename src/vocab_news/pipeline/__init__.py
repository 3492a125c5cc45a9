"""Checkpointed four-stage generation pipeline."""
