"""Checkpoints of the primary variables."""
