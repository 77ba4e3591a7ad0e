"""Utility functions and shared constants for porefv."""
