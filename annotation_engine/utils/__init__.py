"""Utility helpers for geometry, statistics, locking and error handling."""
