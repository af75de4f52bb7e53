"""Utility modules for pangolin."""
