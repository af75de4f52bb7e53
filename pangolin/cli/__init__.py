"""Command-line interface for pangolin."""
