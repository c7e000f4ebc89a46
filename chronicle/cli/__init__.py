"""Command-line interface for chronicle."""
