"""Command-line helpers shared by chronicle commands."""
