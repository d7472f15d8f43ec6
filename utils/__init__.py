"""Input validation and output formatting helpers for the CLI."""
