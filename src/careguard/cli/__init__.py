"""Command-line interface for careguard."""
