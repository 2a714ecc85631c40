"""Command-line interface for mutseldp."""
