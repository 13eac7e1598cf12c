"""Command-line interface for Tier Router."""
