"""Configuration loading for Tier Router."""
