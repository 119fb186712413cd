"""Configuration package for the poster sync client."""
