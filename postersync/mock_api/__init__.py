"""Mock poster API for development and end-to-end tests."""
