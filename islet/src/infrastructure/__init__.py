"""Infrastructure for Islet: logging and settings storage."""
