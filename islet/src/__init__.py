"""Islet application sources."""
