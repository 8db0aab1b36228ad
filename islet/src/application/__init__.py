"""Application layer for Islet."""
