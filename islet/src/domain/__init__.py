"""Domain layer for Islet: surface state models and the transition engine."""
