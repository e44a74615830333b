"""Persistence API consumed by the LTI launch engine."""
