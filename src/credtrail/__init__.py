"""CredTrail LTI 1.3 launch engine."""

__version__ = "0.1.0"
