"""Progression engine: achievements, daily streaks, and exactly-once rewards"""

__version__ = "1.0.0"
