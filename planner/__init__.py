"""Personal task planner: backlog, calendar days and buckets."""

__version__ = "0.1.0"
