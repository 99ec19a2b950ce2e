"""Classroom session scheduling for vocational schools."""

__version__ = "0.1.0"
