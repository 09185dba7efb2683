"""Core primitives shared across backend layers."""

from .progress import ProgressReporter, ProgressSink, stage_progress

__all__ = ["ProgressReporter", "ProgressSink", "stage_progress"]
