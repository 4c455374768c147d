"""Progress reporting and run metrics."""

from .metrics import ErrorEntry, FetchMetrics
from .progress import ProgressChannel, ProgressEvent

__all__ = ["ErrorEntry", "FetchMetrics", "ProgressChannel", "ProgressEvent"]
