"""
Error taxonomy for the detection pipeline.

Every error raised by the monitor, orchestrator, detector, or store adapters
derives from PipelineError so callers can catch the whole family at the
scheduling boundary while still distinguishing transient from fatal cases.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class SourceUnavailable(PipelineError):
    """The record source or a backing store could not be reached (transient)."""


class AlreadyRunning(PipelineError):
    """Another pass currently holds the PROCESSING status for this process name."""

    def __init__(self, process_name: str) -> None:
        super().__init__(f"A pass is already in progress for '{process_name}'")
        self.process_name = process_name


class Conflict(PipelineError):
    """A conditional checkpoint or alert write lost a race with a concurrent writer."""


class PartialFailure(PipelineError):
    """Only part of an alert batch could be accounted for."""

    def __init__(self, expected: int, written: int) -> None:
        super().__init__(f"Alert insert wrote {written} of {expected} rows")
        self.expected = expected
        self.written = written


class DetectionFailure(PipelineError):
    """The detector rejected its input."""


class InvalidEvent(PipelineError):
    """An insert notification payload could not be parsed."""


__all__ = [
    "PipelineError",
    "SourceUnavailable",
    "AlreadyRunning",
    "Conflict",
    "PartialFailure",
    "DetectionFailure",
    "InvalidEvent",
]
