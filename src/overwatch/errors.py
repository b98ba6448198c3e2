"""
Exception hierarchy for Overwatch.
"""


class OverwatchError(Exception):
    """Base class for all Overwatch errors."""


class InvalidEventError(OverwatchError):
    """An incoming event is malformed or misses a required field."""


class InspectionError(OverwatchError):
    """The process table could not be inspected at all."""


class PersistenceError(OverwatchError):
    """A write-through to the durable store failed."""
