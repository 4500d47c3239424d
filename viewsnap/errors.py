"""Exception types raised by the snapshot engine."""

from __future__ import annotations


class SnapshotError(Exception):
    """Base class for all snapshot errors."""


class EmptyDimensionError(SnapshotError, ValueError):
    """A capture or buffer was requested with zero width or height."""


class ReferenceMissingError(SnapshotError, FileNotFoundError):
    """The reference image could not be obtained."""


class DecodeError(ReferenceMissingError):
    """An image file exists but is not a decodable PNG."""


class IncompatibleBufferError(SnapshotError, RuntimeError):
    """Two buffers share format and size but not their memory layout.

    This only happens when the reference was produced with different
    rendering settings, so it is treated as an environment error rather
    than a test failure.
    """


class ConfigurationError(SnapshotError, ValueError):
    """Snapshot configuration is missing or invalid."""
