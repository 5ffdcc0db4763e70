"""
Exceptions raised by the lipidomics pipeline.

Every error is terminal for the pipeline branch (ion mode) it occurs in.
Messages name the stage and the offending sample, feature or column so the
input file can be fixed.
"""


class LipidomicsError(Exception):
    """Base exception for lipidomics pipeline failures."""

    pass


class MalformedInputError(LipidomicsError):
    """Raised when an input table is unparseable or lacks identity columns."""

    pass


class EmptyDatasetError(LipidomicsError):
    """Raised when no features or no samples are parsed from the input."""

    pass


class UnmatchedSampleError(LipidomicsError):
    """Raised when the sample annotation table lacks required columns."""

    pass


class MissingStandardError(LipidomicsError):
    """Raised when internal standard normalization finds no standard."""

    pass


class InvalidValueError(LipidomicsError):
    """Raised when non-positive values are log transformed."""

    pass


class InsufficientGroupsError(LipidomicsError):
    """Raised when a compared group has too few samples."""

    pass
