# Copyright (c) 2025 massivedatascience
# Licensed under the Apache License, Version 2.0

"""
Exceptions raised by the canopy mean-shift clusterer.
"""

from typing import Optional


class MeanShiftError(Exception):
    """Base class for clusterer errors.

    ``iteration`` is the driver iteration at which the error surfaced, or
    ``None`` when it was raised outside a driver run.
    """

    def __init__(self, message: str, iteration: Optional[int] = None):
        super(MeanShiftError, self).__init__(message)
        self.iteration = iteration

    def __str__(self):
        message = super(MeanShiftError, self).__str__()
        if self.iteration is None:
            return message
        return f"{message} (iteration {self.iteration})"


class MalformedRecord(MeanShiftError, ValueError):
    """Bytes could not be decoded into a complete record."""


class InvalidConfiguration(MeanShiftError, ValueError):
    """Clustering parameters were rejected before any pass ran."""


class PassFailure(MeanShiftError):
    """Spark could not complete a pass, even after resubmission."""

    def __init__(self, message: str, pass_name: str, iteration: Optional[int] = None, attempts: int = 1):
        super(PassFailure, self).__init__(message, iteration)
        self.pass_name = pass_name
        self.attempts = attempts


class DistanceMeasureFault(MeanShiftError):
    """The distance measure raised or returned an invalid value."""


class SnapshotFailure(MeanShiftError):
    """A canopy snapshot or assignment output could not be written."""

    def __init__(self, message: str, path: str, iteration: Optional[int] = None):
        super(SnapshotFailure, self).__init__(message, iteration)
        self.path = path
