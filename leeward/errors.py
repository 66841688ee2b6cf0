"""
Exceptions raised by the leeward engine.

Two families:
    - ConstructionError: fatal, raised while loading the trajectory or the
      calibration configuration. No partial engine is usable afterwards.
    - PointError: recoverable, raised by a single query. Callers skip the
      point and continue with the rest of the cloud.
"""

from typing import Optional


class LeewardError(Exception):
    """Base class for all leeward errors."""


class ConstructionError(LeewardError):
    """The engine (or one of its inputs) could not be built."""


class MalformedTrajectoryError(ConstructionError, ValueError):
    """Trajectory file could not be parsed or is not strictly time-ordered."""


class MalformedConfigError(ConstructionError, ValueError):
    """Calibration configuration is unreadable or holds invalid values."""


class EngineClosedError(LeewardError):
    """A query was issued after the engine was released."""


class PointError(LeewardError):
    """A single lidar return could not be processed."""


class OutOfRangeError(PointError):
    """Query time falls outside the trajectory's covered interval."""

    def __init__(self, time: float, start: Optional[float] = None, end: Optional[float] = None):
        self.time = time
        self.start = start
        self.end = end
        if start is not None and end is not None:
            message = f"time {time:.6f} outside trajectory range [{start:.6f}, {end:.6f}]"
        else:
            message = f"time {time:.6f} outside trajectory range"
        super().__init__(message)


class MissingNormalError(PointError):
    """A surface normal is required by the query but was not supplied."""


class DegenerateNormalError(PointError):
    """The surface normal (or ray) is zero-length or not finite."""


class NumericalError(PointError):
    """The propagation produced, or would produce, a non-finite result."""
