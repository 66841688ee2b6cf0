"""
Leeward Package

Total propagated uncertainty (TPU) for airborne lidar returns. Each return is
traced back through the lidar equation to the platform trajectory and the
sensor calibration, and the one-sigma errors of every input are propagated
to a per-return covariance in the mapping frame.

Coordinate System Chain:
    Return (mapping ENU) → Body Frame (FRD) → Sensor Frame → range, scan angle

Conventions:
    - Trajectory: projected position, attitude in local NED (degrees)
    - SBET notation: Forward-Right-Down body frame
    - Sensor: zero scan angle points down, positive looks right

Supported Formats:
    - CSV trajectory files in the mapping frame
    - Binary SBET trajectory files, projected with pyproj
    - YAML calibration files
"""

from .errors import (
    LeewardError,
    ConstructionError,
    MalformedTrajectoryError,
    MalformedConfigError,
    EngineClosedError,
    PointError,
    OutOfRangeError,
    MissingNormalError,
    DegenerateNormalError,
    NumericalError,
)
from .config import CalibrationConfig, ErrorBudget, LeverArm, RollPitchYaw, load_config
from .trajectory import PlatformState, Trajectory, TrajectoryRecord, SBETReader, load_trajectory
from .transforms import LidarReturn, BodyFrameResult, incidence_angle, to_body_frame
from .partials import Dimension, Variable, numerical_jacobian, partial_check
from .measurement import (
    Measurement,
    MeasurementResult,
    UncertaintyResult,
    TpuResult,
    Propagation,
    fit_to_plane_in_body_frame,
)
from .engine import Engine, BatchResult
from .adjust import Adjust, AdjustmentRecord

__version__ = "0.1.0"
__all__ = [
    "LeewardError",
    "ConstructionError",
    "MalformedTrajectoryError",
    "MalformedConfigError",
    "EngineClosedError",
    "PointError",
    "OutOfRangeError",
    "MissingNormalError",
    "DegenerateNormalError",
    "NumericalError",
    "CalibrationConfig",
    "ErrorBudget",
    "LeverArm",
    "RollPitchYaw",
    "load_config",
    "PlatformState",
    "Trajectory",
    "TrajectoryRecord",
    "SBETReader",
    "load_trajectory",
    "LidarReturn",
    "BodyFrameResult",
    "incidence_angle",
    "to_body_frame",
    "Dimension",
    "Variable",
    "numerical_jacobian",
    "partial_check",
    "Measurement",
    "MeasurementResult",
    "UncertaintyResult",
    "TpuResult",
    "Propagation",
    "fit_to_plane_in_body_frame",
    "Engine",
    "BatchResult",
    "Adjust",
    "AdjustmentRecord",
]
