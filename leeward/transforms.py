"""
Frame transforms for lidar returns.

Coordinate System Definitions:
    - Mapping: projected East-North-Up grid (easting, northing, height)
    - Navigation: North-East-Down (local tangent plane)
    - Body: Forward-Right-Down (SBET/aircraft convention)
    - Sensor: body frame rotated by the boresight, origin at the scanner

Rotation Conventions:
    - All rotations use right-hand rule
    - Euler angles applied in ZYX order (yaw, pitch, roll)
    - Angles are degrees at the API, radians internally

Scanner model: a return at range d, scan angle a and along-track angle phi
lies at d * (sin(phi), cos(phi) sin(a), cos(phi) cos(a)) in the sensor frame,
so a zero scan angle points straight down and positive angles look to the
right of the flight line.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from .config import CalibrationConfig
from .errors import DegenerateNormalError, NumericalError
from .rotations import T_enu_ned, rotation_matrix
from .trajectory import PlatformState

logger = logging.getLogger(__name__)

# Below this length a vector has no usable direction.
MIN_VECTOR_NORM = 1e-12


@dataclass(frozen=True)
class LidarReturn:
    """
    A single lidar return.

    Attributes:
        x, y, z: Position in the mapping frame (meters)
        scan_angle: Scan angle as recorded by the sensor (degrees)
        gps_time: GPS time of the return (seconds)
        normal: Optional surface normal in the mapping frame
    """
    x: float
    y: float
    z: float
    scan_angle: float
    gps_time: float
    normal: Optional[Tuple[float, float, float]] = None

    @property
    def position(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z])


@dataclass(frozen=True)
class BodyFrameResult:
    """Return position in the sensor body frame and the platform attitude (degrees)."""
    x: float
    y: float
    z: float
    roll: float
    pitch: float
    yaw: float


def body_to_mapping(roll: float, pitch: float, yaw: float) -> np.ndarray:
    """
    Rotation matrix from body frame to the ENU mapping frame.

    Args:
        roll, pitch, yaw: Platform attitude in radians

    Returns:
        3x3 rotation matrix
    """
    return T_enu_ned() @ rotation_matrix(roll, pitch, yaw)


def mapping_to_sensor(
    point: np.ndarray,
    state: PlatformState,
    config: CalibrationConfig,
) -> np.ndarray:
    """
    Vector from the scanner origin to a mapping-frame point, in the sensor frame.

    Transformation chain:
        1. Translate to platform-centered mapping coordinates
        2. Rotate mapping to body frame
        3. Remove the lever arm
        4. Undo the boresight rotation
    """
    R_b2m = body_to_mapping(*state.attitude)
    point_body = R_b2m.T @ (point - state.position)
    return config.boresight.as_matrix().T @ (point_body - config.lever_arm.as_array())


def to_body_frame(
    state: PlatformState,
    point: "LidarReturn",
    config: CalibrationConfig,
) -> BodyFrameResult:
    """
    Transform a lidar return into the sensor body frame.

    Args:
        state: Platform state interpolated at the return time
        point: Lidar return in the mapping frame
        config: Calibration supplying boresight and lever arm

    Returns:
        BodyFrameResult with the body-frame position and platform attitude
    """
    x, y, z = mapping_to_sensor(point.position, state, config)
    return BodyFrameResult(
        x=float(x),
        y=float(y),
        z=float(z),
        roll=state.roll,
        pitch=state.pitch,
        yaw=state.yaw,
    )


def unit_vector(vector: Sequence[float], name: str = 'vector') -> np.ndarray:
    """
    Normalize a 3-vector.

    Raises:
        DegenerateNormalError: if the vector is not finite or has no length
    """
    v = np.asarray(vector, dtype=np.float64)
    if v.shape != (3,) or not np.all(np.isfinite(v)):
        raise DegenerateNormalError(f"{name} must be a finite 3-vector, got {vector}")
    norm = np.linalg.norm(v)
    if norm < MIN_VECTOR_NORM:
        raise DegenerateNormalError(f"{name} has zero length")
    return v / norm


def incidence_angle(ray: Sequence[float], normal: Sequence[float]) -> float:
    """
    Angle between an outgoing lidar ray and the surface normal, in degrees.

    A ray hitting the surface head-on (anti-parallel to the normal) gives 0°,
    a grazing ray gives 90°. The result is always within [0, 180].
    """
    r = unit_vector(ray, 'ray')
    n = unit_vector(normal, 'normal')
    cos_theta = np.clip(-np.dot(r, n), -1.0, 1.0)
    return float(np.degrees(np.arccos(cos_theta)))


def sensor_geometry(vector: np.ndarray) -> Tuple[float, float, float]:
    """
    Decompose a sensor-frame vector into scanner observations.

    Returns:
        (range in meters, scan angle in radians, along-track angle in radians)

    Raises:
        NumericalError: if the return coincides with the scanner origin
    """
    distance = float(np.linalg.norm(vector))
    if not np.isfinite(distance) or distance < MIN_VECTOR_NORM:
        raise NumericalError("Return coincides with the scanner origin, range is zero")
    scan_angle = float(np.arctan2(vector[1], vector[2]))
    along_track = float(np.arcsin(np.clip(vector[0] / distance, -1.0, 1.0)))
    return distance, scan_angle, along_track


def sensor_direction(scan_angle: float, along_track: float) -> np.ndarray:
    """Unit pointing vector of the scanner in the sensor frame (angles in radians)."""
    cp = np.cos(along_track)
    return np.array([np.sin(along_track), cp * np.sin(scan_angle), cp * np.cos(scan_angle)])


def sensor_direction_scan_partial(scan_angle: float, along_track: float) -> np.ndarray:
    """Derivative of sensor_direction with respect to the scan angle."""
    cp = np.cos(along_track)
    return np.array([0.0, cp * np.cos(scan_angle), -cp * np.sin(scan_angle)])
