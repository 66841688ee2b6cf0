"""
Uncertainty propagation through the lidar equation.

The lidar equation places a return in the mapping frame:

    p = g + A @ C(r, p, y) @ (B(br, bp, by) @ s(d, a) + l)

    g: GNSS position of the platform (mapping frame)
    A: NED to ENU axis swap
    C: body to NED rotation from the interpolated attitude
    B: boresight rotation (sensor to body)
    s: scanner vector for range d and scan angle a
    l: lever arm (body frame)

Input errors are assumed uncorrelated, so the output covariance is
J @ diag(sigma²) @ J.T with J the analytic 3x14 Jacobian. When a surface
normal is known, the laser footprint adds an error along the surface
tangent that grows with tan(incidence) (Schaer et al., 2007).

All four query shapes are projections of one Propagation.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from .config import CalibrationConfig
from .errors import NumericalError
from .partials import NUM_VARIABLES, Dimension, Variable
from .rotations import R3, T_enu_ned, rotation_matrix, rotation_matrix_partials
from .trajectory import PlatformState
from .transforms import (
    MIN_VECTOR_NORM,
    BodyFrameResult,
    LidarReturn,
    incidence_angle,
    mapping_to_sensor,
    sensor_direction,
    sensor_direction_scan_partial,
    sensor_geometry,
    to_body_frame,
    unit_vector,
)

logger = logging.getLogger(__name__)

# |cos(incidence)| below this is treated as grazing and rejected.
GRAZING_EPSILON = 1e-6

GNSS = slice(Variable.GNSS_X, Variable.GNSS_Z + 1)
IMU = slice(Variable.IMU_ROLL, Variable.IMU_YAW + 1)
BORESIGHT = slice(Variable.BORESIGHT_ROLL, Variable.BORESIGHT_YAW + 1)
LEVER_ARM = slice(Variable.LEVER_ARM_X, Variable.LEVER_ARM_Z + 1)


@dataclass(frozen=True)
class MeasurementResult:
    horizontal_uncertainty: float
    vertical_uncertainty: float
    total_uncertainty: float
    incidence_angle: Optional[float]


@dataclass(frozen=True)
class UncertaintyResult:
    x: float
    y: float
    horizontal: float
    vertical: float
    total: float
    incidence_angle: Optional[float]


@dataclass(frozen=True)
class TpuResult:
    sigma_x: float
    sigma_y: float
    sigma_horizontal: float
    sigma_vertical: float
    sigma_magnitude: float
    incidence_angle: Optional[float]


def _sqrt(variance: float) -> float:
    return float(np.sqrt(max(0.0, variance)))


@dataclass(frozen=True, eq=False)
class Propagation:
    """
    Propagated mapping-frame covariance of one return.

    Horizontal is the x/y plane of the mapping frame, vertical its z axis.
    """
    covariance: np.ndarray
    incidence_angle: Optional[float] = None

    @property
    def sigma_x(self) -> float:
        return _sqrt(self.covariance[0, 0])

    @property
    def sigma_y(self) -> float:
        return _sqrt(self.covariance[1, 1])

    @property
    def horizontal(self) -> float:
        return _sqrt(self.covariance[0, 0] + self.covariance[1, 1])

    @property
    def vertical(self) -> float:
        return _sqrt(self.covariance[2, 2])

    @property
    def magnitude(self) -> float:
        return _sqrt(np.trace(self.covariance))

    def to_measurement_result(self) -> MeasurementResult:
        return MeasurementResult(
            horizontal_uncertainty=self.horizontal,
            vertical_uncertainty=self.vertical,
            total_uncertainty=self.magnitude,
            incidence_angle=self.incidence_angle,
        )

    def to_uncertainty_result(self) -> UncertaintyResult:
        return UncertaintyResult(
            x=self.sigma_x,
            y=self.sigma_y,
            horizontal=self.horizontal,
            vertical=self.vertical,
            total=self.magnitude,
            incidence_angle=self.incidence_angle,
        )

    def to_tpu_result(self) -> TpuResult:
        return TpuResult(
            sigma_x=self.sigma_x,
            sigma_y=self.sigma_y,
            sigma_horizontal=self.horizontal,
            sigma_vertical=self.vertical,
            sigma_magnitude=self.magnitude,
            incidence_angle=self.incidence_angle,
        )


def lidar_equation(values: np.ndarray, along_track: float) -> np.ndarray:
    """
    Evaluate the lidar equation.

    Args:
        values: The fourteen inputs indexed by Variable (angles in radians)
        along_track: Along-track pointing angle of the scanner (radians)

    Returns:
        Mapping-frame position of the return
    """
    C = rotation_matrix(*values[IMU])
    B = rotation_matrix(*values[BORESIGHT])
    s = values[Variable.RANGE] * sensor_direction(values[Variable.SCAN_ANGLE], along_track)
    return values[GNSS] + T_enu_ned() @ C @ (B @ s + values[LEVER_ARM])


def footprint_covariance(
    ray: np.ndarray,
    normal: np.ndarray,
    distance: float,
    divergence: float,
) -> np.ndarray:
    """
    Covariance added by the laser footprint on an inclined surface.

    sigma = distance * divergence / 4 * tan(incidence), along the surface
    tangent in the plane of incidence.

    Args:
        ray: Unit ray direction (mapping frame)
        normal: Unit surface normal (mapping frame)
        distance: Range in meters
        divergence: Full beam divergence in radians

    Raises:
        NumericalError: at grazing incidence
    """
    dot = float(np.dot(ray, normal))
    cos_theta = abs(dot)
    if cos_theta < GRAZING_EPSILON:
        raise NumericalError(f"Grazing incidence (cos = {cos_theta:.3e}), footprint is unbounded")

    tangent = ray - dot * normal
    sin_theta = float(np.linalg.norm(tangent))
    if sin_theta < MIN_VECTOR_NORM or divergence == 0:
        return np.zeros((3, 3))

    sigma = distance * divergence / 4.0 * sin_theta / cos_theta
    t = tangent / sin_theta
    return sigma ** 2 * np.outer(t, t)


class Measurement:
    """
    A lidar return bound to its platform state and calibration.

    Range, scan angle and along-track angle are derived from the geometry at
    construction. With use_las_scan_angle the recorded scan angle replaces the
    derived one, and the backconverted point no longer matches the return
    exactly; the difference is the misalignment used for adjustment.
    """

    def __init__(self, state: PlatformState, point: LidarReturn, config: CalibrationConfig):
        self.state = state
        self.point = point
        self.config = config

        vector = mapping_to_sensor(point.position, state, config)
        self.range, scan_angle, self.along_track = sensor_geometry(vector)
        if config.use_las_scan_angle:
            scan_angle = float(np.deg2rad(point.scan_angle))
        self.scan_angle = scan_angle

        values = np.empty(NUM_VARIABLES)
        values[GNSS] = state.position
        values[IMU] = state.attitude
        values[BORESIGHT] = config.boresight.as_radians()
        values[Variable.RANGE] = self.range
        values[Variable.SCAN_ANGLE] = scan_angle
        values[LEVER_ARM] = config.lever_arm.as_array()
        self._values = values

    def values(self) -> np.ndarray:
        """Copy of the lidar equation inputs, indexed by Variable."""
        return self._values.copy()

    def evaluate(self, values: np.ndarray) -> np.ndarray:
        return lidar_equation(values, self.along_track)

    def with_config(self, config: CalibrationConfig) -> "Measurement":
        """
        Same observations under a different boresight and lever arm.
        """
        measurement = copy.copy(self)
        measurement.config = config
        measurement._values = self._values.copy()
        measurement._values[BORESIGHT] = config.boresight.as_radians()
        measurement._values[LEVER_ARM] = config.lever_arm.as_array()
        return measurement

    def body_frame(self) -> BodyFrameResult:
        return to_body_frame(self.state, self.point, self.config)

    def backconverted_point(self) -> np.ndarray:
        """Position of the return recomputed through the lidar equation."""
        return self.evaluate(self._values)

    def misalignment(self) -> np.ndarray:
        """Backconverted point minus the recorded point."""
        return self.backconverted_point() - self.point.position

    def ray_direction(self) -> np.ndarray:
        """Unit direction of the outgoing ray in the mapping frame."""
        C = rotation_matrix(*self._values[IMU])
        B = rotation_matrix(*self._values[BORESIGHT])
        return T_enu_ned() @ C @ B @ sensor_direction(self.scan_angle, self.along_track)

    def jacobian(self) -> np.ndarray:
        """
        Analytic partial derivatives of the lidar equation.

        Returns:
            3x14 matrix, rows are Dimension, columns are Variable
        """
        values = self._values
        A = T_enu_ned()
        attitude = values[IMU]
        boresight = values[BORESIGHT]
        d = values[Variable.RANGE]
        a = values[Variable.SCAN_ANGLE]

        C = rotation_matrix(*attitude)
        B = rotation_matrix(*boresight)
        M = A @ C
        u = sensor_direction(a, self.along_track)
        s = d * u
        w = B @ s + values[LEVER_ARM]

        J = np.zeros((3, NUM_VARIABLES))
        J[:, GNSS] = np.eye(3)
        for k, dC in enumerate(rotation_matrix_partials(*attitude)):
            J[:, Variable.IMU_ROLL + k] = A @ dC @ w
        for k, dB in enumerate(rotation_matrix_partials(*boresight)):
            J[:, Variable.BORESIGHT_ROLL + k] = M @ dB @ s
        J[:, Variable.RANGE] = M @ B @ u
        J[:, Variable.SCAN_ANGLE] = M @ B @ (d * sensor_direction_scan_partial(a, self.along_track))
        J[:, LEVER_ARM] = M
        return J

    def partial(self, dimension: Dimension, variable: Variable) -> float:
        return float(self.jacobian()[dimension, variable])

    def variances(self) -> np.ndarray:
        """
        Variances of the lidar equation inputs (radians² for angles).

        Trajectory-supplied sigmas, scaled by the config, take precedence
        over the config's gnss and imu budget.
        """
        err = self.config.error
        if self.state.position_sigma is not None:
            position = np.asarray(self.state.position_sigma) * err.position_scale
        else:
            position = np.array([err.gnss.x, err.gnss.y, err.gnss.z])
        if self.state.attitude_sigma is not None:
            scale = np.array([err.attitude_scale.roll, err.attitude_scale.pitch, err.attitude_scale.yaw])
            attitude = np.asarray(self.state.attitude_sigma) * scale
        else:
            attitude = np.array([err.imu.roll, err.imu.pitch, err.imu.yaw])

        sigmas = np.empty(NUM_VARIABLES)
        sigmas[GNSS] = position
        sigmas[IMU] = np.deg2rad(attitude)
        sigmas[BORESIGHT] = err.boresight.as_radians()
        sigmas[Variable.RANGE] = err.range
        sigmas[Variable.SCAN_ANGLE] = np.deg2rad(err.scan_angle)
        sigmas[LEVER_ARM] = [err.lever_arm.x, err.lever_arm.y, err.lever_arm.z]
        return sigmas ** 2

    def propagate(self, normal: Optional[Sequence[float]] = None) -> Propagation:
        """
        First-order propagation of all input errors.

        Args:
            normal: Optional surface normal (mapping frame); enables the
                incidence angle and the footprint term

        Raises:
            DegenerateNormalError: if the normal has no direction
            NumericalError: at grazing incidence or on a non-finite result
        """
        J = self.jacobian()
        covariance = (J * self.variances()) @ J.T

        angle = None
        if normal is not None:
            n = unit_vector(normal, 'normal')
            ray = self.ray_direction()
            angle = incidence_angle(ray, n)
            divergence = self.config.error.beam_divergence * 1e-3
            covariance = covariance + footprint_covariance(ray, n, self.range, divergence)

        if not np.all(np.isfinite(covariance)):
            raise NumericalError(f"Non-finite covariance for return at time {self.point.gps_time:.6f}")

        return Propagation(covariance=covariance, incidence_angle=angle)

    def covariance(self, normal: Optional[Sequence[float]] = None) -> np.ndarray:
        return self.propagate(normal).covariance


def fit_to_plane_in_body_frame(measurements: Sequence[Measurement]) -> np.ndarray:
    """
    Body-frame positions of the returns, centered and turned about the body
    z-axis so their principal direction lies in the zy plane.

    Used to inspect a scan line across a flat surface: after the fit the
    profile reads along y and any boresight misalignment shows up in z.

    Args:
        measurements: At least three measurements

    Returns:
        Nx3 array of points, one row per measurement
    """
    if len(measurements) < 3:
        raise ValueError("Need at least three measurements to fit a plane")

    points = np.array([[b.x, b.y, b.z] for b in (m.body_frame() for m in measurements)])
    points -= points.mean(axis=0)

    _, _, vt = np.linalg.svd(points, full_matrices=False)
    direction = vt[0]
    angle = np.arctan2(direction[0], direction[1])
    return points @ R3(angle).T
