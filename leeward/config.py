"""
Calibration model.

Handles loading and validation of the sensor calibration from YAML files:
mounting (boresight, lever arm), the error budget of every input of the
lidar equation, and how the trajectory should be read.

Example YAML structure:
    projection:
      utm_zone: 11
    boresight:
      roll: 0.0
      pitch: 0.0
      yaw: 0.0
    lever_arm:
      x: 0.0
      y: 0.0
      z: 0.0
    use_las_scan_angle: false
    trajectory:
      format: auto
      interpolation: angles
      time_tolerance: 0.0
    error:
      gnss: {x: 0.02, y: 0.02, z: 0.04}
      imu: {roll: 0.0025, pitch: 0.0025, yaw: 0.005}
      boresight: {roll: 0.001, pitch: 0.001, yaw: 0.004}
      lever_arm: {x: 0.02, y: 0.02, z: 0.02}
      range: 0.02
      scan_angle: 0.001
      beam_divergence: 0.3
      position_scale: 1.0
      attitude_scale: {roll: 1.0, pitch: 1.0, yaw: 1.0}
"""

import logging
import math
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np
import yaml
from pyproj import CRS
from pyproj.exceptions import CRSError

from .errors import MalformedConfigError
from .rotations import rotation_matrix
from .trajectory import INTERPOLATION_METHODS

logger = logging.getLogger(__name__)

TRAJECTORY_FORMATS = ('auto', 'csv', 'sbet')


@dataclass(frozen=True)
class RollPitchYaw:
    """Rotation given as roll, pitch, yaw in degrees."""
    roll: float = 0.0
    pitch: float = 0.0
    yaw: float = 0.0

    def as_radians(self) -> np.ndarray:
        return np.deg2rad([self.roll, self.pitch, self.yaw])

    def as_matrix(self) -> np.ndarray:
        return rotation_matrix(*self.as_radians())


@dataclass(frozen=True)
class LeverArm:
    """
    Lever arm offset from IMU center to the scanner origin.
    Expressed in body frame coordinates (Forward-Right-Down).
    """
    x: float = 0.0  # Forward offset in meters
    y: float = 0.0  # Right offset in meters
    z: float = 0.0  # Down offset in meters

    def as_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z])


@dataclass(frozen=True)
class Sigma3:
    """One-sigma uncertainty of a 3-vector (meters)."""
    x: float
    y: float
    z: float


@dataclass(frozen=True)
class ErrorBudget:
    """
    One-sigma uncertainties of the lidar equation inputs.

    Angular terms are in degrees, except beam_divergence in milliradians.
    The scale factors multiply the trajectory's own uncertainty when the
    trajectory file supplies it; otherwise gnss and imu are used as-is.
    """
    gnss: Sigma3 = field(default_factory=lambda: Sigma3(0.02, 0.02, 0.04))
    imu: RollPitchYaw = field(default_factory=lambda: RollPitchYaw(0.0025, 0.0025, 0.005))
    boresight: RollPitchYaw = field(default_factory=lambda: RollPitchYaw(0.001, 0.001, 0.004))
    lever_arm: Sigma3 = field(default_factory=lambda: Sigma3(0.02, 0.02, 0.02))
    range: float = 0.02
    scan_angle: float = 0.001
    beam_divergence: float = 0.3
    position_scale: float = 1.0
    attitude_scale: RollPitchYaw = field(default_factory=lambda: RollPitchYaw(1.0, 1.0, 1.0))


@dataclass(frozen=True)
class Projection:
    """Mapping frame definition, needed to project binary SBET positions."""
    utm_zone: Optional[int] = None
    crs: Optional[str] = None


@dataclass(frozen=True)
class TrajectoryOptions:
    """How the trajectory file is read and interpolated."""
    format: str = 'auto'
    interpolation: str = 'angles'
    time_tolerance: float = 0.0


@dataclass(frozen=True)
class CalibrationConfig:
    """
    Sensor calibration, immutable once loaded.

    Attributes:
        boresight: Boresight misalignment between body and scanner frame
        lever_arm: Lever arm from IMU to scanner origin
        error: Error budget of the lidar equation inputs
        projection: Mapping frame definition
        use_las_scan_angle: Use the scan angle recorded with the return
            instead of the one derived from geometry
        trajectory: Trajectory reading options
    """
    boresight: RollPitchYaw = field(default_factory=RollPitchYaw)
    lever_arm: LeverArm = field(default_factory=LeverArm)
    error: ErrorBudget = field(default_factory=ErrorBudget)
    projection: Projection = field(default_factory=Projection)
    use_las_scan_angle: bool = False
    trajectory: TrajectoryOptions = field(default_factory=TrajectoryOptions)

    def __post_init__(self):
        validate(self)

    @property
    def crs(self) -> Optional[str]:
        """CRS string of the mapping frame, or None if not configured."""
        if self.projection.crs:
            return self.projection.crs
        if self.projection.utm_zone is not None:
            return f"EPSG:{32600 + self.projection.utm_zone}"
        return None

    @classmethod
    def from_yaml(cls, config_path: str) -> "CalibrationConfig":
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the YAML configuration file

        Returns:
            CalibrationConfig with loaded parameters

        Raises:
            FileNotFoundError: if the file does not exist
            MalformedConfigError: if the file cannot be read, decoded or parsed, or holds invalid values
        """
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        logger.info(f"Loading configuration from {config_path}")

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except (yaml.YAMLError, UnicodeDecodeError, OSError) as e:
            raise MalformedConfigError(f"Cannot parse {config_path}: {e}") from e

        return cls.from_dict(data or {}, source=str(config_path))

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: str = '<dict>') -> "CalibrationConfig":
        """Build a configuration from a parsed mapping."""
        if not isinstance(data, dict):
            raise MalformedConfigError(f"{source}: top level must be a mapping")

        try:
            err_data = _section(data, 'error')
            gnss = _section(err_data, 'gnss')
            imu = _section(err_data, 'imu')
            bore_sigma = _section(err_data, 'boresight')
            lever_sigma = _section(err_data, 'lever_arm')
            att_scale = _section(err_data, 'attitude_scale')
            defaults = ErrorBudget()

            error = ErrorBudget(
                gnss=Sigma3(
                    x=_float(gnss, 'x', defaults.gnss.x),
                    y=_float(gnss, 'y', defaults.gnss.y),
                    z=_float(gnss, 'z', defaults.gnss.z),
                ),
                imu=RollPitchYaw(
                    roll=_float(imu, 'roll', defaults.imu.roll),
                    pitch=_float(imu, 'pitch', defaults.imu.pitch),
                    yaw=_float(imu, 'yaw', defaults.imu.yaw),
                ),
                boresight=RollPitchYaw(
                    roll=_float(bore_sigma, 'roll', defaults.boresight.roll),
                    pitch=_float(bore_sigma, 'pitch', defaults.boresight.pitch),
                    yaw=_float(bore_sigma, 'yaw', defaults.boresight.yaw),
                ),
                lever_arm=Sigma3(
                    x=_float(lever_sigma, 'x', defaults.lever_arm.x),
                    y=_float(lever_sigma, 'y', defaults.lever_arm.y),
                    z=_float(lever_sigma, 'z', defaults.lever_arm.z),
                ),
                range=_float(err_data, 'range', defaults.range),
                scan_angle=_float(err_data, 'scan_angle', defaults.scan_angle),
                beam_divergence=_float(err_data, 'beam_divergence', defaults.beam_divergence),
                position_scale=_float(err_data, 'position_scale', defaults.position_scale),
                attitude_scale=RollPitchYaw(
                    roll=_float(att_scale, 'roll', 1.0),
                    pitch=_float(att_scale, 'pitch', 1.0),
                    yaw=_float(att_scale, 'yaw', 1.0),
                ),
            )

            bore_data = _section(data, 'boresight')
            lever_data = _section(data, 'lever_arm')
            proj_data = _section(data, 'projection')
            traj_data = _section(data, 'trajectory')

            utm_zone = proj_data.get('utm_zone')
            if utm_zone is not None:
                if isinstance(utm_zone, bool) or not isinstance(utm_zone, int):
                    raise MalformedConfigError(f"projection.utm_zone must be an integer, got {utm_zone!r}")

            use_las_scan_angle = data.get('use_las_scan_angle', False)
            if not isinstance(use_las_scan_angle, bool):
                raise MalformedConfigError("use_las_scan_angle must be true or false")

            return cls(
                boresight=RollPitchYaw(
                    roll=_float(bore_data, 'roll', 0.0),
                    pitch=_float(bore_data, 'pitch', 0.0),
                    yaw=_float(bore_data, 'yaw', 0.0),
                ),
                lever_arm=LeverArm(
                    x=_float(lever_data, 'x', 0.0),
                    y=_float(lever_data, 'y', 0.0),
                    z=_float(lever_data, 'z', 0.0),
                ),
                error=error,
                projection=Projection(
                    utm_zone=utm_zone,
                    crs=proj_data.get('crs'),
                ),
                use_las_scan_angle=use_las_scan_angle,
                trajectory=TrajectoryOptions(
                    format=str(traj_data.get('format', 'auto')),
                    interpolation=str(traj_data.get('interpolation', 'angles')),
                    time_tolerance=_float(traj_data, 'time_tolerance', 0.0),
                ),
            )
        except MalformedConfigError as e:
            raise MalformedConfigError(f"{source}: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['projection'] = {k: v for k, v in data['projection'].items() if v is not None}
        return data

    def to_yaml(self, config_path: str) -> None:
        """Save configuration to a YAML file."""
        with open(config_path, 'w') as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

        logger.info(f"Configuration saved to {config_path}")


def load_config(config_path: str) -> CalibrationConfig:
    return CalibrationConfig.from_yaml(config_path)


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedConfigError(f"'{key}' must be a mapping")
    return value


def _float(data: Dict[str, Any], key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool):
        raise MalformedConfigError(f"'{key}' must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise MalformedConfigError(f"'{key}' must be a number, got {value!r}") from e


def validate(config: CalibrationConfig) -> None:
    """
    Check a configuration for values the engine cannot use.

    Raises:
        MalformedConfigError: describing the first problem found
    """
    for name, value in (
        ('boresight.roll', config.boresight.roll),
        ('boresight.pitch', config.boresight.pitch),
        ('boresight.yaw', config.boresight.yaw),
    ):
        if not math.isfinite(value) or not -180.0 <= value <= 180.0:
            raise MalformedConfigError(f"{name} must be a finite angle in [-180, 180], got {value}")

    for name, value in (
        ('lever_arm.x', config.lever_arm.x),
        ('lever_arm.y', config.lever_arm.y),
        ('lever_arm.z', config.lever_arm.z),
    ):
        if not math.isfinite(value):
            raise MalformedConfigError(f"{name} must be finite, got {value}")

    err = config.error
    noise_terms = {
        'error.gnss.x': err.gnss.x,
        'error.gnss.y': err.gnss.y,
        'error.gnss.z': err.gnss.z,
        'error.imu.roll': err.imu.roll,
        'error.imu.pitch': err.imu.pitch,
        'error.imu.yaw': err.imu.yaw,
        'error.boresight.roll': err.boresight.roll,
        'error.boresight.pitch': err.boresight.pitch,
        'error.boresight.yaw': err.boresight.yaw,
        'error.lever_arm.x': err.lever_arm.x,
        'error.lever_arm.y': err.lever_arm.y,
        'error.lever_arm.z': err.lever_arm.z,
        'error.range': err.range,
        'error.scan_angle': err.scan_angle,
        'error.beam_divergence': err.beam_divergence,
        'error.position_scale': err.position_scale,
        'error.attitude_scale.roll': err.attitude_scale.roll,
        'error.attitude_scale.pitch': err.attitude_scale.pitch,
        'error.attitude_scale.yaw': err.attitude_scale.yaw,
    }
    for name, value in noise_terms.items():
        if not math.isfinite(value) or value < 0:
            raise MalformedConfigError(f"{name} must be finite and non-negative, got {value}")

    zone = config.projection.utm_zone
    if zone is not None and not 1 <= zone <= 60:
        raise MalformedConfigError(f"projection.utm_zone must be in 1..60, got {zone}")
    if config.projection.crs is not None:
        try:
            CRS.from_user_input(config.projection.crs)
        except CRSError as e:
            raise MalformedConfigError(f"projection.crs is not a valid CRS: {e}") from e

    opts = config.trajectory
    if opts.format not in TRAJECTORY_FORMATS:
        raise MalformedConfigError(f"trajectory.format must be one of {TRAJECTORY_FORMATS}, got {opts.format!r}")
    if opts.interpolation not in INTERPOLATION_METHODS:
        raise MalformedConfigError(
            f"trajectory.interpolation must be one of {INTERPOLATION_METHODS}, got {opts.interpolation!r}"
        )
    if not math.isfinite(opts.time_tolerance) or opts.time_tolerance < 0:
        raise MalformedConfigError(f"trajectory.time_tolerance must be non-negative, got {opts.time_tolerance}")
