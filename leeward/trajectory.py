"""
Trajectory store.

Holds a time-ordered sequence of platform states and answers point-in-time
queries by interpolation.

Trajectory data is typically provided at regular intervals (e.g., 200 Hz for SBET).
Lidar return times never coincide with trajectory epochs, so every query
interpolates between the two bracketing records.

Interpolation Methods:
    - angles: linear position, per-angle shortest-arc attitude (default)
    - slerp: spherical linear interpolation of the full attitude

Trajectory File Formats:
    CSV (mapping frame):
        time, x, y, z, roll, pitch, yaw [, vx, vy, vz]
        [, sigma_x, sigma_y, sigma_z, sigma_roll, sigma_pitch, sigma_yaw]

        - time: GPS time (seconds)
        - x, y, z: projected easting, northing, height (meters)
        - roll, pitch, yaw: orientation in degrees
        - sigma_*: one-sigma position (meters) and attitude (degrees) uncertainty

    Binary SBET (.out, .sbet): 17 doubles per epoch, see SBETReader.
"""

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np
from pyproj import Proj, Transformer
from scipy.spatial.transform import Rotation, Slerp

from .errors import MalformedTrajectoryError, OutOfRangeError
from .rotations import wrap_degrees

logger = logging.getLogger(__name__)

Triple = Tuple[float, float, float]

INTERPOLATION_METHODS = ('angles', 'slerp')


@dataclass(frozen=True)
class PlatformState:
    """
    Platform position and attitude at a single time.

    Attributes:
        time: GPS time in seconds
        x, y, z: Position in the mapping frame (meters)
        roll, pitch, yaw: Attitude in degrees (aerospace ZYX, yaw from grid north)
        velocity: Optional (vx, vy, vz) in m/s
        position_sigma: Optional one-sigma (x, y, z) position uncertainty in meters
        attitude_sigma: Optional one-sigma (roll, pitch, yaw) uncertainty in degrees
    """
    time: float
    x: float
    y: float
    z: float
    roll: float
    pitch: float
    yaw: float
    velocity: Optional[Triple] = None
    position_sigma: Optional[Triple] = None
    attitude_sigma: Optional[Triple] = None

    @property
    def position(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z])

    @property
    def attitude(self) -> np.ndarray:
        """Roll, pitch, yaw in radians."""
        return np.deg2rad([self.roll, self.pitch, self.yaw])


# Stored records and interpolated states share one shape.
TrajectoryRecord = PlatformState


def _lerp(a: float, b: float, t: float) -> float:
    return a + t * (b - a)


def _lerp_triple(a: Optional[Triple], b: Optional[Triple], t: float) -> Optional[Triple]:
    if a is None or b is None:
        return None
    return tuple(_lerp(ai, bi, t) for ai, bi in zip(a, b))


def interpolate_angle(angle1: float, angle2: float, t: float) -> float:
    """
    Interpolate between two angles in degrees along the shorter arc.

    The result is wrapped into [-180, 180).
    """
    diff = wrap_degrees(angle2 - angle1)
    return float(wrap_degrees(angle1 + t * diff))


class Trajectory:
    """
    Immutable, time-sorted sequence of trajectory records.

    Records must be strictly increasing in time. The trajectory is read-only
    after construction, so it can be shared between threads.
    """

    def __init__(
        self,
        records: Sequence[TrajectoryRecord],
        interpolation: str = 'angles',
        time_tolerance: float = 0.0,
    ):
        """
        Args:
            records: Trajectory records, strictly increasing in time
            interpolation: 'angles' (shortest arc per angle) or 'slerp'
            time_tolerance: Queries at most this far outside the covered
                interval snap to the nearest end record (seconds)
        """
        if not records:
            raise MalformedTrajectoryError("No trajectory records provided")
        if interpolation not in INTERPOLATION_METHODS:
            raise ValueError(f"Unknown interpolation method: {interpolation}")
        if time_tolerance < 0:
            raise ValueError("time_tolerance must be non-negative")

        times = np.array([r.time for r in records], dtype=np.float64)
        if not np.all(np.isfinite(times)):
            raise MalformedTrajectoryError("Trajectory contains non-finite times")
        steps = np.diff(times)
        if np.any(steps <= 0):
            index = int(np.argmax(steps <= 0)) + 1
            raise MalformedTrajectoryError(
                f"Trajectory records are not strictly time-ordered at record {index} "
                f"(time {times[index]:.6f} after {times[index - 1]:.6f})"
            )

        self._records = tuple(records)
        self.times = times
        self.times.flags.writeable = False
        self.interpolation = interpolation
        self.time_tolerance = float(time_tolerance)

        self.time_start = float(times[0])
        self.time_end = float(times[-1])

        logger.info(
            f"Trajectory initialized with {len(self._records)} records, "
            f"time range: {self.time_start:.3f} to {self.time_end:.3f}"
        )

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[TrajectoryRecord]:
        return iter(self._records)

    def __getitem__(self, index: int) -> TrajectoryRecord:
        return self._records[index]

    def interpolate(self, time: float, offset: float = 0.0) -> PlatformState:
        """
        Interpolate the platform state at the given time.

        Args:
            time: Query time (seconds)
            offset: Added to time before the lookup, to align independent clocks

        Returns:
            Interpolated PlatformState

        Raises:
            OutOfRangeError: if the shifted time is outside the trajectory
        """
        time = time + offset
        if not np.isfinite(time):
            raise OutOfRangeError(time, self.time_start, self.time_end)

        if time < self.time_start:
            if self.time_start - time <= self.time_tolerance:
                return self._records[0]
            raise OutOfRangeError(time, self.time_start, self.time_end)
        if time > self.time_end:
            if time - self.time_end <= self.time_tolerance:
                return self._records[-1]
            raise OutOfRangeError(time, self.time_start, self.time_end)

        # times[idx] <= time < times[idx + 1]
        idx = int(np.searchsorted(self.times, time, side='right')) - 1
        before = self._records[idx]
        if before.time == time:
            return before
        after = self._records[idx + 1]

        t = (time - before.time) / (after.time - before.time)
        return self._interpolate_states(before, after, t, time)

    def _interpolate_states(
        self,
        state1: PlatformState,
        state2: PlatformState,
        t: float,
        time: float,
    ) -> PlatformState:
        if self.interpolation == 'slerp':
            roll, pitch, yaw = self._slerp_attitude(state1, state2, t)
        else:
            roll = interpolate_angle(state1.roll, state2.roll, t)
            pitch = interpolate_angle(state1.pitch, state2.pitch, t)
            yaw = interpolate_angle(state1.yaw, state2.yaw, t)

        return PlatformState(
            time=time,
            x=_lerp(state1.x, state2.x, t),
            y=_lerp(state1.y, state2.y, t),
            z=_lerp(state1.z, state2.z, t),
            roll=roll,
            pitch=pitch,
            yaw=yaw,
            velocity=_lerp_triple(state1.velocity, state2.velocity, t),
            position_sigma=_lerp_triple(state1.position_sigma, state2.position_sigma, t),
            attitude_sigma=_lerp_triple(state1.attitude_sigma, state2.attitude_sigma, t),
        )

    @staticmethod
    def _slerp_attitude(state1: PlatformState, state2: PlatformState, t: float) -> Triple:
        # Intrinsic ZYX matches rotations.rotation_matrix
        rotations = Rotation.from_euler(
            'ZYX',
            [[state1.yaw, state1.pitch, state1.roll],
             [state2.yaw, state2.pitch, state2.roll]],
            degrees=True,
        )
        slerp = Slerp([0.0, 1.0], rotations)
        yaw, pitch, roll = slerp([t]).as_euler('ZYX', degrees=True)[0]
        return float(roll), float(pitch), float(wrap_degrees(yaw))

    @classmethod
    def from_csv(cls, filepath: str, **kwargs) -> 'Trajectory':
        """
        Load a mapping-frame trajectory from a CSV file.

        Args:
            filepath: Path to CSV file (see module docstring for columns)
            **kwargs: Additional arguments passed to constructor

        Returns:
            Trajectory instance
        """
        path = Path(filepath)
        if not path.exists():
            raise FileNotFoundError(f"Trajectory file not found: {filepath}")

        records = read_csv_records(path)
        logger.info(f"Loaded {len(records)} trajectory records from {filepath}")
        return cls(records, **kwargs)


REQUIRED_COLUMNS = ('time', 'x', 'y', 'z', 'roll', 'pitch', 'yaw')
VELOCITY_COLUMNS = ('vx', 'vy', 'vz')
POSITION_SIGMA_COLUMNS = ('sigma_x', 'sigma_y', 'sigma_z')
ATTITUDE_SIGMA_COLUMNS = ('sigma_roll', 'sigma_pitch', 'sigma_yaw')


def _optional_group(fieldnames: Sequence[str], columns: Tuple[str, ...], path: Path) -> bool:
    present = [col for col in columns if col in fieldnames]
    if present and len(present) != len(columns):
        missing = sorted(set(columns) - set(present))
        raise MalformedTrajectoryError(f"{path}: incomplete column group, missing {missing}")
    return bool(present)


def read_csv_records(path: Path) -> List[TrajectoryRecord]:
    """
    Parse trajectory records from a CSV file with a header row.

    Raises:
        MalformedTrajectoryError: if the file cannot be read or decoded as
            UTF-8 text, or holds missing columns or invalid values
    """
    try:
        with open(path, 'r', newline='', encoding='utf-8') as f:
            return _parse_csv(csv.DictReader(f), path)
    except (UnicodeDecodeError, csv.Error, OSError) as e:
        raise MalformedTrajectoryError(f"{path}: cannot read trajectory: {e}") from e


def _parse_csv(reader: csv.DictReader, path: Path) -> List[TrajectoryRecord]:
    records = []
    fieldnames = [name.strip() for name in (reader.fieldnames or [])]
    reader.fieldnames = fieldnames

    missing = [col for col in REQUIRED_COLUMNS if col not in fieldnames]
    if missing:
        raise MalformedTrajectoryError(f"{path}: missing required columns {missing}")

    has_velocity = _optional_group(fieldnames, VELOCITY_COLUMNS, path)
    has_position_sigma = _optional_group(fieldnames, POSITION_SIGMA_COLUMNS, path)
    has_attitude_sigma = _optional_group(fieldnames, ATTITUDE_SIGMA_COLUMNS, path)

    for row_num, row in enumerate(reader, start=2):
        try:
            values = {col: float(row[col]) for col in REQUIRED_COLUMNS}
            velocity = tuple(float(row[col]) for col in VELOCITY_COLUMNS) if has_velocity else None
            position_sigma = (
                tuple(float(row[col]) for col in POSITION_SIGMA_COLUMNS) if has_position_sigma else None
            )
            attitude_sigma = (
                tuple(float(row[col]) for col in ATTITUDE_SIGMA_COLUMNS) if has_attitude_sigma else None
            )
        except (TypeError, ValueError) as e:
            raise MalformedTrajectoryError(f"{path}: invalid value on line {row_num}: {e}") from e

        for sigma in (position_sigma, attitude_sigma):
            if sigma is not None and any(v < 0 for v in sigma):
                raise MalformedTrajectoryError(f"{path}: negative uncertainty on line {row_num}")

        records.append(TrajectoryRecord(
            velocity=velocity,
            position_sigma=position_sigma,
            attitude_sigma=attitude_sigma,
            **values,
        ))

    return records


class SBETReader:
    """
    Reader for binary SBET (Smoothed Best Estimate of Trajectory) files.

    SBET binary format (per epoch, little-endian doubles):
        - time: GPS seconds of week
        - latitude, longitude: radians
        - altitude: meters
        - x_velocity, y_velocity, z_velocity: m/s (wander frame)
        - roll, pitch: radians
        - heading: wander heading, radians
        - wander_angle: radians
        - x/y/z acceleration: m/s²
        - x/y/z angular rate: rad/s

    Total: 17 doubles = 136 bytes per epoch

    Positions are projected into the mapping frame with pyproj. True heading
    is the wander heading minus the wander angle; grid yaw then subtracts the
    meridian convergence of the projection at each epoch.
    """

    RECORD_SIZE = 136  # bytes
    NUM_FIELDS = 17

    def __init__(self, filepath: str):
        self.filepath = filepath
        self.path = Path(filepath)

        if not self.path.exists():
            raise FileNotFoundError(f"SBET file not found: {filepath}")

    def read_array(self) -> np.ndarray:
        """Read the raw SBET contents as an (N, 17) array."""
        if not self.path.is_file():
            raise MalformedTrajectoryError(f"SBET path is not a regular file: {self.filepath}")
        size = self.path.stat().st_size
        if size == 0 or size % self.RECORD_SIZE != 0:
            raise MalformedTrajectoryError(
                f"SBET file size {size} is not a positive multiple of {self.RECORD_SIZE} bytes: {self.filepath}"
            )
        try:
            data = np.fromfile(self.path, dtype='<f8')
        except OSError as e:
            raise MalformedTrajectoryError(f"Cannot read SBET file {self.filepath}: {e}") from e
        return data.reshape(-1, self.NUM_FIELDS)

    def read_records(
        self,
        crs: str,
        start_time: Optional[float] = None,
        end_time: Optional[float] = None,
        downsample: int = 1,
    ) -> List[TrajectoryRecord]:
        """
        Read trajectory records from the SBET file.

        Args:
            crs: Projected CRS of the mapping frame (e.g. "EPSG:32611")
            start_time: Optional start time filter
            end_time: Optional end time filter
            downsample: Keep every Nth epoch (1 = all, 10 = every 10th)

        Returns:
            List of TrajectoryRecord objects in the mapping frame
        """
        if downsample < 1:
            raise ValueError("downsample must be >= 1")

        data = self.read_array()[::downsample]
        if start_time is not None:
            data = data[data[:, 0] >= start_time]
        if end_time is not None:
            data = data[data[:, 0] <= end_time]

        lon = np.rad2deg(data[:, 2])
        lat = np.rad2deg(data[:, 1])
        transformer = Transformer.from_crs("EPSG:4326", crs, always_xy=True)
        x, y = transformer.transform(lon, lat)
        x = np.atleast_1d(x)
        y = np.atleast_1d(y)
        # degrees from grid north to true north
        convergence = np.atleast_1d(Proj(crs).get_factors(lon, lat).meridian_convergence)

        roll = np.rad2deg(data[:, 7])
        pitch = np.rad2deg(data[:, 8])
        yaw = wrap_degrees(np.rad2deg(data[:, 9] - data[:, 10]) - convergence)

        records = [
            TrajectoryRecord(
                time=float(data[i, 0]),
                x=float(x[i]),
                y=float(y[i]),
                z=float(data[i, 3]),
                roll=float(roll[i]),
                pitch=float(pitch[i]),
                yaw=float(yaw[i]),
            )
            for i in range(len(data))
        ]

        logger.info(f"Read {len(records)} epochs from SBET file (downsampled {downsample}x)")
        return records

    def to_trajectory(self, crs: str, downsample: int = 1, **kwargs) -> Trajectory:
        return Trajectory(self.read_records(crs, downsample=downsample), **kwargs)


def load_trajectory(
    filepath: str,
    file_format: str = 'auto',
    crs: Optional[str] = None,
    **kwargs,
) -> Trajectory:
    """
    Load a trajectory from file.

    Args:
        filepath: Path to trajectory file
        file_format: 'csv', 'sbet', or 'auto' (detect from extension)
        crs: Projected CRS for binary SBET files
        **kwargs: Additional arguments for Trajectory

    Returns:
        Trajectory instance
    """
    path = Path(filepath)

    if file_format == 'auto':
        file_format = 'sbet' if path.suffix.lower() in ('.sbet', '.out') else 'csv'

    if file_format == 'sbet':
        if crs is None:
            raise MalformedTrajectoryError(
                f"Binary SBET trajectory {filepath} needs a projected CRS (set projection in the config)"
            )
        return SBETReader(filepath).to_trajectory(crs, **kwargs)
    if file_format == 'csv':
        return Trajectory.from_csv(filepath, **kwargs)
    raise ValueError(f"Unknown trajectory format: {file_format}")
