"""
Engine facade.

Owns the trajectory and calibration of one processing run and answers the
four per-point queries:

    - query_body_frame: return position in the sensor body frame
    - query_measurement: horizontal/vertical/total uncertainty
    - query_uncertainty: x/y/horizontal/vertical/total uncertainty
    - query_tpu: per-axis sigma

Example usage:
    with Engine.create("sbet.out", "config.yaml") as engine:
        result = engine.query_tpu(point, normal=(0.0, 0.0, 1.0))

Each query either returns a fresh result or raises a PointError. The engine
keeps no state between queries, so one instance can serve many threads.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Sequence

from .config import CalibrationConfig
from .errors import ConstructionError, EngineClosedError, MissingNormalError, PointError
from .measurement import Measurement, MeasurementResult, TpuResult, UncertaintyResult
from .trajectory import Trajectory, load_trajectory
from .transforms import BodyFrameResult, LidarReturn, to_body_frame

logger = logging.getLogger(__name__)

QUERIES = ('body_frame', 'measurement', 'uncertainty', 'tpu')


@dataclass
class BatchResult:
    """Results of a batch run, in input order; skipped points are None."""
    results: List[Optional[Any]] = field(default_factory=list)
    skipped: int = 0

    @property
    def processed(self) -> int:
        return len(self.results) - self.skipped


class Engine:
    """
    Total propagated uncertainty engine for one trajectory and calibration.
    """

    def __init__(self, trajectory: Trajectory, config: CalibrationConfig):
        self._trajectory = trajectory
        self._config = config

    @classmethod
    def create(cls, trajectory_path: str, config_path: str) -> "Engine":
        """
        Build an engine from a trajectory file and a calibration file.

        Raises:
            ConstructionError: if a path is empty
            FileNotFoundError: if a file does not exist
            MalformedConfigError: if the calibration is invalid
            MalformedTrajectoryError: if the trajectory is invalid
        """
        if not trajectory_path:
            raise ConstructionError("No trajectory path provided")
        if not config_path:
            raise ConstructionError("No config path provided")

        try:
            config = CalibrationConfig.from_yaml(config_path)
            options = config.trajectory
            trajectory = load_trajectory(
                trajectory_path,
                file_format=options.format,
                crs=config.crs,
                interpolation=options.interpolation,
                time_tolerance=options.time_tolerance,
            )
        except (ConstructionError, OSError) as e:
            logger.error(f"Cannot create engine from {trajectory_path} and {config_path}: {e}")
            raise

        return cls(trajectory, config)

    @property
    def closed(self) -> bool:
        return self._trajectory is None

    @property
    def trajectory(self) -> Trajectory:
        self._check_open()
        return self._trajectory

    @property
    def config(self) -> CalibrationConfig:
        self._check_open()
        return self._config

    def close(self) -> None:
        """Release the trajectory and calibration. Further queries fail."""
        self._trajectory = None
        self._config = None

    def __enter__(self) -> "Engine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _check_open(self) -> None:
        if self._trajectory is None:
            raise EngineClosedError("Engine has been closed")

    def measurement(self, point: LidarReturn, time_offset: float = 0.0) -> Measurement:
        """
        Bind a lidar return to the platform state at its (shifted) time.

        Raises:
            OutOfRangeError: if the time is not covered by the trajectory
        """
        state = self.trajectory.interpolate(point.gps_time, offset=time_offset)
        return Measurement(state, point, self._config)

    def query_body_frame(self, point: LidarReturn, time_offset: float = 0.0) -> BodyFrameResult:
        state = self.trajectory.interpolate(point.gps_time, offset=time_offset)
        return to_body_frame(state, point, self._config)

    def query_measurement(
        self,
        point: LidarReturn,
        normal: Optional[Sequence[float]] = None,
        time_offset: float = 0.0,
    ) -> MeasurementResult:
        return self._propagate(point, normal, time_offset).to_measurement_result()

    def query_uncertainty(
        self,
        point: LidarReturn,
        normal: Optional[Sequence[float]] = None,
        time_offset: float = 0.0,
    ) -> UncertaintyResult:
        return self._propagate(point, normal, time_offset).to_uncertainty_result()

    def query_tpu(
        self,
        point: LidarReturn,
        normal: Optional[Sequence[float]] = None,
        time_offset: float = 0.0,
    ) -> TpuResult:
        return self._propagate(point, normal, time_offset).to_tpu_result()

    def _propagate(self, point, normal, time_offset):
        if normal is None:
            normal = point.normal
        if normal is None:
            raise MissingNormalError(f"No surface normal for return at time {point.gps_time:.6f}")
        return self.measurement(point, time_offset).propagate(normal)

    def process(
        self,
        points: Iterable[LidarReturn],
        query: str = 'tpu',
        time_offset: float = 0.0,
        workers: int = 1,
    ) -> BatchResult:
        """
        Run one query over many points, skipping the ones that fail.

        Args:
            points: Lidar returns (normals taken from each return)
            query: One of 'body_frame', 'measurement', 'uncertainty', 'tpu'
            time_offset: Added to every return time before the lookup
            workers: Number of threads; 1 runs in the calling thread

        Returns:
            BatchResult with one entry per point, None where skipped
        """
        if query not in QUERIES:
            raise ValueError(f"Unknown query {query!r}, expected one of {QUERIES}")
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._check_open()

        method = getattr(self, f"query_{query}")

        def run(point: LidarReturn):
            try:
                return method(point, time_offset=time_offset)
            except PointError as e:
                logger.debug(f"Skipping return at time {point.gps_time:.6f}: {e}")
                return None

        if workers == 1:
            results = [run(point) for point in points]
        else:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                results = list(executor.map(run, points))

        batch = BatchResult(results=results, skipped=sum(1 for r in results if r is None))
        if batch.skipped:
            logger.warning(f"Skipped {batch.skipped}/{len(results)} points during {query} query")
        else:
            logger.info(f"Processed all {len(results)} points ({query})")
        return batch
