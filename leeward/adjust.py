"""
Boresight and lever-arm adjustment.

Adjusts the calibration so that returns recomputed through the lidar
equation land on the recorded returns. Each iteration is a Gauss-Newton
step on the stacked misalignment residuals of all measurements; iteration
stops once the RMSE no longer improves by more than the tolerance.

Example usage:
    adjust = Adjust(measurements, variables='boresight').adjust()
    config = adjust.config
    for record in adjust.history:
        print(record.rmse, record.values)

Residuals only carry calibration information when the recorded scan angle
is used (use_las_scan_angle); otherwise every return is reproduced exactly
by construction.
"""

import logging
from dataclasses import dataclass, replace
from typing import List, Sequence, Tuple

import numpy as np

from .config import CalibrationConfig, LeverArm, RollPitchYaw
from .measurement import Measurement
from .partials import BORESIGHT_VARIABLES, LEVER_ARM_VARIABLES

logger = logging.getLogger(__name__)

ADJUSTABLE = {
    'boresight': BORESIGHT_VARIABLES,
    'lever_arm': LEVER_ARM_VARIABLES,
}


@dataclass(frozen=True)
class AdjustmentRecord:
    """
    State of one iteration.

    Attributes:
        rmse: Root mean square of the 3D misalignments (meters)
        values: Adjusted values (degrees for boresight, meters for lever arm)
        config: Calibration at this iteration
    """
    rmse: float
    values: Tuple[float, float, float]
    config: CalibrationConfig


def _config_values(config: CalibrationConfig, variables: str) -> Tuple[float, float, float]:
    if variables == 'boresight':
        b = config.boresight
        return (b.roll, b.pitch, b.yaw)
    arm = config.lever_arm
    return (arm.x, arm.y, arm.z)


def _with_values(config: CalibrationConfig, variables: str, values: Sequence[float]) -> CalibrationConfig:
    if variables == 'boresight':
        return replace(config, boresight=RollPitchYaw(*(float(v) for v in values)))
    return replace(config, lever_arm=LeverArm(*(float(v) for v in values)))


class Adjust:
    """
    Least-squares adjustment of boresight or lever arm.

    All measurements must share one calibration.
    """

    def __init__(
        self,
        measurements: Sequence[Measurement],
        variables: str = 'boresight',
        tolerance: float = 1e-6,
        max_iterations: int = 20,
    ):
        if not measurements:
            raise ValueError("Cannot adjust with no measurements")
        if variables not in ADJUSTABLE:
            raise ValueError(f"variables must be one of {tuple(ADJUSTABLE)}, got {variables!r}")
        if tolerance < 0:
            raise ValueError("tolerance must be non-negative")
        if max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")

        config = measurements[0].config
        if any(m.config != config for m in measurements):
            raise ValueError("Not all measurements have the same config")
        if not config.use_las_scan_angle:
            logger.warning("use_las_scan_angle is off, misalignments carry no calibration signal")

        self.measurements: List[Measurement] = list(measurements)
        self.variables = variables
        self.tolerance = tolerance
        self.max_iterations = max_iterations
        self.config = config
        self.residuals = self._residuals(self.measurements)
        self.rmse = self._rmse(self.residuals)
        self.history: List[AdjustmentRecord] = [self._record()]

    @staticmethod
    def _residuals(measurements: Sequence[Measurement]) -> np.ndarray:
        return np.concatenate([m.misalignment() for m in measurements])

    @staticmethod
    def _rmse(residuals: np.ndarray) -> float:
        squared = (residuals.reshape(-1, 3) ** 2).sum(axis=1)
        return float(np.sqrt(np.mean(squared)))

    def _record(self) -> AdjustmentRecord:
        return AdjustmentRecord(
            rmse=self.rmse,
            values=_config_values(self.config, self.variables),
            config=self.config,
        )

    def _jacobian(self) -> np.ndarray:
        columns = [int(v) for v in ADJUSTABLE[self.variables]]
        return np.vstack([m.jacobian()[:, columns] for m in self.measurements])

    def step(self) -> Tuple[CalibrationConfig, List[Measurement], np.ndarray]:
        """
        Compute one Gauss-Newton update without applying it.

        Returns:
            (candidate config, its measurements, its residuals)
        """
        J = self._jacobian()
        delta, *_ = np.linalg.lstsq(J, -self.residuals, rcond=None)
        if self.variables == 'boresight':
            delta = np.rad2deg(delta)
        values = np.asarray(_config_values(self.config, self.variables)) + delta

        config = _with_values(self.config, self.variables, values)
        measurements = [m.with_config(config) for m in self.measurements]
        return config, measurements, self._residuals(measurements)

    def adjust(self) -> "Adjust":
        """
        Iterate until the RMSE stops improving by more than the tolerance.

        A step that improves the RMSE by no more than the tolerance is
        discarded, so the RMSE in history never increases.

        Returns:
            self, holding the final config and the iteration history
        """
        for iteration in range(self.max_iterations):
            config, measurements, residuals = self.step()
            rmse = self._rmse(residuals)
            improvement = self.rmse - rmse
            logger.debug(f"Iteration {iteration + 1}: rmse {rmse:.6f} (improvement {improvement:.3e})")

            if improvement <= self.tolerance:
                break
            self.config = config
            self.measurements = measurements
            self.residuals = residuals
            self.rmse = rmse
            self.history.append(self._record())
        else:
            logger.warning(f"Adjustment did not converge in {self.max_iterations} iterations")

        logger.info(
            f"Adjusted {self.variables} to {_config_values(self.config, self.variables)}, "
            f"rmse {self.history[0].rmse:.6f} -> {self.rmse:.6f}"
        )
        return self
