"""
Variables of the lidar equation and checks of its partial derivatives.

The lidar equation maps fourteen independent inputs to a mapping-frame
position. Variable gives each input its column in the Jacobian and in the
measurement value vector; Dimension gives the row.
"""

import logging
from dataclasses import dataclass
from enum import IntEnum

import numpy as np

logger = logging.getLogger(__name__)


class Dimension(IntEnum):
    X = 0
    Y = 1
    Z = 2

    def __str__(self) -> str:
        return self.name


class Variable(IntEnum):
    GNSS_X = 0
    GNSS_Y = 1
    GNSS_Z = 2
    IMU_ROLL = 3
    IMU_PITCH = 4
    IMU_YAW = 5
    BORESIGHT_ROLL = 6
    BORESIGHT_PITCH = 7
    BORESIGHT_YAW = 8
    RANGE = 9
    SCAN_ANGLE = 10
    LEVER_ARM_X = 11
    LEVER_ARM_Y = 12
    LEVER_ARM_Z = 13

    @property
    def is_angle(self) -> bool:
        return self in ANGULAR_VARIABLES

    def __str__(self) -> str:
        return self.name


NUM_VARIABLES = len(Variable)

ANGULAR_VARIABLES = frozenset((
    Variable.IMU_ROLL,
    Variable.IMU_PITCH,
    Variable.IMU_YAW,
    Variable.BORESIGHT_ROLL,
    Variable.BORESIGHT_PITCH,
    Variable.BORESIGHT_YAW,
    Variable.SCAN_ANGLE,
))

BORESIGHT_VARIABLES = (Variable.BORESIGHT_ROLL, Variable.BORESIGHT_PITCH, Variable.BORESIGHT_YAW)
LEVER_ARM_VARIABLES = (Variable.LEVER_ARM_X, Variable.LEVER_ARM_Y, Variable.LEVER_ARM_Z)

# Central-difference steps: radians for angles, meters otherwise.
ANGLE_STEP = 1e-7
LENGTH_STEP = 1e-5


def numerical_jacobian(measurement) -> np.ndarray:
    """
    Central finite-difference Jacobian of a measurement's lidar equation.

    Args:
        measurement: Object with values() and evaluate(values), e.g. a Measurement

    Returns:
        3x14 matrix, rows are Dimension, columns are Variable
    """
    values = measurement.values()
    jacobian = np.zeros((3, NUM_VARIABLES))
    for variable in Variable:
        step = ANGLE_STEP if variable.is_angle else LENGTH_STEP
        plus = values.copy()
        minus = values.copy()
        plus[variable] += step
        minus[variable] -= step
        jacobian[:, variable] = (measurement.evaluate(plus) - measurement.evaluate(minus)) / (2 * step)
    return jacobian


@dataclass
class PartialCheck:
    """
    Outcome of nudging one variable so that one coordinate moves by delta.

    The adjustment is predicted from the analytic partial; error is how far
    the recomputed coordinate lands from the expected one.
    """
    expected: float
    partial: float
    adjustment: float
    actual: float
    error: float


def partial_check(measurement, dimension: Dimension, variable: Variable, delta: float) -> PartialCheck:
    """
    Check a single analytic partial derivative against the lidar equation.

    Raises:
        ValueError: if the partial derivative is zero
    """
    values = measurement.values()
    expected = float(measurement.evaluate(values)[dimension]) + delta
    partial = measurement.partial(dimension, variable)
    if partial == 0:
        raise ValueError(f"d{dimension}/d{variable} is zero, cannot predict an adjustment")
    adjustment = delta / partial
    adjusted = values.copy()
    adjusted[variable] += adjustment
    actual = float(measurement.evaluate(adjusted)[dimension])
    check = PartialCheck(
        expected=expected,
        partial=partial,
        adjustment=adjustment,
        actual=actual,
        error=actual - expected,
    )
    logger.debug(f"d{dimension}/d{variable}: {check}")
    return check
