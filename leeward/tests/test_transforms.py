"""
Tests for rotations and frame transforms.

These tests verify the correctness of:
    - Elementary rotations and their derivatives
    - Body to mapping frame rotation
    - Mapping to sensor frame transform (lever arm, boresight)
    - Incidence angle
"""

import pytest
import numpy as np
from numpy.testing import assert_allclose

from leeward.config import CalibrationConfig, LeverArm, RollPitchYaw
from leeward.errors import DegenerateNormalError, NumericalError
from leeward.rotations import (
    D1,
    D2,
    D3,
    R1,
    R2,
    R3,
    T_enu_ned,
    rotation_matrix,
    rotation_matrix_partials,
    validate_rotation_matrix,
    wrap_degrees,
)
from leeward.trajectory import PlatformState
from leeward.transforms import (
    LidarReturn,
    body_to_mapping,
    incidence_angle,
    mapping_to_sensor,
    sensor_direction,
    sensor_geometry,
    to_body_frame,
    unit_vector,
)


def level_state(x=0.0, y=0.0, z=100.0, roll=0.0, pitch=0.0, yaw=0.0):
    return PlatformState(time=0.0, x=x, y=y, z=z, roll=roll, pitch=pitch, yaw=yaw)


class TestRotations:
    """Tests for elementary rotations."""

    @pytest.mark.parametrize("angles", [
        (0.0, 0.0, 0.0),
        (0.1, -0.2, 0.3),
        (np.pi / 2, 0.0, -np.pi / 3),
        (-3.0, 1.2, 2.5),
    ])
    def test_rotation_matrix_is_proper(self, angles):
        assert validate_rotation_matrix(rotation_matrix(*angles))

    def test_identity(self):
        assert_allclose(rotation_matrix(0, 0, 0), np.eye(3), atol=1e-15)

    def test_yaw_90_maps_forward_to_east(self):
        """Heading east: body forward lies along NED east."""
        R = rotation_matrix(0, 0, np.pi / 2)
        assert_allclose(R @ [1, 0, 0], [0, 1, 0], atol=1e-12)

    def test_enu_ned_is_involution(self):
        A = T_enu_ned()
        assert_allclose(A @ A, np.eye(3))

    @pytest.mark.parametrize("R, D", [(R1, D1), (R2, D2), (R3, D3)])
    def test_derivatives(self, R, D):
        h = 1e-6
        angle = 0.7
        numeric = (R(angle + h) - R(angle - h)) / (2 * h)
        assert_allclose(D(angle), numeric, atol=1e-9)

    def test_rotation_matrix_partials(self):
        r, p, y = 0.1, -0.2, 0.3
        h = 1e-6
        partials = rotation_matrix_partials(r, p, y)
        numeric = [
            (rotation_matrix(r + h, p, y) - rotation_matrix(r - h, p, y)) / (2 * h),
            (rotation_matrix(r, p + h, y) - rotation_matrix(r, p - h, y)) / (2 * h),
            (rotation_matrix(r, p, y + h) - rotation_matrix(r, p, y - h)) / (2 * h),
        ]
        for analytic, expected in zip(partials, numeric):
            assert_allclose(analytic, expected, atol=1e-9)

    def test_invalid_rotation(self):
        assert not validate_rotation_matrix(np.diag([1.0, 1.0, -1.0]))
        assert not validate_rotation_matrix(np.eye(2))

    def test_wrap_degrees(self):
        assert wrap_degrees(180.0) == pytest.approx(-180.0)
        assert wrap_degrees(190.0) == pytest.approx(-170.0)
        assert wrap_degrees(-190.0) == pytest.approx(170.0)
        assert_allclose(wrap_degrees(np.array([0.0, 360.0, 725.0])), [0.0, 0.0, 5.0])


class TestBodyFrame:
    """Tests for the mapping to body/sensor frame transform."""

    def test_body_to_mapping_level_north(self):
        """Level, heading north: forward is north, right is east, down is -up."""
        R = body_to_mapping(0, 0, 0)
        assert_allclose(R @ [1, 0, 0], [0, 1, 0], atol=1e-12)
        assert_allclose(R @ [0, 1, 0], [1, 0, 0], atol=1e-12)
        assert_allclose(R @ [0, 0, 1], [0, 0, -1], atol=1e-12)

    def test_nadir_return(self):
        config = CalibrationConfig()
        point = LidarReturn(x=50.0, y=0.0, z=0.0, scan_angle=0.0, gps_time=5.0)
        result = to_body_frame(level_state(x=50.0), point, config)

        assert result.x == pytest.approx(0.0, abs=1e-9)
        assert result.y == pytest.approx(0.0, abs=1e-9)
        assert result.z == pytest.approx(100.0)
        assert (result.roll, result.pitch, result.yaw) == (0.0, 0.0, 0.0)

    def test_heading_east(self):
        """A return 10 m east of nadir is straight ahead when heading east."""
        config = CalibrationConfig()
        point = LidarReturn(x=10.0, y=0.0, z=0.0, scan_angle=0.0, gps_time=0.0)
        result = to_body_frame(level_state(yaw=90.0), point, config)

        assert_allclose([result.x, result.y, result.z], [10.0, 0.0, 100.0], atol=1e-9)

    def test_lever_arm_removed(self):
        config = CalibrationConfig(lever_arm=LeverArm(x=1.0, y=0.5, z=-2.0))
        vector = mapping_to_sensor(np.array([0.0, 0.0, 0.0]), level_state(), config)

        assert_allclose(vector, [-1.0, -0.5, 102.0], atol=1e-9)

    def test_boresight_undone(self):
        config = CalibrationConfig(boresight=RollPitchYaw(roll=10.0))
        point = np.array([0.0, 0.0, 0.0])
        vector = mapping_to_sensor(point, level_state(), config)

        # Scanner rolled by +10° sees body nadir at a 10° scan angle
        distance, scan_angle, along_track = sensor_geometry(vector)
        assert distance == pytest.approx(100.0)
        assert np.rad2deg(scan_angle) == pytest.approx(10.0)
        assert along_track == pytest.approx(0.0, abs=1e-12)


class TestSensorGeometry:
    """Tests for range / scan angle decomposition."""

    def test_right_looking_scan(self):
        d, a, phi = sensor_geometry(np.array([0.0, 50.0, 50.0]))
        assert d == pytest.approx(np.sqrt(5000.0))
        assert np.rad2deg(a) == pytest.approx(45.0)
        assert phi == pytest.approx(0.0)

    def test_direction_roundtrip(self):
        vector = np.array([3.0, -20.0, 80.0])
        d, a, phi = sensor_geometry(vector)
        assert_allclose(d * sensor_direction(a, phi), vector, atol=1e-9)

    def test_zero_range(self):
        with pytest.raises(NumericalError):
            sensor_geometry(np.zeros(3))


class TestIncidenceAngle:
    """Tests for the angle between ray and surface normal."""

    def test_head_on(self):
        assert incidence_angle([0, 0, -1], [0, 0, 1]) == pytest.approx(0.0)

    def test_sixty_degrees(self):
        normal = [np.sin(np.deg2rad(60.0)), 0.0, np.cos(np.deg2rad(60.0))]
        assert incidence_angle([0, 0, -1], normal) == pytest.approx(60.0)

    def test_grazing(self):
        assert incidence_angle([1, 0, 0], [0, 0, 1]) == pytest.approx(90.0)

    def test_back_face(self):
        assert incidence_angle([0, 0, 1], [0, 0, 1]) == pytest.approx(180.0)

    def test_unnormalized_inputs(self):
        assert incidence_angle([0, 0, -5], [0, 0, 0.1]) == pytest.approx(0.0)

    def test_zero_normal(self):
        with pytest.raises(DegenerateNormalError):
            incidence_angle([0, 0, -1], [0, 0, 0])

    def test_non_finite_normal(self):
        with pytest.raises(DegenerateNormalError):
            unit_vector([0, float('nan'), 1])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
