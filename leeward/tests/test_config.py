"""
Tests for calibration configuration loading and validation.
"""

import pytest
import numpy as np
import tempfile
from numpy.testing import assert_allclose

from leeward.config import (
    CalibrationConfig,
    ErrorBudget,
    LeverArm,
    Projection,
    RollPitchYaw,
    TrajectoryOptions,
    load_config,
)
from leeward.errors import ConstructionError, MalformedConfigError


def write_yaml(text):
    f = tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False)
    f.write(text)
    f.close()
    return f.name


class TestCalibrationConfig:
    """Tests for loading calibration files."""

    def test_defaults(self):
        config = CalibrationConfig()

        assert config.boresight == RollPitchYaw(0.0, 0.0, 0.0)
        assert config.lever_arm == LeverArm(0.0, 0.0, 0.0)
        assert config.use_las_scan_angle is False
        assert config.crs is None
        assert config.error.gnss.z == pytest.approx(0.04)
        assert config.error.imu.yaw == pytest.approx(0.005)
        assert config.error.range == pytest.approx(0.02)
        assert config.error.beam_divergence == pytest.approx(0.3)

    def test_empty_file_uses_defaults(self):
        path = write_yaml("")
        assert load_config(path) == CalibrationConfig()

    def test_load_yaml(self):
        path = write_yaml(
            "projection:\n"
            "  utm_zone: 11\n"
            "boresight: {roll: 0.1, pitch: -0.2, yaw: 0.3}\n"
            "lever_arm: {x: 0.5, y: -0.25, z: 1.0}\n"
            "use_las_scan_angle: true\n"
            "trajectory: {format: csv, interpolation: slerp, time_tolerance: 0.01}\n"
            "error:\n"
            "  gnss: {x: 0.05}\n"
            "  range: 0.03\n"
            "  attitude_scale: {yaw: 2.0}\n"
        )
        config = CalibrationConfig.from_yaml(path)

        assert config.boresight == RollPitchYaw(0.1, -0.2, 0.3)
        assert_allclose(config.lever_arm.as_array(), [0.5, -0.25, 1.0])
        assert config.use_las_scan_angle is True
        assert config.crs == "EPSG:32611"
        assert config.trajectory == TrajectoryOptions('csv', 'slerp', 0.01)
        assert config.error.gnss.x == pytest.approx(0.05)
        # Unspecified terms keep their defaults
        assert config.error.gnss.y == pytest.approx(0.02)
        assert config.error.range == pytest.approx(0.03)
        assert config.error.attitude_scale == RollPitchYaw(1.0, 1.0, 2.0)

    def test_explicit_crs_wins(self):
        config = CalibrationConfig(projection=Projection(utm_zone=11, crs="EPSG:32612"))
        assert config.crs == "EPSG:32612"

    def test_roundtrip(self):
        config = CalibrationConfig(
            boresight=RollPitchYaw(0.5, 0.0, -1.0),
            lever_arm=LeverArm(1.0, 2.0, 3.0),
            projection=Projection(utm_zone=33),
        )
        path = write_yaml("")
        config.to_yaml(path)

        assert load_config(path) == config

    def test_boresight_matrix(self):
        assert_allclose(RollPitchYaw().as_matrix(), np.eye(3), atol=1e-15)

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError):
            CalibrationConfig.from_yaml("/nonexistent/config.yaml")

    def test_invalid_yaml(self):
        path = write_yaml("boresight: [roll: 0\n")
        with pytest.raises(MalformedConfigError):
            load_config(path)

    def test_not_utf8(self):
        f = tempfile.NamedTemporaryFile(suffix='.yaml', delete=False)
        f.write(b"error: {range: \xff\xfe}\n")
        f.close()
        with pytest.raises(MalformedConfigError):
            load_config(f.name)

    def test_non_numeric_value(self):
        path = write_yaml("boresight: {roll: fast}\n")
        with pytest.raises(MalformedConfigError) as excinfo:
            load_config(path)
        assert path in str(excinfo.value)

    def test_section_not_mapping(self):
        path = write_yaml("lever_arm: 3\n")
        with pytest.raises(MalformedConfigError):
            load_config(path)

    def test_top_level_not_mapping(self):
        path = write_yaml("- 1\n- 2\n")
        with pytest.raises(MalformedConfigError):
            load_config(path)

    def test_malformed_is_construction_error(self):
        path = write_yaml("error: {range: -1.0}\n")
        with pytest.raises(ConstructionError):
            load_config(path)


class TestValidation:
    """Tests for value checks applied on construction."""

    @pytest.mark.parametrize("boresight", [
        RollPitchYaw(roll=181.0),
        RollPitchYaw(pitch=float('nan')),
        RollPitchYaw(yaw=float('inf')),
    ])
    def test_invalid_boresight(self, boresight):
        with pytest.raises(MalformedConfigError):
            CalibrationConfig(boresight=boresight)

    def test_non_finite_lever_arm(self):
        with pytest.raises(MalformedConfigError):
            CalibrationConfig(lever_arm=LeverArm(x=float('nan')))

    def test_negative_noise(self):
        with pytest.raises(MalformedConfigError):
            CalibrationConfig(error=ErrorBudget(scan_angle=-0.001))

    def test_zero_noise_allowed(self):
        config = CalibrationConfig(error=ErrorBudget(range=0.0, beam_divergence=0.0))
        assert config.error.range == 0.0

    def test_invalid_utm_zone(self):
        with pytest.raises(MalformedConfigError):
            CalibrationConfig(projection=Projection(utm_zone=61))

    def test_utm_zone_must_be_integer(self):
        path = write_yaml("projection: {utm_zone: 11.5}\n")
        with pytest.raises(MalformedConfigError):
            load_config(path)

    def test_invalid_crs(self):
        with pytest.raises(MalformedConfigError):
            CalibrationConfig(projection=Projection(crs="not a crs"))

    def test_invalid_trajectory_options(self):
        with pytest.raises(MalformedConfigError):
            CalibrationConfig(trajectory=TrajectoryOptions(format='las'))
        with pytest.raises(MalformedConfigError):
            CalibrationConfig(trajectory=TrajectoryOptions(interpolation='cubic'))
        with pytest.raises(MalformedConfigError):
            CalibrationConfig(trajectory=TrajectoryOptions(time_tolerance=-1.0))

    def test_use_las_scan_angle_must_be_bool(self):
        path = write_yaml("use_las_scan_angle: 1\n")
        with pytest.raises(MalformedConfigError):
            load_config(path)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
