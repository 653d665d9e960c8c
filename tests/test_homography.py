"""
Tests for court calibration and image → court projection.
"""
import numpy as np
import pytest

from conftest import to_image

from ball_launcher.config import CourtConfig, HomographyConfig
from ball_launcher.errors import CalibrationError, ProjectionError
from ball_launcher.homography import (
    CalibrationSet,
    HomographyEngine,
    court_lines,
    derive_reference_points,
    reference_court_points,
)


@pytest.fixture
def engine(court):
    return HomographyEngine(court, HomographyConfig(min_w=1e-3))


@pytest.fixture
def calibrated(engine, court, image_reference_points):
    engine.calibrate(CalibrationSet(image_reference_points, reference_court_points(court)))
    return engine


def _court_grid(court, n=6):
    xs = np.linspace(0.0, court.width_m, n)
    ys = np.linspace(0.0, court.length_m, n)
    return [(float(x), float(y)) for x in xs for y in ys]


class TestCalibration:
    """Fitting and installing a homography."""

    def test_round_trip_eight_points(self, calibrated, court):
        assert calibrated.is_calibrated
        assert calibrated.reprojection_error() < 0.05
        for p in _court_grid(court):
            assert calibrated.project(to_image(p)) == pytest.approx(p, abs=0.05)

    def test_round_trip_four_corners(self, engine, court, image_reference_points):
        engine.calibrate(CalibrationSet.from_corners(image_reference_points[:4], court))
        for p in _court_grid(court):
            assert engine.project(to_image(p)) == pytest.approx(p, abs=0.05)

    def test_five_taps_derive_remaining_points(self, taps, image_reference_points, court):
        derived = derive_reference_points(taps)
        assert len(derived) == 8
        for got, want in zip(derived, image_reference_points):
            assert got == pytest.approx(want, abs=1e-6)

        calibration = CalibrationSet.from_taps(taps, court)
        assert calibration.count == 8 and calibration.is_complete

    def test_derivation_with_parallel_court_lines(self, court):
        # Overhead camera: no perspective, both vanishing points at infinity
        def overhead(p):
            return 100.0 + 50.0 * p[0], 40.0 + 40.0 * p[1]

        refs = reference_court_points(court)
        derived = derive_reference_points([overhead(p) for p in refs[:5]])
        for got, ref in zip(derived, refs):
            assert got == pytest.approx(overhead(ref), abs=1e-6)

    def test_coincident_taps_rejected(self, taps):
        bad = list(taps)
        bad[1] = bad[0]
        with pytest.raises(CalibrationError):
            derive_reference_points(bad)

    def test_wrong_tap_count(self, taps):
        with pytest.raises(CalibrationError):
            derive_reference_points(taps[:4])

    def test_collinear_points_are_degenerate(self, engine, court):
        image = [(100.0, 100.0), (200.0, 200.0), (300.0, 300.0), (400.0, 400.0)]
        with pytest.raises(CalibrationError):
            engine.calibrate(CalibrationSet(tuple(image), reference_court_points(court)[:4]))
        assert not engine.is_calibrated

    def test_too_few_points(self, engine, court, image_reference_points):
        with pytest.raises(CalibrationError):
            engine.fit(image_reference_points[:3], reference_court_points(court)[:3])

    def test_incomplete_set_rejected(self, engine, court, image_reference_points):
        calibration = CalibrationSet(image_reference_points[:5], reference_court_points(court)[:5])
        assert not calibration.is_complete
        with pytest.raises(CalibrationError):
            engine.calibrate(calibration)

    def test_mismatched_lengths(self, court, image_reference_points):
        with pytest.raises(CalibrationError):
            CalibrationSet(image_reference_points[:4], reference_court_points(court))

    def test_failed_recalibration_keeps_previous_fit(self, calibrated, court):
        before = calibrated.matrix.copy()
        collinear = tuple((float(i), float(i)) for i in range(4))
        with pytest.raises(CalibrationError):
            calibrated.calibrate(CalibrationSet(collinear, reference_court_points(court)[:4]))
        assert np.array_equal(calibrated.matrix, before)

    def test_installed_matrix_is_read_only(self, calibrated):
        with pytest.raises(ValueError):
            calibrated.matrix[0, 0] = 1.0

    def test_reset(self, calibrated):
        calibrated.reset()
        assert not calibrated.is_calibrated
        assert calibrated.matrix is None


class TestProjection:
    """Projecting player positions onto the court."""

    def test_requires_calibration(self, engine):
        with pytest.raises(ProjectionError):
            engine.project((100.0, 100.0))
        assert not engine.is_inside_calibration_area((100.0, 100.0))

    def test_far_overshoot_clamped(self, calibrated, court):
        x, y = calibrated.project(to_image((court.width_m / 2, 2 * court.length_m)))
        assert x == pytest.approx(court.width_m / 2, abs=0.05)
        assert y == pytest.approx(court.length_m + 3.0)

    def test_side_and_near_clamped(self, calibrated, court):
        x, _ = calibrated.project(to_image((-5.0, 5.0)))
        assert x == pytest.approx(-1.0)
        x, _ = calibrated.project(to_image((court.width_m + 5.0, 5.0)))
        assert x == pytest.approx(court.width_m + 1.0)
        _, y = calibrated.project(to_image((4.0, -3.0)))
        assert y == pytest.approx(-1.0)

    def test_project_raw_is_not_clamped(self, calibrated, court):
        _, y = calibrated.project_raw(to_image((court.width_m / 2, 2 * court.length_m)))
        assert y == pytest.approx(2 * court.length_m, abs=0.1)

    def test_point_on_horizon_raises(self, calibrated):
        # (640, -800) is where the court's far direction vanishes
        with pytest.raises(ProjectionError):
            calibrated.project((640.0, -800.0))

    def test_inside_calibration_area(self, calibrated, court):
        assert calibrated.is_inside_calibration_area(to_image((court.width_m / 2, court.length_m / 2)))
        assert not calibrated.is_inside_calibration_area((-500.0, -500.0))
        # Within the pixel tolerance just outside the left sideline
        u, v = to_image((0.0, court.length_m / 2))
        assert calibrated.is_inside_calibration_area((u - 5.0, v))

    def test_to_image_inverts_projection(self, calibrated, court):
        for p in _court_grid(court, n=3):
            assert calibrated.to_image(p) == pytest.approx(to_image(p), abs=0.5)

    def test_court_lines_in_image(self, calibrated, court):
        lines = calibrated.court_lines_in_image()
        assert len(lines) == len(court_lines(court))
        (a, b) = lines[0]
        assert a == pytest.approx(to_image((0.0, court.length_m)), abs=0.5)
        assert b == pytest.approx(to_image((court.width_m, court.length_m)), abs=0.5)


def test_reference_points_follow_court_size():
    court = CourtConfig(width_m=10.0, length_m=20.0, service_line_m=5.0)
    refs = reference_court_points(court)
    assert refs[3] == (10.0, 20.0)
    assert refs[4] == (5.0, 5.0)
    assert refs[7] == (5.0, 0.0)
