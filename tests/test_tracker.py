"""
Tests for the constant-velocity position filters.
"""
import math

import pytest

from ball_launcher.config import FilterConfig
from ball_launcher.tracker import (
    FullCovarianceFilter,
    PositionFilter,
    build_position_filter,
)

DT = 1.0 / 30.0


@pytest.fixture(params=[PositionFilter, FullCovarianceFilter], ids=["diagonal", "full"])
def position_filter(request):
    return request.param(FilterConfig())


def _feed(flt, point, n, t0=0.0):
    out = None
    for i in range(n):
        out = flt.update(point, t0 + i * DT)
    return out, t0 + n * DT


def test_first_update_returns_measurement(position_filter):
    assert position_filter.update((2.5, 7.0), 10.0) == (2.5, 7.0)
    assert position_filter.velocity == (0.0, 0.0)
    assert position_filter.initialized
    assert position_filter.state.last_update_time == 10.0


def test_converges_on_stationary_player(position_filter):
    pos, _ = _feed(position_filter, (3.0, 4.0), 100)
    assert pos == pytest.approx((3.0, 4.0), abs=1e-3)
    assert position_filter.speed == pytest.approx(0.0, abs=1e-3)


@pytest.mark.parametrize("uncertainty", [0.1, 5.0, 1000.0])
def test_five_updates_within_one_percent(uncertainty):
    flt = PositionFilter(FilterConfig(position_uncertainty=uncertainty, velocity_uncertainty=uncertainty))
    pos, _ = _feed(flt, (6.0, 9.0), 5)
    assert pos == pytest.approx((6.0, 9.0), rel=0.01)


def test_diagonal_filter_follows_a_jump():
    flt = PositionFilter()
    _, t = _feed(flt, (2.0, 3.0), 50)
    pos, _ = _feed(flt, (5.0, 6.0), 200, t0=t)
    assert pos == pytest.approx((5.0, 6.0), abs=0.05)


def test_moving_player_has_positive_velocity(position_filter):
    for i in range(60):
        position_filter.update((1.0 + i * DT, 5.0), i * DT)
    vx, vy = position_filter.velocity
    assert vx > 0.0
    assert abs(vy) < 1e-6


def test_reset_reinitialises(position_filter):
    _feed(position_filter, (3.0, 4.0), 10)
    position_filter.reset()
    assert not position_filter.initialized
    assert position_filter.update((8.0, 1.0), 99.0) == (8.0, 1.0)


def test_time_step_is_clamped():
    cfg = FilterConfig()
    flt = PositionFilter(cfg)
    flt.update((1.0, 1.0), 0.0)
    # A five second gap is treated as max_dt_s
    flt.update((1.0, 1.0), 5.0)

    p_pred = cfg.position_uncertainty + cfg.max_dt_s ** 2 * cfg.velocity_uncertainty + cfg.process_noise
    expected = p_pred * cfg.measurement_noise / (p_pred + cfg.measurement_noise)
    assert flt.state.p00 == pytest.approx(expected)
    assert flt.state.p11 == pytest.approx(expected)


def test_repeated_timestamp_stays_finite(position_filter):
    position_filter.update((1.0, 1.0), 1.0)
    x, y = position_filter.update((1.2, 0.8), 1.0)
    assert math.isfinite(x) and math.isfinite(y)


def test_factory_honours_config():
    assert isinstance(build_position_filter(FilterConfig()), PositionFilter)
    assert isinstance(build_position_filter(FilterConfig(full_covariance=True)), FullCovarianceFilter)
