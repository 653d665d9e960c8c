"""4-state constant-velocity position filters with variable Δt."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple, Union

import numpy as np
from filterpy.common import Q_discrete_white_noise
from filterpy.kalman import KalmanFilter

from ball_launcher.common import Point
from ball_launcher.config import FilterConfig


@dataclass(frozen=True)
class FilterState:
    x: float
    y: float
    vx: float
    vy: float
    p00: float
    p11: float
    p22: float
    p33: float
    last_update_time: Optional[float]


class _BaseFilter:
    def __init__(self, cfg: FilterConfig):
        self.cfg = cfg
        self.last_time: Optional[float] = None
        self.initialized = False
        self.updates = 0

    def _delta_t(self, timestamp: float) -> float:
        dt = self.cfg.first_dt_s if self.last_time is None else timestamp - self.last_time
        self.last_time = timestamp
        return float(np.clip(dt, self.cfg.min_dt_s, self.cfg.max_dt_s))

    @property
    def speed(self) -> float:
        vx, vy = self.velocity
        return float(np.hypot(vx, vy))


# ---------------------------------------------------------------------------
#   Diagonal-covariance filter (default)
# ---------------------------------------------------------------------------
class PositionFilter(_BaseFilter):
    """
    Constant-velocity Kalman filter on ``[x, y, vx, vy]`` that keeps only
    the diagonal of the covariance. Each axis is corrected independently;
    velocity is a by-product used for logging, not for control.
    """

    def __init__(self, cfg: Optional[FilterConfig] = None):
        super().__init__(cfg or FilterConfig())
        self.x = np.zeros(4)
        self.p = np.zeros(4)

    def reset(self) -> None:
        self.x = np.zeros(4)
        self.p = np.zeros(4)
        self.last_time = None
        self.initialized = False
        self.updates = 0

    def _predict(self, dt: float) -> None:
        q = self.cfg.process_noise
        self.x[0:2] += self.x[2:4] * dt
        self.p[0:2] += dt * dt * self.p[2:4] + q
        self.p[2:4] += q

    def _correct(self, z: np.ndarray, dt: float) -> None:
        innovation = z - self.x[0:2]
        s = self.p[0:2] + self.cfg.measurement_noise
        k_pos = self.p[0:2] / s
        k_vel = self.p[2:4] * dt / s
        self.x[0:2] += k_pos * innovation
        self.x[2:4] += k_vel * innovation
        self.p[0:2] *= 1.0 - k_pos
        self.p[2:4] *= 1.0 - k_vel * dt

    def update(self, measurement: Point, timestamp: float) -> Point:
        z = np.array([float(measurement[0]), float(measurement[1])])
        if not self.initialized:
            self.x = np.array([z[0], z[1], 0.0, 0.0])
            self.p = np.array(
                [self.cfg.position_uncertainty] * 2 + [self.cfg.velocity_uncertainty] * 2,
                dtype=float,
            )
            self.last_time = timestamp
            self.initialized = True
            self.updates = 1
            return self.position

        dt = self._delta_t(timestamp)
        self._predict(dt)
        self._correct(z, dt)
        self.updates += 1
        return self.position

    @property
    def position(self) -> Point:
        return float(self.x[0]), float(self.x[1])

    @property
    def velocity(self) -> Tuple[float, float]:
        return float(self.x[2]), float(self.x[3])

    @property
    def state(self) -> FilterState:
        return FilterState(*map(float, self.x), *map(float, self.p), last_update_time=self.last_time)


# ---------------------------------------------------------------------------
#   Full-covariance filter (filterpy)
# ---------------------------------------------------------------------------
class FullCovarianceFilter(_BaseFilter):
    """Same interface, backed by ``filterpy.kalman.KalmanFilter``."""

    def __init__(self, cfg: Optional[FilterConfig] = None):
        super().__init__(cfg or FilterConfig())
        self.kf = KalmanFilter(dim_x=4, dim_z=2)
        self.kf.H = np.array([[1, 0, 0, 0], [0, 1, 0, 0]], dtype=float)
        r = self.cfg.measurement_noise
        self.kf.R = np.diag([r, r])
        self._set_dt(self.cfg.first_dt_s)
        self.reset()

    def _set_dt(self, dt: float) -> None:
        self.kf.F = np.array(
            [
                [1, 0, dt, 0],
                [0, 1, 0, dt],
                [0, 0, 1, 0],
                [0, 0, 0, 1],
            ],
            dtype=float,
        )
        self.kf.Q = Q_discrete_white_noise(
            dim=2, dt=dt, var=self.cfg.process_noise, order_by_dim=False, block_size=2
        )

    def reset(self) -> None:
        self.kf.x = np.zeros((4, 1))
        pos_var = self.cfg.position_uncertainty
        vel_var = self.cfg.velocity_uncertainty
        self.kf.P = np.diag([pos_var, pos_var, vel_var, vel_var])
        self.last_time = None
        self.initialized = False
        self.updates = 0

    def update(self, measurement: Point, timestamp: float) -> Point:
        z = np.array([[float(measurement[0])], [float(measurement[1])]])
        if not self.initialized:
            # First detection initialises state
            self.reset()
            self.kf.x[0, 0], self.kf.x[1, 0] = z[0, 0], z[1, 0]
            self.last_time = timestamp
            self.initialized = True
            self.updates = 1
            return self.position

        self._set_dt(self._delta_t(timestamp))
        self.kf.predict()
        self.kf.update(z)
        self.updates += 1
        return self.position

    @property
    def position(self) -> Point:
        return float(self.kf.x[0, 0]), float(self.kf.x[1, 0])

    @property
    def velocity(self) -> Tuple[float, float]:
        return float(self.kf.x[2, 0]), float(self.kf.x[3, 0])

    @property
    def state(self) -> FilterState:
        x, y, vx, vy = self.kf.x.flatten()
        p = np.diag(self.kf.P)
        return FilterState(
            float(x), float(y), float(vx), float(vy), *map(float, p), last_update_time=self.last_time
        )


AnyFilter = Union[PositionFilter, FullCovarianceFilter]


def build_position_filter(cfg: Optional[FilterConfig] = None) -> AnyFilter:
    cfg = cfg or FilterConfig()
    return FullCovarianceFilter(cfg) if cfg.full_covariance else PositionFilter(cfg)
