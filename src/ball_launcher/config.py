"""Typed configuration blobs for the whole system."""
from dataclasses import dataclass
from typing import Optional


# ----------------------- Court ----------------------
@dataclass
class CourtConfig:
    # Half court, origin at the net/left sideline, y grows towards the baseline
    width_m: float = 8.23
    length_m: float = 11.885
    service_line_m: float = 6.40


# -------------------- Homography --------------------
@dataclass
class HomographyConfig:
    ransac_reproj_threshold_m: float = 0.25
    degeneracy_tol: float = 1e-6
    min_w: float = 1e-9
    margin_x_m: float = 1.0
    margin_near_m: float = 1.0
    margin_far_m: float = 3.0          # Foot noise overshoots the far baseline
    tap_tolerance_px: float = 20.0


# ---------------------- Filter ----------------------
@dataclass
class FilterConfig:
    position_uncertainty: float = 5.0
    velocity_uncertainty: float = 10.0
    process_noise: float = 0.05
    measurement_noise: float = 0.5
    min_dt_s: float = 0.01
    max_dt_s: float = 0.1
    first_dt_s: float = 1.0 / 30.0
    full_covariance: bool = False


# ---------------------- Planner ---------------------
@dataclass
class PlannerConfig:
    ball_speed_mph: int = 50
    spin: str = "flat"
    launch_interval_s: float = 3.0
    feed_percent: int = 50
    interactive: bool = True
    start_active: bool = False


# ----------------------- Link -----------------------
@dataclass
class LinkConfig:
    ack_timeout_s: float = 2.0
    auto_reconnect: bool = True
    reconnect_delay_s: float = 5.0


# ---------------------- Serial ----------------------
@dataclass
class SerialConfig:
    port: Optional[str] = None          # "/dev/rfcomm0", "COM5" or "loop://"
    baudrate: int = 115_200
    timeout: float = 0.1
    write_timeout: float = 1.0
    description_pattern: str = r"(?i)bluetooth|rfcomm|hc-0[56]|cp210|ch340"


# ---------------------- Logging ---------------------
@dataclass
class PositionLogConfig:
    path: Optional[str] = None          # Set to "player_positions.csv" to enable
    min_interval_s: float = 1.0
