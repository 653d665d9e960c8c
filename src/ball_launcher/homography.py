"""
Court homography – maps image pixels to court metres.

Court coordinates (half court, metres)::

    NL=(0,0) ------ NC=(W/2,0) ------ NR=(W,0)     net
      |                  |                |
    SL=(0,S) ------ T=(W/2,S) ------- SR=(W,S)     service line
      |                  |                |
    BL=(0,L) ----------------------- BR=(W,L)      baseline

The operator taps NL, NR, BL, BR and T; SL, SR and NC are derived in
image space so that eight correspondences feed the fit.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from ball_launcher.common import Point
from ball_launcher.config import CourtConfig, HomographyConfig
from ball_launcher.errors import CalibrationError, ProjectionError

logger = logging.getLogger(__name__)

TAP_ORDER = ("net_left", "net_right", "baseline_left", "baseline_right", "t_point")
POINT_NAMES = TAP_ORDER[:4] + ("t_point", "service_left", "service_right", "net_center")
EXPECTED_COUNTS = (4, 8)
MIN_CORRESPONDENCES = 4

_LINE_EPS = 1e-12

Line = Tuple[Point, Point]


def reference_court_points(court: CourtConfig) -> Tuple[Point, ...]:
    """Court-space counterparts of ``POINT_NAMES`` in the same order."""
    w, l, s = court.width_m, court.length_m, court.service_line_m
    return (
        (0.0, 0.0),
        (w, 0.0),
        (0.0, l),
        (w, l),
        (w / 2, s),
        (0.0, s),
        (w, s),
        (w / 2, 0.0),
    )


def court_lines(court: CourtConfig) -> List[Line]:
    w, l, s = court.width_m, court.length_m, court.service_line_m
    return [
        ((0.0, l), (w, l)),            # baseline
        ((w, 0.0), (w, l)),            # right sideline
        ((0.0, 0.0), (0.0, l)),        # left sideline
        ((0.0, 0.0), (w, 0.0)),        # net
        ((0.0, s), (w, s)),            # service line
        ((w / 2, 0.0), (w / 2, s)),    # centre service line
        ((w / 2, s), (w / 2, l)),      # centre mark to baseline
    ]


# ---------------------------------------------------------------------------
#   Image-space geometry helpers (homogeneous coordinates)
# ---------------------------------------------------------------------------
def _hom(p: Point) -> np.ndarray:
    return np.array([float(p[0]), float(p[1]), 1.0])


def _join(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    line = np.cross(a, b)
    norm = np.linalg.norm(line)
    if norm < _LINE_EPS:
        raise CalibrationError("Calibration taps coincide; cannot build court lines")
    return line / norm


def _meet(l1: np.ndarray, l2: np.ndarray) -> Point:
    p = np.cross(l1, l2)
    if abs(p[2]) < _LINE_EPS * max(1.0, np.linalg.norm(p)):
        raise CalibrationError("Court lines are parallel in the image; re-tap the corners")
    return float(p[0] / p[2]), float(p[1] / p[2])


def derive_reference_points(taps: Sequence[Point]) -> Tuple[Point, ...]:
    """
    Expand the five operator taps into the eight image points of
    ``POINT_NAMES``.

    The service line is the line through the T-point and the vanishing
    point of the net and baseline; the centre line joins the T-point with
    the vanishing point of the sidelines. Both vanishing points may be at
    infinity, which homogeneous coordinates handle without special cases.
    """
    if len(taps) != len(TAP_ORDER):
        raise CalibrationError(f"Need exactly {len(TAP_ORDER)} taps, got {len(taps)}")
    nl, nr, bl, br, t = (_hom(p) for p in taps)

    net = _join(nl, nr)
    baseline = _join(bl, br)
    left = _join(nl, bl)
    right = _join(nr, br)

    across_vp = np.cross(net, baseline)
    along_vp = np.cross(left, right)
    if np.linalg.norm(across_vp) < _LINE_EPS or np.linalg.norm(along_vp) < _LINE_EPS:
        raise CalibrationError("Net and baseline (or the sidelines) coincide")

    service = _join(t, across_vp)
    centre = _join(t, along_vp)

    service_left = _meet(service, left)
    service_right = _meet(service, right)
    net_centre = _meet(centre, net)
    return tuple(tuple(map(float, p)) for p in taps[:4]) + (
        (float(taps[4][0]), float(taps[4][1])),
        service_left,
        service_right,
        net_centre,
    )


# ---------------------------------------------------------------------------
#   Calibration set
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class CalibrationSet:
    image_points: Tuple[Point, ...]
    court_points: Tuple[Point, ...]

    def __post_init__(self) -> None:
        if len(self.image_points) != len(self.court_points):
            raise CalibrationError(
                f"{len(self.image_points)} image points vs {len(self.court_points)} court points"
            )

    @property
    def count(self) -> int:
        return len(self.image_points)

    @property
    def is_complete(self) -> bool:
        return self.count in EXPECTED_COUNTS

    @property
    def corners(self) -> Tuple[Point, Point, Point, Point]:
        """Image corners in polygon order: NL, NR, BR, BL."""
        nl, nr, bl, br = self.image_points[:4]
        return nl, nr, br, bl

    @classmethod
    def from_corners(cls, corners: Sequence[Point], court: CourtConfig) -> "CalibrationSet":
        """Four taps in ``TAP_ORDER[:4]`` order, no derived points."""
        if len(corners) != 4:
            raise CalibrationError(f"Need exactly 4 corners, got {len(corners)}")
        return cls(
            tuple((float(x), float(y)) for x, y in corners),
            reference_court_points(court)[:4],
        )

    @classmethod
    def from_taps(cls, taps: Sequence[Point], court: CourtConfig) -> "CalibrationSet":
        return cls(derive_reference_points(taps), reference_court_points(court))


@dataclass(frozen=True)
class _Fit:
    matrix: np.ndarray
    inverse: np.ndarray
    calibration: CalibrationSet
    inliers: int


def _normalizing_transform(pts: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    centre = pts.mean(axis=0)
    mean_dist = np.sqrt(((pts - centre) ** 2).sum(axis=1)).mean()
    if mean_dist < _LINE_EPS:
        raise CalibrationError("All calibration points coincide")
    scale = np.sqrt(2.0) / mean_dist
    return (pts - centre) * scale, np.array(
        [[scale, 0.0, -scale * centre[0]], [0.0, scale, -scale * centre[1]], [0.0, 0.0, 1.0]]
    )


def check_degenerate(src: np.ndarray, dst: np.ndarray, tol: float) -> None:
    """
    Raise ``CalibrationError`` unless the normalized DLT system has a
    one-dimensional null space (rank 8).
    """
    src_n, _ = _normalizing_transform(src)
    dst_n, _ = _normalizing_transform(dst)
    rows = []
    for (x, y), (u, v) in zip(src_n, dst_n):
        rows.append([-x, -y, -1.0, 0.0, 0.0, 0.0, u * x, u * y, u])
        rows.append([0.0, 0.0, 0.0, -x, -y, -1.0, v * x, v * y, v])
    sv = np.linalg.svd(np.asarray(rows), compute_uv=False)
    if sv[7] / sv[0] < tol:
        raise CalibrationError(
            f"Degenerate calibration (near-collinear points), conditioning {sv[7] / sv[0]:.2e}"
        )


# ---------------------------------------------------------------------------
#   Engine
# ---------------------------------------------------------------------------
class HomographyEngine:
    """Fits and applies the image → court transform."""

    def __init__(self, court: CourtConfig, cfg: Optional[HomographyConfig] = None):
        self.court = court
        self.cfg = cfg or HomographyConfig()
        # Replaced as a whole on recalibration, never mutated
        self._fit: Optional[_Fit] = None

    # ------------------ Fitting -------------------
    def fit(self, image_points: Sequence[Point], court_points: Sequence[Point]) -> Tuple[np.ndarray, int]:
        """Return ``(H, inlier_count)`` without installing it."""
        src = np.asarray(image_points, dtype=np.float64).reshape(-1, 2)
        dst = np.asarray(court_points, dtype=np.float64).reshape(-1, 2)
        if len(src) < MIN_CORRESPONDENCES:
            raise CalibrationError(
                f"Need at least {MIN_CORRESPONDENCES} correspondences, got {len(src)}"
            )
        if len(src) != len(dst):
            raise CalibrationError(f"{len(src)} image points vs {len(dst)} court points")
        check_degenerate(src, dst, self.cfg.degeneracy_tol)

        H, mask = cv2.findHomography(src, dst, cv2.RANSAC, self.cfg.ransac_reproj_threshold_m)
        if H is None or not np.all(np.isfinite(H)) or abs(np.linalg.det(H)) < 1e-12:
            raise CalibrationError("OpenCV could not estimate a homography")
        inliers = int(mask.sum()) if mask is not None else len(src)
        return H, inliers

    def calibrate(self, calibration: CalibrationSet) -> np.ndarray:
        if not calibration.is_complete:
            raise CalibrationError(
                f"Expected {' or '.join(map(str, EXPECTED_COUNTS))} correspondences, "
                f"got {calibration.count}"
            )
        H, inliers = self.fit(calibration.image_points, calibration.court_points)
        inverse = np.linalg.inv(H)
        H.setflags(write=False)
        inverse.setflags(write=False)
        self._fit = _Fit(matrix=H, inverse=inverse, calibration=calibration, inliers=inliers)

        err = self.reprojection_error()
        logger.info(
            f"Homography calibrated from {calibration.count} points "
            f"({inliers} inliers, max error {err:.3f} m)"
        )
        return H

    def reset(self) -> None:
        self._fit = None

    # ------------------ Accessors -------------------
    @property
    def is_calibrated(self) -> bool:
        return self._fit is not None

    @property
    def matrix(self) -> Optional[np.ndarray]:
        fit = self._fit
        return None if fit is None else fit.matrix

    @property
    def calibration(self) -> Optional[CalibrationSet]:
        fit = self._fit
        return None if fit is None else fit.calibration

    def reprojection_error(self) -> float:
        """Largest court-space error over the installed calibration points."""
        fit = self._fit
        if fit is None:
            raise ProjectionError("Homography not computed")
        worst = 0.0
        for img, ref in zip(fit.calibration.image_points, fit.calibration.court_points):
            x, y = _apply(fit.matrix, img, self.cfg.min_w)
            worst = max(worst, float(np.hypot(x - ref[0], y - ref[1])))
        return worst

    # ------------------ Projection -------------------
    def project_raw(self, point: Point) -> Point:
        fit = self._fit
        if fit is None:
            raise ProjectionError("Homography not computed")
        return _apply(fit.matrix, point, self.cfg.min_w)

    def project(self, point: Point) -> Point:
        """
        Project an image point and pull it back inside the court margins.
        Points outside the calibration area are still projected.
        """
        fit = self._fit
        if fit is None:
            raise ProjectionError("Homography not computed")
        if not _inside(fit.calibration, point, self.cfg.tap_tolerance_px):
            logger.debug(f"Point {point} outside calibration area, projecting anyway")
        raw = _apply(fit.matrix, point, self.cfg.min_w)
        corrected = self.correct(raw)
        if corrected != raw:
            logger.debug(f"Projected {raw} clamped to {corrected}")
        return corrected

    def correct(self, court_point: Point) -> Point:
        c = self.cfg
        x = min(max(court_point[0], -c.margin_x_m), self.court.width_m + c.margin_x_m)
        y = min(max(court_point[1], -c.margin_near_m), self.court.length_m + c.margin_far_m)
        return float(x), float(y)

    def is_inside_calibration_area(self, point: Point) -> bool:
        fit = self._fit
        if fit is None:
            return False
        return _inside(fit.calibration, point, self.cfg.tap_tolerance_px)

    def to_image(self, court_point: Point) -> Point:
        fit = self._fit
        if fit is None:
            raise ProjectionError("Homography not computed")
        return _apply(fit.inverse, court_point, self.cfg.min_w)

    def court_lines_in_image(self) -> List[Line]:
        """Standard court lines projected back into the camera image."""
        return [(self.to_image(a), self.to_image(b)) for a, b in court_lines(self.court)]


def _apply(matrix: np.ndarray, point: Point, min_w: float) -> Point:
    x, y, w = matrix @ np.array([float(point[0]), float(point[1]), 1.0])
    if abs(w) < min_w:
        raise ProjectionError(f"Point {point} maps to the line at infinity (w={w:.3e})")
    px, py = x / w, y / w
    if not (np.isfinite(px) and np.isfinite(py)):
        raise ProjectionError(f"Non-finite projection for {point}")
    return float(px), float(py)


def _inside(calibration: CalibrationSet, point: Point, tolerance: float) -> bool:
    poly = np.asarray(calibration.corners, dtype=np.float32).reshape(-1, 1, 2)
    dist = cv2.pointPolygonTest(poly, (float(point[0]), float(point[1])), True)
    return dist >= -tolerance
