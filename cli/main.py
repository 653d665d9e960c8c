# main.py
"""
Entry-point for the ball-launcher controller.

Replays a recorded stream of player foot positions (pixel coordinates)
through calibration, filtering and the command planner, and drives the
launcher over a serial link (USB or a Bluetooth SPP port).

Inputs
------
``--calibration`` JSON file: ``{"taps": [[x, y], ...]}`` with the net-left,
net-right, baseline-left, baseline-right corners and optionally the T-point.

``--detections`` CSV file with a ``timestamp,x,y`` header; leave ``x``/``y``
empty for frames where the detector found nobody.

Live-tuning
-----------
While the program is running you can edit ``runtime_params.json`` (speed,
spin, launch interval, feed, active, mode) and the planner picks the new
values up within half a second.
"""
from __future__ import annotations

import argparse
import asyncio
import csv
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from ball_launcher.codec import SpinMode
from ball_launcher.config import (
    CourtConfig,
    FilterConfig,
    LinkConfig,
    PlannerConfig,
    PositionLogConfig,
    SerialConfig,
)
from ball_launcher.live_tuning import RuntimeParamWatcher
from ball_launcher.processor import Detection, LauncherController
from ball_launcher.serial_transport import SerialTransport

Point = Tuple[float, float]


# ────────────────────────────────────────────────────────────────────────────
#   I N P U T   F I L E S
# ────────────────────────────────────────────────────────────────────────────
def load_taps(path: Path) -> List[Point]:
    with path.open("r", encoding="utf-8") as fp:
        data = json.load(fp)
    return [(float(x), float(y)) for x, y in data["taps"]]


def load_detections(path: Path) -> List[Detection]:
    out: List[Detection] = []
    with path.open("r", newline="", encoding="utf-8") as fp:
        for row in csv.DictReader(fp):
            x, y = (row.get("x") or "").strip(), (row.get("y") or "").strip()
            pixel = (float(x), float(y)) if x and y else None
            out.append((float(row["timestamp"]), pixel))
    return out


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Drive the ball launcher from player positions.")
    p.add_argument("--port", help="Serial port or pyserial URL (default: auto-detect)")
    p.add_argument("--baudrate", type=int, default=SerialConfig.baudrate)
    p.add_argument("--calibration", type=Path, required=True)
    p.add_argument("--detections", type=Path, help="Recorded detections CSV (interactive mode)")
    p.add_argument("--manual", nargs=2, type=float, metavar=("X", "Y"),
                   help="Send one command aimed at court point X Y (metres) and exit")
    p.add_argument("--speed", type=int, default=PlannerConfig.ball_speed_mph)
    p.add_argument("--spin", default=PlannerConfig.spin,
                   choices=[m.name.lower() for m in SpinMode])
    p.add_argument("--interval", type=float, default=PlannerConfig.launch_interval_s)
    p.add_argument("--feed", type=int, default=PlannerConfig.feed_percent)
    p.add_argument("--full-covariance", action="store_true")
    p.add_argument("--params", type=Path, default=Path("runtime_params.json"))
    p.add_argument("--log-csv", help="Write projected positions to this CSV file")
    p.add_argument("--no-pace", action="store_true", help="Replay as fast as possible")
    p.add_argument("--connect-timeout", type=float, default=10.0)
    p.add_argument("-v", "--verbose", action="store_true")
    return p.parse_args(argv)


# ────────────────────────────────────────────────────────────────────────────
#   R U N
# ────────────────────────────────────────────────────────────────────────────
async def _run(args: argparse.Namespace) -> int:
    loop = asyncio.get_running_loop()

    # -------------------- Config blobs --------------------
    court_cfg = CourtConfig()
    flt_cfg = FilterConfig(full_covariance=args.full_covariance)
    plan_cfg = PlannerConfig(
        ball_speed_mph=args.speed,
        spin=args.spin,
        launch_interval_s=args.interval,
        feed_percent=args.feed,
        interactive=args.manual is None,
        start_active=True,
    )
    ser_cfg = SerialConfig(port=args.port, baudrate=args.baudrate)
    log_cfg = PositionLogConfig(path=args.log_csv)

    transport = SerialTransport(ser_cfg, dispatch=loop.call_soon_threadsafe)
    ctl = LauncherController(
        transport,
        loop,
        court_cfg=court_cfg,
        filter_cfg=flt_cfg,
        planner_cfg=plan_cfg,
        link_cfg=LinkConfig(),
        log_cfg=log_cfg,
    )

    result = ctl.calibrate(load_taps(args.calibration))
    if not result.ok:
        print(f"[Calibration] {result.error}", file=sys.stderr)
        return 2
    print(f"[Calibration] OK, max reprojection error {result.max_error_m:.3f} m")

    try:
        ctl.start()
        if not await ctl.wait_connected(args.connect_timeout):
            print("[Link] Launcher not found / not connected", file=sys.stderr)
            return 3

        if args.manual is not None:
            outcome = await ctl.send_manual_and_wait((args.manual[0], args.manual[1]))
            print(f"[Manual] {outcome.outcome if outcome else 'not sent'}")
            return 0 if outcome and outcome.ok else 1

        if args.detections is None:
            print("[Replay] --detections is required in interactive mode", file=sys.stderr)
            return 2
        watcher = RuntimeParamWatcher(args.params)
        watcher.apply_to(ctl.planner)
        fed = await ctl.replay(load_detections(args.detections), pace=not args.no_pace, watcher=watcher)
        await ctl.wait_idle(LinkConfig.ack_timeout_s + 0.5)
        snap = ctl.planner.snapshot()
        print(
            f"[Replay] {fed} frames, {snap.commands_sent} command(s), "
            f"last outcome: {snap.last_outcome or 'n/a'}"
        )
        return 0
    finally:
        ctl.shutdown()


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(name)s] %(message)s",
    )

    print("Initializing Ball-Launcher Controller…")
    print(
        f"Planner: speed={args.speed} mph, spin={args.spin}, "
        f"interval={args.interval}s, feed={args.feed}%"
    )
    print(f"Link: port={args.port or 'auto'}, baud={args.baudrate}\n")

    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        print("\n[Controller] Stopped by user.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
