"""Run a waypoint patrol from the shell.

Usage:
    patrol-run 192.168.50.133                     # patrol until Ctrl-C
    patrol-run 192.168.50.133 --output-dir shots  # where photos go
    patrol-run 192.168.50.133 --no-periodic       # sweep photos only
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading

from patrol_core.config import PatrolConfig, SpeedLevel
from patrol_core.session import PatrolSession

logger = logging.getLogger("patrol_toolkit")

# -- Arguments ----------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    defaults = PatrolConfig()
    parser = argparse.ArgumentParser(
        prog="patrol-run",
        description="Patrol every saved location of a Kachaka robot, taking a photo sweep at each",
    )
    parser.add_argument("ip", help="Robot address (port 26400 is added when omitted)")
    parser.add_argument("--output-dir", default="patrol_photos", help="Directory for captured photos")
    parser.add_argument("--camera", choices=["front", "back"], default="front")
    parser.add_argument("--home-waypoint", default=defaults.home_waypoint,
                        help="Location passed through without a sweep (default: %(default)s)")
    parser.add_argument("--settle-delay", type=float, default=defaults.settle_delay,
                        help="Seconds to wait after arrival before sweeping")
    parser.add_argument("--turn-interval", type=float, default=defaults.turn_interval,
                        help="Seconds between sweep turns")
    parser.add_argument("--turns", type=int, default=defaults.turns_per_sweep,
                        help="Turn + capture steps per sweep")
    parser.add_argument("--turn-degrees", type=int, default=defaults.turn_degrees)
    parser.add_argument("--speed", choices=[s.value for s in SpeedLevel],
                        default=defaults.speed_level.value)
    parser.add_argument("--tilt", type=int, default=None, metavar="DEGREES",
                        help="Head tilt applied at startup (-25..55)")
    parser.add_argument("--tilt-speed", type=float, default=0.5)
    parser.add_argument("--no-periodic", action="store_true",
                        help="Disable the continuous capture loop")
    parser.add_argument("--capture-interval", type=float, default=defaults.capture_min_interval,
                        help="Minimum seconds between periodic captures")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def config_from_args(args: argparse.Namespace) -> PatrolConfig:
    config = PatrolConfig(
        home_waypoint=args.home_waypoint,
        settle_delay=args.settle_delay,
        turn_interval=args.turn_interval,
        turns_per_sweep=args.turns,
        turn_degrees=args.turn_degrees,
        speed_level=SpeedLevel(args.speed),
        capture_min_interval=args.capture_interval,
        head_tilt=(args.tilt, args.tilt_speed) if args.tilt is not None else None,
    )
    config.validate()
    return config


# -- CLI entry point ----------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = config_from_args(args)
    except ValueError as exc:
        parser.error(str(exc))

    session = PatrolSession.create(
        args.ip,
        args.output_dir,
        config,
        camera=args.camera,
        periodic=not args.no_periodic,
    )
    done = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: done.set())
    signal.signal(signal.SIGTERM, lambda *_: done.set())

    try:
        result = session.begin()
        if not result["ok"]:
            logger.error("Cannot start patrol: %s", result["error"])
            return 1
        print(f"Patrolling {len(result['waypoints'])} waypoints (Ctrl-C to stop)")
        done.wait()
    finally:
        session.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
