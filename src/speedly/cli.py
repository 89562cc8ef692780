import argparse
import logging
import sys

from speedly import __version_date__, get_git_hash
from speedly.config import _load_config, settings_from_dict
from speedly.formatters import format_trip_summary
from speedly.pipeline import InlineExecutor, LocationPipeline
from speedly.providers import DEFAULT_ACCURACY_M, GpxReplayProvider
from speedly.units import SpeedUnit

# Default values for CLI options
DEFAULTS = {
    "speed_unit": "metric",
    "manual_speed_limit": 0,
    "accuracy": DEFAULT_ACCURACY_M,
}


def _unit_choice(value) -> str:
    """Map a stored unit ("kmh", "mph", "metric", ...) to a --unit choice."""
    return "imperial" if SpeedUnit.parse(value) is SpeedUnit.IMPERIAL else "metric"


def build_parser(config: dict | None = None) -> argparse.ArgumentParser:
    """Build argument parser with defaults from config file."""
    if config is None:
        config = {}

    def get_default(key: str):
        return config.get(key, DEFAULTS[key])

    parser = argparse.ArgumentParser(
        description="Replay a GPX track through the speedometer pipeline and print a trip summary."
    )
    parser.add_argument("gpx_file", help="Path to GPX file")
    parser.add_argument(
        "--unit",
        choices=["metric", "imperial"],
        default=_unit_choice(get_default("speed_unit")),
        help=f"Display unit for speeds and distances (default: {DEFAULTS['speed_unit']})",
    )
    parser.add_argument(
        "--manual-limit",
        type=int,
        default=get_default("manual_speed_limit"),
        help="Manual speed limit in the display unit, 0 to use lookups (default: 0)",
    )
    parser.add_argument(
        "--accuracy",
        type=float,
        default=get_default("accuracy"),
        help=f"Horizontal accuracy in meters for points without HDOP (default: {DEFAULTS['accuracy']})",
    )
    parser.add_argument(
        "--no-lookups",
        action="store_true",
        help="Disable speed limit and reverse geocoding lookups",
    )
    parser.add_argument(
        "--no-alerts",
        action="store_true",
        help="Disable speed limit alerts",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log pipeline activity to stderr")
    parser.add_argument(
        "--version",
        action="version",
        version=f"speedly {__version_date__} ({get_git_hash()})",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    config = _load_config()
    try:
        settings = settings_from_dict(config)
    except (TypeError, ValueError) as e:
        print(f"Error in config file: {e}", file=sys.stderr)
        sys.exit(1)

    parser = build_parser({**config, "speed_unit": settings.speed_unit.value})
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    if args.manual_limit < 0:
        print("Error: --manual-limit must be 0 or greater.", file=sys.stderr)
        sys.exit(1)

    settings.speed_unit = SpeedUnit.parse(args.unit)
    settings.manual_speed_limit = args.manual_limit
    if args.no_alerts:
        settings.speed_limit_alerts = False

    provider = GpxReplayProvider(args.gpx_file, default_accuracy_m=args.accuracy)
    # Replay delivers fixes back to back, so lookups answer before the next fix
    pipeline = LocationPipeline(settings=settings, executor=InlineExecutor(), lookups_enabled=not args.no_lookups)
    pipeline.attach(provider)

    try:
        provider.start()
    except FileNotFoundError:
        print(f"Error: File not found: {args.gpx_file}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Error parsing GPX file: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        pipeline.close()

    pipeline.apply_pending_results()

    if pipeline.last_fix is None:
        print("Error: GPX file contains no timestamped track points.", file=sys.stderr)
        sys.exit(1)

    pipeline.stop_trip(pipeline.last_fix.timestamp)
    trip = pipeline.trip.summary()
    unit = settings.speed_unit

    if settings.show_trip_stats:
        print(format_trip_summary(trip, unit))
        print(f"Samples:       {trip.sample_count}")
    print(f"Alerts:        {pipeline.alert_count}")
    limit = pipeline.current_speed_limit
    if limit is not None:
        print(f"Speed Limit:   {limit} {unit.short_name} ({pipeline.speed_limit.effective_source()})")
    info = pipeline.location_info
    if settings.show_street_name and info is not None and info.display_address:
        print(f"Last Location: {info.display_address}")
    if pipeline.accuracy is not None:
        print(f"GPS Accuracy:  {pipeline.accuracy.description}")
