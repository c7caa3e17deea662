"""Command-line smoke writer for SkySpark history.

Example:
    SKYSPARK_URL=http://localhost:8080/api/demo/ SKYSPARK_USERNAME=su \\
        python -m pyraystack --id @p:demo:r:1 --unit kWh --tz UTC \\
        2023-01-01T00:00:00Z=42.0 2023-01-01T00:15:00Z=43.5
"""

import argparse
import logging
import sys
from typing import List, Optional, Tuple

from .client import SkySparkClient
from .config import create_settings
from .errors import SkySparkError

logger = logging.getLogger("pyraystack")


def parse_sample(text: str) -> Tuple[str, float]:
    """Parse a 'TIMESTAMP=VALUE' argument."""
    if "=" not in text:
        raise argparse.ArgumentTypeError(f"expected TIMESTAMP=VALUE, got {text!r}")
    ts, value = text.rsplit("=", 1)
    try:
        return ts, float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pyraystack-write",
        description="Write numeric history samples to a SkySpark point.",
        epilog="Connection settings come from SKYSPARK_* environment variables, .env and .secrets.",
    )
    parser.add_argument("--id", required=True, help="Entity ref, e.g. @p:demo:r:1")
    parser.add_argument("--unit", default=None, help="Unit of the values, e.g. kWh")
    parser.add_argument("--tz", default=None, help="IANA timezone name (default: SKYSPARK_TZ)")
    parser.add_argument("--naive", action="store_true",
                        help="Timestamps have no offset and are read as UTC")
    parser.add_argument("samples", nargs="*", type=parse_sample, metavar="TIMESTAMP=VALUE")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    settings = create_settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    if not settings.is_complete:
        logger.error("SKYSPARK_URL, SKYSPARK_USERNAME and SKYSPARK_PASSWORD must be set")
        return 2

    tz = args.tz or settings.tz
    try:
        with SkySparkClient.from_settings(settings) as client:
            if args.naive:
                client.utc_his_write_num(args.id, tz, args.samples, args.unit)
            else:
                client.his_write_num(args.id, args.unit, tz, args.samples)
    except SkySparkError as e:
        logger.error(str(e))
        return 1

    print(f"OK: wrote {len(args.samples)} samples to {args.id}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
