"""Main entry point: run one query against the server and print the result."""

import argparse
import asyncio
import logging
import math
import sys

from promquery.client import list_metrics, query_metrics, query_metrics_range
from promquery.config import load_config, parse_duration
from promquery.errors import ConfigError, PromQueryError, QueryError
from promquery.formatting import OUTPUT_FORMATS, format_metric_names, format_result

log = logging.getLogger("promquery")


def setup_logging(log_level: str):
    """Send log records to stderr so stdout only carries results."""
    level = getattr(logging, log_level.upper(), logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )
    if level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


def _duration(text: str) -> float:
    try:
        return parse_duration(text)
    except ConfigError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _timestamp(text: str) -> float:
    try:
        value = float(text)
    except ValueError:
        value = math.nan
    if "_" in text or not math.isfinite(value):
        raise argparse.ArgumentTypeError(f"invalid end timestamp '{text}'")
    return value


def _seconds(text: str) -> int:
    if not (text.isascii() and text.isdigit()):
        raise argparse.ArgumentTypeError(f"invalid number of seconds '{text}'")
    return int(text)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="promquery",
        description="Query a Prometheus server and print the results as CSV or text",
    )
    parser.add_argument(
        "--server",
        help="URL of the Prometheus server to query (env: PROMETHEUS_URL)",
    )
    parser.add_argument(
        "--timeout",
        type=_duration,
        help="Timeout for the whole request, e.g. 30s or 1m (env: PROMQUERY_TIMEOUT, default: 1m)",
    )
    parser.add_argument(
        "--format",
        dest="output_format",
        choices=OUTPUT_FORMATS,
        help="Output format (env: PROMQUERY_FORMAT, default: csv)",
    )
    parser.add_argument(
        "--csv-delimiter",
        help="Single-character delimiter to use in CSV output (env: PROMQUERY_CSV_DELIMITER, default: ;)",
    )
    parser.add_argument(
        "--log-level",
        help="Log level for diagnostics on stderr (env: LOG_LEVEL, default: WARNING)",
    )

    commands = parser.add_subparsers(dest="command", metavar="command", required=True)

    query = commands.add_parser("query", help="Run an instant query")
    query.add_argument("expr", help="Query expression")

    query_range = commands.add_parser("query_range", help="Run a range query")
    query_range.add_argument("expr", help="Query expression")
    query_range.add_argument("end", type=_timestamp, help="End of the range as a Unix timestamp")
    query_range.add_argument("range", type=_seconds, help="Length of the range in seconds")
    query_range.add_argument(
        "step", type=_seconds, nargs="?", default=None,
        help="Resolution in seconds (default: range / 250, at least 1)",
    )

    commands.add_parser("metrics", help="List all metric names")
    return parser


async def execute(config, args, transport=None) -> str:
    """Run the selected command and return its formatted output."""
    if args.command == "query":
        result = await query_metrics(config, args.expr, transport=transport)
    elif args.command == "query_range":
        result = await query_metrics_range(
            config, args.expr, args.end, args.range, args.step, transport=transport
        )
    elif args.command == "metrics":
        names = await list_metrics(config, transport=transport)
        return format_metric_names(names)
    return format_result(result, config.output_format, config.csv_delimiter)


def main(argv=None, transport=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(
            server_url=args.server,
            timeout_seconds=args.timeout,
            output_format=args.output_format,
            csv_delimiter=args.csv_delimiter,
            log_level=args.log_level,
        )
    except ConfigError as e:
        parser.error(str(e))

    setup_logging(config.log_level)
    log.info("Running %s against %s", args.command, config.server_url)

    try:
        output = asyncio.run(execute(config, args, transport))
    except QueryError as e:
        log.debug("Server reported a query error", exc_info=True)
        print(f"Query error: {e.message}", file=sys.stderr)
        return 1
    except PromQueryError as e:
        log.debug("%s failed", args.command, exc_info=True)
        print(f"Error querying server: {e}", file=sys.stderr)
        return 1

    try:
        sys.stdout.write(output)
        sys.stdout.flush()
    except (OSError, ValueError) as e:
        print(f"Error writing output: {e}", file=sys.stderr)
        return 1
    return 0


def run():
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    run()
