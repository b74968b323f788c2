import argparse
import re
import time
from datetime import datetime

from quotameter.config import Config
from quotameter.logging import LOG_FORMATS
from quotameter.provider.google import GOOGLE_MODEL_KEYS

_RELATIVE = re.compile(r"^(\d+)([mhdw])$")
_UNIT_MS = {"m": 60_000, "h": 3_600_000, "d": 86_400_000, "w": 604_800_000}


def parse_time(value: "str", now_ms: "int | None" = None) -> "int":
    """
    parses a window bound: a relative age such as "24h" or "7d",
    an epoch-milliseconds integer, or an ISO date/time.
    """
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    value = value.strip()

    match = _RELATIVE.match(value)
    if match:
        return now_ms - int(match.group(1)) * _UNIT_MS[match.group(2)]
    if value.isdigit():
        return int(value)
    try:
        return int(datetime.fromisoformat(value).timestamp() * 1000)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid time: {value!r}") from None


def parse_models(value: "str") -> "list[str]":
    models = [m.strip().upper() for m in value.split(",") if m.strip()]
    unknown = [m for m in models if m not in GOOGLE_MODEL_KEYS]
    if unknown:
        raise argparse.ArgumentTypeError(
            f"unknown model ids: {', '.join(unknown)} "
            f"(choose from {', '.join(GOOGLE_MODEL_KEYS)})"
        )
    return models


def build_parser() -> "argparse.ArgumentParser":
    parser = argparse.ArgumentParser(
        prog="quotameter",
        description="AI provider quota and token spend summaries",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default="warning",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: warning)",
    )
    parser.add_argument(
        "--log.format",
        dest="log_format",
        default="console",
        choices=list(LOG_FORMATS),
        help="Log output format (default: console)",
    )
    parser.add_argument(
        "--metrics-file",
        dest="metrics_file",
        default=None,
        help="Write Prometheus metrics to this textfile after the run",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    stats = sub.add_parser("stats", help="Token usage and cost by model and session")
    stats.add_argument("--since", type=parse_time, default=None)
    stats.add_argument("--until", type=parse_time, default=None)
    stats.add_argument("--session", dest="session_id", default=None)
    stats.add_argument("--top-models", type=int, default=12)
    stats.add_argument("--top-sessions", type=int, default=8)

    tokens = sub.add_parser(
        "session-tokens", help="Input/output tokens per model for one session"
    )
    tokens.add_argument("session_id")

    quota = sub.add_parser("quota", help="Remaining quota for every account")
    quota.add_argument(
        "--models",
        type=parse_models,
        default=["CLAUDE"],
        help="Comma separated model ids (default: CLAUDE)",
    )

    refresh = sub.add_parser("refresh", help="Refresh cached access tokens")
    refresh.add_argument(
        "--force", action="store_true", help="Ignore cached tokens"
    )

    sub.add_parser("clear-cache", help="Drop all cached access tokens")
    return parser


def parse_args(
    argv: "list[str] | None" = None,
) -> "tuple[Config, argparse.Namespace]":
    args = build_parser().parse_args(argv)
    config = Config.from_env()
    config.log_level = args.log_level
    config.log_format = args.log_format
    return config, args
