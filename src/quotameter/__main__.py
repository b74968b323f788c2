import argparse
import asyncio

import structlog
from prometheus_client import CollectorRegistry, write_to_textfile

from quotameter.accounts import read_antigravity_accounts
from quotameter.aggregate import aggregate_usage, session_token_summary
from quotameter.cli import parse_args
from quotameter.config import Config
from quotameter.errors import SessionNotFoundError
from quotameter.logging import setup_logging
from quotameter.metrics import QuotaMetrics
from quotameter.orchestrator import AccountRefreshOrchestrator
from quotameter.pricing.catalog import load_catalog
from quotameter.pricing.mapper import ModelMapper, load_fallbacks
from quotameter.provider.google import GoogleAntigravityClient
from quotameter.report import (
    format_quota_report,
    format_refresh_summary,
    format_session_tokens,
    format_stats_report,
)
from quotameter.storage.opencode import OpenCodeStorage
from quotameter.token_cache import AccessTokenCache

logger = structlog.get_logger()


async def _stats(config: "Config", args: "argparse.Namespace") -> "str":
    catalog = await load_catalog(config.catalog_path)
    fallbacks = None
    if config.pricing_fallbacks_path:
        try:
            fallbacks = await load_fallbacks(config.pricing_fallbacks_path)
        except (OSError, ValueError) as e:
            raise SystemExit(
                f"Invalid pricing fallbacks file {config.pricing_fallbacks_path}: {e}"
            ) from None
    result = await aggregate_usage(
        OpenCodeStorage(config.data_dir),
        catalog,
        since_ms=args.since,
        until_ms=args.until,
        session_id=args.session_id,
        mapper=ModelMapper(catalog, fallbacks=fallbacks),
    )
    title = f"Session {args.session_id}" if args.session_id else "Token usage"
    return format_stats_report(
        result,
        title=title,
        top_models=args.top_models,
        top_sessions=args.top_sessions,
    )


async def _session_tokens(config: "Config", args: "argparse.Namespace") -> "str":
    summary = await session_token_summary(
        OpenCodeStorage(config.data_dir), args.session_id
    )
    if summary is None:
        return f"No token usage recorded for {args.session_id}"
    return format_session_tokens(summary)


async def _accounts(
    config: "Config", args: "argparse.Namespace", metrics: "QuotaMetrics"
) -> "str":
    if not config.antigravity_enabled:
        raise SystemExit(
            "Antigravity client not configured. Set ANTIGRAVITY_CLIENT_ID and "
            "ANTIGRAVITY_CLIENT_SECRET environment variables."
        )

    accounts = await read_antigravity_accounts(config.accounts_paths)
    if not accounts:
        raise SystemExit("No Antigravity accounts found.")

    client = GoogleAntigravityClient(
        config.antigravity_client_id, config.antigravity_client_secret
    )
    orchestrator = AccountRefreshOrchestrator(
        client,
        AccessTokenCache.for_path(config.token_cache_path),
        concurrency=config.concurrency,
        skew_ms=config.skew_ms,
        metrics=metrics,
    )
    try:
        if args.command == "refresh":
            summary = await orchestrator.refresh_all(accounts, force=args.force)
            return format_refresh_summary(summary)

        report = await orchestrator.query_quota(accounts, args.models)
        return format_quota_report(report)
    finally:
        await client.close()


async def _run(
    config: "Config", args: "argparse.Namespace", metrics: "QuotaMetrics"
) -> "str":
    if args.command == "stats":
        return await _stats(config, args)
    if args.command == "session-tokens":
        return await _session_tokens(config, args)
    if args.command == "clear-cache":
        await AccessTokenCache.for_path(config.token_cache_path).clear()
        return "Token cache cleared"
    return await _accounts(config, args, metrics)


def main() -> "None":
    config, args = parse_args()
    setup_logging(config.log_level, config.log_format)
    structlog.contextvars.bind_contextvars(command=args.command)

    registry = CollectorRegistry()
    metrics = QuotaMetrics(registry=registry)
    logger.debug("command_start")

    try:
        output = asyncio.run(_run(config, args, metrics))
    except SessionNotFoundError as e:
        raise SystemExit(str(e)) from None
    finally:
        if args.metrics_file:
            write_to_textfile(args.metrics_file, registry)

    print(output)


if __name__ == "__main__":
    main()
