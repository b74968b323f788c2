from typing import Iterable

import structlog

from quotameter.models import (
    UNTITLED_SESSION,
    AggregateResult,
    ModelRow,
    PricingKey,
    SessionInfo,
    SessionModelTokens,
    SessionRow,
    SessionTokenSummary,
    SourceModelRow,
    SourceProviderRow,
    TokenBuckets,
    UnknownKey,
    UnknownRow,
    UsageRecord,
    UsageTotals,
    UsageWindow,
)
from quotameter.pricing.catalog import PricingCatalog
from quotameter.pricing.cost import calculate_cost
from quotameter.pricing.mapper import UNKNOWN_ID, Mapped, ModelMapper
from quotameter.storage.base import UsageSource

logger = structlog.get_logger()


class UsageAggregator:
    """
    UsageAggregator folds usage records into priced and unpriced
    totals plus the per-model, per-session, per-source-provider
    and per-source-model breakdowns.

    Folding is synchronous: a record is mapped, priced and added
    to every row it belongs to in one step.
    """

    def __init__(
        self,
        catalog: "PricingCatalog",
        sessions: "dict[str, SessionInfo] | None" = None,
        mapper: "ModelMapper | None" = None,
    ) -> "None":
        self._catalog = catalog
        self._mapper = mapper or ModelMapper(catalog)
        self._sessions = sessions or {}

        self._priced = TokenBuckets()
        self._unknown_tokens = TokenBuckets()
        self._cost = 0.0
        self._message_count = 0
        self._session_ids: "set[str]" = set()

        self._by_model: "dict[PricingKey, ModelRow]" = {}
        self._by_session: "dict[str, SessionRow]" = {}
        self._by_source_provider: "dict[str, SourceProviderRow]" = {}
        self._by_source_model: "dict[tuple[str, str], SourceModelRow]" = {}
        self._unknown: "dict[UnknownKey, UnknownRow]" = {}

    def add(self, record: "UsageRecord") -> "None":
        tokens = record.tokens
        self._message_count += 1
        self._session_ids.add(record.session_id)

        mapping = self._mapper.map(record.provider_id, record.model_id)
        if not isinstance(mapping, Mapped):
            self._add_unknown(mapping.unknown, tokens)
            return

        cost = calculate_cost(mapping.key, tokens, self._catalog)
        if cost is None:
            # mapped, but the catalog has no rates for the key
            self._add_unknown(
                UnknownKey(
                    record.provider_id or UNKNOWN_ID,
                    record.model_id or UNKNOWN_ID,
                    mapping.key.provider,
                    mapping.key.model,
                ),
                tokens,
            )
            return

        self._priced = self._priced + tokens
        self._cost += cost

        row = self._by_model.get(mapping.key)
        if row is None:
            row = self._by_model[mapping.key] = ModelRow(key=mapping.key)
        row.add(tokens, cost)

        session = self._by_session.get(record.session_id)
        if session is None:
            info = self._sessions.get(record.session_id)
            title = info.title if info is not None and info.title else UNTITLED_SESSION
            session = self._by_session[record.session_id] = SessionRow(
                session_id=record.session_id, title=title
            )
        session.add(tokens, cost)

        provider_id = record.provider_id or UNKNOWN_ID
        source = self._by_source_provider.get(provider_id)
        if source is None:
            source = self._by_source_provider[provider_id] = SourceProviderRow(
                provider_id=provider_id
            )
        source.add(tokens, cost)

        model_key = (provider_id, record.model_id or UNKNOWN_ID)
        source_model = self._by_source_model.get(model_key)
        if source_model is None:
            source_model = self._by_source_model[model_key] = SourceModelRow(
                provider_id=model_key[0], model_id=model_key[1]
            )
        source_model.add(tokens, cost)

    def _add_unknown(self, key: "UnknownKey", tokens: "TokenBuckets") -> "None":
        self._unknown_tokens = self._unknown_tokens + tokens
        row = self._unknown.get(key)
        if row is None:
            row = self._unknown[key] = UnknownRow(key=key)
        row.add(tokens)

    def result(
        self, since_ms: "int | None" = None, until_ms: "int | None" = None
    ) -> "AggregateResult":
        # sorted() is stable, ties keep first-seen order
        return AggregateResult(
            window=UsageWindow(since_ms=since_ms, until_ms=until_ms),
            totals=UsageTotals(
                priced=self._priced,
                unknown=self._unknown_tokens,
                cost_usd=self._cost,
                message_count=self._message_count,
                session_count=len(self._session_ids),
            ),
            by_model=sorted(
                self._by_model.values(), key=lambda r: r.cost_usd, reverse=True
            ),
            by_session=sorted(
                self._by_session.values(), key=lambda r: r.cost_usd, reverse=True
            ),
            by_source_provider=sorted(
                self._by_source_provider.values(),
                key=lambda r: r.cost_usd,
                reverse=True,
            ),
            by_source_model=sorted(
                self._by_source_model.values(),
                key=lambda r: r.cost_usd,
                reverse=True,
            ),
            unknown=sorted(
                self._unknown.values(), key=lambda r: r.tokens.total(), reverse=True
            ),
        )


def aggregate_records(
    records: "Iterable[UsageRecord]",
    catalog: "PricingCatalog",
    sessions: "dict[str, SessionInfo] | None" = None,
    mapper: "ModelMapper | None" = None,
    since_ms: "int | None" = None,
    until_ms: "int | None" = None,
) -> "AggregateResult":
    aggregator = UsageAggregator(catalog, sessions, mapper)
    for record in sorted(records, key=lambda r: r.created_ms):
        aggregator.add(record)
    return aggregator.result(since_ms, until_ms)


async def aggregate_usage(
    source: "UsageSource",
    catalog: "PricingCatalog",
    since_ms: "int | None" = None,
    until_ms: "int | None" = None,
    session_id: "str | None" = None,
    mapper: "ModelMapper | None" = None,
) -> "AggregateResult":
    """
    reads usage records for the window (or a single session)
    and aggregates them. SessionNotFoundError from the source
    propagates to the caller.
    """
    if session_id:
        records = await source.list_records_for_session(session_id, since_ms, until_ms)
    else:
        records = await source.list_records(since_ms, until_ms)
    sessions = await source.read_sessions_index()

    result = aggregate_records(records, catalog, sessions, mapper, since_ms, until_ms)
    logger.debug(
        "usage_aggregated",
        message_count=result.totals.message_count,
        unknown_rows=len(result.unknown),
        cost_usd=round(result.totals.cost_usd, 6),
    )
    return result


async def session_token_summary(
    source: "UsageSource", session_id: "str"
) -> "SessionTokenSummary | None":
    """
    sums input/output tokens per logged model id for one session.
    Returns None when the session has no token data.
    """
    records = await source.list_records_for_session(session_id)

    by_model: "dict[str, list[int]]" = {}
    total_input = 0
    total_output = 0
    for record in records:
        if record.tokens.input == 0 and record.tokens.output == 0:
            continue
        total_input += record.tokens.input
        total_output += record.tokens.output
        counts = by_model.setdefault(record.model_id or UNKNOWN_ID, [0, 0])
        counts[0] += record.tokens.input
        counts[1] += record.tokens.output

    if not by_model:
        return None

    models = sorted(
        (
            SessionModelTokens(model_id=m, input=i, output=o)
            for m, (i, o) in by_model.items()
        ),
        key=lambda m: m.input + m.output,
        reverse=True,
    )
    return SessionTokenSummary(
        session_id=session_id,
        models=models,
        total_input=total_input,
        total_output=total_output,
    )
