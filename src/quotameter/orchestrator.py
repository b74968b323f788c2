import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Sequence, TypeVar

import structlog

from quotameter.errors import (
    QuotaAuthError,
    RequestTimeoutError,
    TokenRefreshError,
    TokenRevokedError,
)
from quotameter.metrics import QuotaMetrics
from quotameter.models import (
    AccountCredential,
    AccountFailure,
    CachedAccessToken,
    ModelQuota,
    QuotaReport,
    RefreshSummary,
)
from quotameter.provider.base import AccountQuotaClient
from quotameter.token_cache import AccessTokenCache, make_account_cache_key, now_ms

logger = structlog.get_logger()

T = TypeVar("T")
R = TypeVar("R")

# accounts processed at once
DEFAULT_CONCURRENCY = 3
DEFAULT_SKEW_MS = 2 * 60_000

REVOKED_MESSAGE = "Token revoked; sign in to this account again"
NO_PROJECT_MESSAGE = "No projectId"


async def map_with_concurrency(
    items: "Sequence[T]",
    concurrency: "int",
    fn: "Callable[[T], Awaitable[R]]",
) -> "list[R]":
    """
    runs fn over items with at most `concurrency` calls in
    flight. Workers claim the next unclaimed index until none
    remain; results keep the order of items.
    """
    results: "list[Any]" = [None] * len(items)
    next_index = 0

    async def worker() -> "None":
        nonlocal next_index
        while next_index < len(items):
            # claimed before the first await, so no two workers share it
            index = next_index
            next_index += 1
            results[index] = await fn(items[index])

    workers = min(max(1, int(concurrency)), len(items))
    await asyncio.gather(*(worker() for _ in range(workers)))
    return results


def describe_error(exc: "BaseException", stage: "str") -> "str":
    """
    turns an account-level exception into the message shown to
    the user. Revoked credentials get their own message.
    """
    if isinstance(exc, TokenRevokedError):
        return REVOKED_MESSAGE
    if isinstance(exc, RequestTimeoutError):
        return "Token refresh timeout" if stage == "refresh" else "API timeout"
    if isinstance(exc, TokenRefreshError):
        return str(exc) or "Token refresh failed"
    return str(exc) or type(exc).__name__


@dataclass
class AccountQuotaOutcome:
    email: "str"
    models: "list[ModelQuota]" = field(default_factory=list)
    error: "str | None" = None


class AccountRefreshOrchestrator:
    """
    AccountRefreshOrchestrator resolves access tokens and reads
    quota for any number of accounts of one provider.

    Tokens come from the AccessTokenCache while they stay valid
    past the skew margin, otherwise from a live refresh whose
    result is written back to the cache. A quota call rejected
    with 401/403 gets exactly one forced refresh and retry.

    Accounts are independent: each task catches its own errors
    and reports them as a per-account failure.
    """

    def __init__(
        self,
        client: "AccountQuotaClient",
        cache: "AccessTokenCache",
        concurrency: "int" = DEFAULT_CONCURRENCY,
        skew_ms: "int" = DEFAULT_SKEW_MS,
        metrics: "QuotaMetrics | None" = None,
        clock: "Callable[[], int]" = now_ms,
    ) -> "None":
        self._client = client
        self._cache = cache
        self._concurrency = concurrency
        self._skew_ms = skew_ms
        self._metrics = metrics
        self._clock = clock

    async def _refresh(
        self, account: "AccountCredential", project_id: "str", key: "str"
    ) -> "str":
        try:
            grant = await self._client.refresh_access_token(account.refresh_token)
        except TokenRevokedError:
            self._record_refresh("revoked")
            raise
        except RequestTimeoutError:
            self._record_refresh("timeout")
            raise
        except Exception:
            self._record_refresh("error")
            raise

        self._record_refresh("success")
        await self._cache.set(
            key,
            CachedAccessToken(
                access_token=grant.access_token,
                expires_at=self._clock() + max(1, grant.expires_in_seconds) * 1000,
                project_id=project_id,
                email=account.email,
            ),
        )
        return grant.access_token

    async def get_access_token(
        self,
        account: "AccountCredential",
        project_id: "str",
        skew_ms: "int | None" = None,
        force: "bool" = False,
    ) -> "str":
        """
        returns a usable access token, refreshing when the cache
        has none valid for skew_ms or when force is set.
        """
        key = make_account_cache_key(account.refresh_token, project_id, account.email)

        if not force:
            cached = await self._cache.get(
                key, self._skew_ms if skew_ms is None else skew_ms
            )
            if self._metrics is not None:
                self._metrics.inc_cache_lookup(cached is not None)
            if cached is not None:
                return cached.access_token

        return await self._refresh(account, project_id, key)

    async def refresh_all(
        self,
        accounts: "Sequence[AccountCredential]",
        skew_ms: "int | None" = None,
        force: "bool" = False,
    ) -> "RefreshSummary":
        async def refresh_one(account: "AccountCredential") -> "AccountFailure | None":
            if not account.project_id:
                return AccountFailure(email=account.label, error=NO_PROJECT_MESSAGE)
            try:
                await self.get_access_token(
                    account, account.project_id, skew_ms=skew_ms, force=force
                )
            except Exception as e:
                message = describe_error(e, "refresh")
                logger.warning(
                    "token_refresh_failed", account=account.label, error=message
                )
                return AccountFailure(email=account.label, error=message)
            return None

        results = await map_with_concurrency(accounts, self._concurrency, refresh_one)
        failures = [r for r in results if r is not None]

        return RefreshSummary(
            total=len(accounts),
            success_count=len(accounts) - len(failures),
            failures=failures,
        )

    async def fetch_account_quota(
        self,
        account: "AccountCredential",
        model_ids: "Sequence[str]",
    ) -> "AccountQuotaOutcome":
        email = account.label
        project_id = account.project_id
        if not project_id:
            return AccountQuotaOutcome(email=email, error=NO_PROJECT_MESSAGE)

        cycle_start = time.monotonic()
        stage = "refresh"
        try:
            token = await self.get_access_token(account, project_id)

            stage = "quota"
            try:
                quotas = await self._client.fetch_quota(token, project_id)
            except QuotaAuthError as e:
                self._record_quota("auth_error")
                logger.info(
                    "quota_auth_retry", account=email, status_code=e.status_code
                )
                stage = "refresh"
                token = await self.get_access_token(account, project_id, force=True)
                stage = "quota"
                # a second failure is surfaced as is
                quotas = await self._client.fetch_quota(token, project_id)

            models = self._client.extract_models(quotas, model_ids, email)

        except Exception as e:
            if stage == "quota":
                self._record_quota(
                    "timeout" if isinstance(e, RequestTimeoutError) else "error"
                )
            message = describe_error(e, stage)
            logger.warning("account_quota_failed", account=email, error=message)
            return AccountQuotaOutcome(email=email, error=message)

        finally:
            if self._metrics is not None:
                self._metrics.observe_account_duration(
                    self._client.name, time.monotonic() - cycle_start
                )

        self._record_quota("success")
        return AccountQuotaOutcome(email=email, models=models)

    async def query_quota(
        self,
        accounts: "Sequence[AccountCredential]",
        model_ids: "Sequence[str]",
    ) -> "QuotaReport":
        if not accounts:
            return QuotaReport(success=False, error="No accounts configured")

        outcomes = await map_with_concurrency(
            accounts,
            self._concurrency,
            lambda account: self.fetch_account_quota(account, model_ids),
        )

        models: "list[ModelQuota]" = []
        errors: "list[AccountFailure]" = []
        for outcome in outcomes:
            if outcome.error is not None:
                errors.append(AccountFailure(email=outcome.email, error=outcome.error))
            else:
                # an account with no matching models is simply empty
                models.extend(outcome.models)

        if models:
            return QuotaReport(success=True, models=models, errors=errors)
        if errors:
            return QuotaReport(success=False, errors=errors, error="All accounts failed")
        return QuotaReport(success=False, error="No quota data available")

    def _record_refresh(self, outcome: "str") -> "None":
        if self._metrics is not None:
            self._metrics.inc_token_refresh(self._client.name, outcome)

    def _record_quota(self, outcome: "str") -> "None":
        if self._metrics is not None:
            self._metrics.inc_quota_fetch(self._client.name, outcome)
