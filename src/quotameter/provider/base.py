from typing import Protocol, Sequence

from quotameter.models import ModelQuota, ModelQuotaInfo, TokenGrant


class AccountQuotaClient(Protocol):
    """
    AccountQuotaClient stands as a common protocol for
    providers whose quota is read per account with an OAuth
    access token.

    refresh_access_token raises TokenRevokedError when the
    refresh token is no longer valid, TokenRefreshError for any
    other refusal. fetch_quota raises QuotaAuthError on 401/403
    so callers can refresh and retry once. Both raise
    RequestTimeoutError when their time budget runs out.
    """

    @property
    def name(self) -> "str": ...

    async def refresh_access_token(self, refresh_token: "str") -> "TokenGrant": ...

    async def fetch_quota(
        self,
        access_token: "str",
        project_id: "str",
    ) -> "dict[str, ModelQuotaInfo]": ...

    def extract_models(
        self,
        quotas: "dict[str, ModelQuotaInfo]",
        model_ids: "Sequence[str]",
        account_email: "str | None" = None,
    ) -> "list[ModelQuota]": ...

    async def close(self) -> "None": ...
