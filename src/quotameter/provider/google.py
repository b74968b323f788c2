import math
from dataclasses import dataclass
from typing import Any, Sequence

import httpx
import structlog

from quotameter.errors import (
    QuotaAuthError,
    QuotaFetchError,
    RequestTimeoutError,
    TokenRefreshError,
    TokenRevokedError,
)
from quotameter.models import ModelQuota, ModelQuotaInfo, TokenGrant

logger = structlog.get_logger()

GOOGLE_TOKEN_REFRESH_URL = "https://oauth2.googleapis.com/token"
GOOGLE_QUOTA_API_URL = (
    "https://cloudcode-pa.googleapis.com/v1internal:fetchAvailableModels"
)
USER_AGENT = "antigravity/1.11.9 darwin/arm64"

# seconds
GOOGLE_TOKEN_TIMEOUT = 8.0
GOOGLE_QUOTA_TIMEOUT = 6.0


@dataclass(frozen=True, slots=True)
class GoogleModelKey:
    key: "str"
    display: "str"
    alt_key: "str | None" = None


# each entry maps a short model id to the quota API's model keys
GOOGLE_MODEL_KEYS: "dict[str, GoogleModelKey]" = {
    "G3PRO": GoogleModelKey("gemini-3-pro-high", "G3Pro", "gemini-3-pro-low"),
    "G3FLASH": GoogleModelKey("gemini-3-flash", "G3Flash"),
    "CLAUDE": GoogleModelKey("claude-opus-4-5-thinking", "Claude", "claude-opus-4-5"),
    "G3IMAGE": GoogleModelKey("gemini-3-pro-image", "G3Image"),
}


def parse_quota_response(data: "Any") -> "dict[str, ModelQuotaInfo]":
    models = data.get("models") if isinstance(data, dict) else None
    if not isinstance(models, dict):
        return {}

    quotas: "dict[str, ModelQuotaInfo]" = {}
    for key, info in models.items():
        quota_info = info.get("quotaInfo") if isinstance(info, dict) else None
        if not isinstance(quota_info, dict):
            quota_info = {}
        fraction = quota_info.get("remainingFraction")
        if isinstance(fraction, bool) or not isinstance(fraction, (int, float)):
            fraction = 0.0
        elif isinstance(fraction, float) and not math.isfinite(fraction):
            # unusable snapshot, the model is left out
            continue
        reset_time = quota_info.get("resetTime")
        quotas[key] = ModelQuotaInfo(
            remaining_fraction=float(min(1.0, max(0.0, fraction))),
            reset_time_iso=reset_time if isinstance(reset_time, str) else None,
        )
    return quotas


def extract_model_quotas(
    quotas: "dict[str, ModelQuotaInfo]",
    model_ids: "Sequence[str]",
    account_email: "str | None" = None,
) -> "list[ModelQuota]":
    """
    picks the requested models out of a quota response, trying
    the alternate key when the primary one is absent.
    """
    result: "list[ModelQuota]" = []

    for model_id in model_ids:
        model_key = GOOGLE_MODEL_KEYS.get(model_id)
        if model_key is None:
            continue

        info = quotas.get(model_key.key)
        if info is None and model_key.alt_key:
            info = quotas.get(model_key.alt_key)
        if info is None:
            continue

        result.append(
            ModelQuota(
                model_id=model_id,
                display_name=model_key.display,
                percent_remaining=round(info.remaining_fraction * 100),
                reset_time_iso=info.reset_time_iso,
                account_email=account_email,
            )
        )

    return result


class GoogleAntigravityClient:
    """
    GoogleAntigravityClient implements the AccountQuotaClient
    protocol for Google Antigravity accounts: it refreshes OAuth
    access tokens and reads per-model remaining quota fractions.
    """

    def __init__(
        self,
        client_id: "str",
        client_secret: "str",
        token_timeout: "float" = GOOGLE_TOKEN_TIMEOUT,
        quota_timeout: "float" = GOOGLE_QUOTA_TIMEOUT,
    ) -> "None":
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_timeout = token_timeout
        self._quota_timeout = quota_timeout
        self._client: "httpx.AsyncClient" = httpx.AsyncClient(
            headers={"User-Agent": USER_AGENT},
        )

    @property
    def name(self) -> "str":
        return "google-antigravity"

    async def close(self) -> "None":
        """
        closes the underlying HTTP client.
        """
        await self._client.aclose()

    async def refresh_access_token(self, refresh_token: "str") -> "TokenGrant":
        try:
            resp = await self._client.post(
                GOOGLE_TOKEN_REFRESH_URL,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
                timeout=self._token_timeout,
            )
        except httpx.TimeoutException:
            raise RequestTimeoutError(
                GOOGLE_TOKEN_REFRESH_URL, self._token_timeout
            ) from None
        except httpx.HTTPError as e:
            raise TokenRefreshError(f"Token refresh failed: {e}") from e

        if resp.status_code != 200:
            raise self._refresh_error(resp)

        try:
            data = resp.json()
            access_token = data["access_token"]
            expires_in = int(data.get("expires_in", 0))
        except (ValueError, KeyError, TypeError) as e:
            raise TokenRefreshError("Token refresh returned an invalid body") from e

        logger.debug("google_token_refreshed", expires_in=expires_in)
        return TokenGrant(access_token=access_token, expires_in_seconds=expires_in)

    @staticmethod
    def _refresh_error(resp: "httpx.Response") -> "TokenRefreshError":
        try:
            body = resp.json()
        except ValueError:
            body = None

        if not isinstance(body, dict):
            return TokenRefreshError(f"HTTP {resp.status_code}")
        if body.get("error") == "invalid_grant":
            return TokenRevokedError("Token revoked")
        return TokenRefreshError(
            str(body.get("error_description") or f"HTTP {resp.status_code}")
        )

    async def fetch_quota(
        self,
        access_token: "str",
        project_id: "str",
    ) -> "dict[str, ModelQuotaInfo]":
        try:
            resp = await self._client.post(
                GOOGLE_QUOTA_API_URL,
                json={"project": project_id},
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self._quota_timeout,
            )
        except httpx.TimeoutException:
            raise RequestTimeoutError(GOOGLE_QUOTA_API_URL, self._quota_timeout) from None

        if resp.status_code in (401, 403):
            raise QuotaAuthError(resp.status_code)
        if resp.status_code != 200:
            raise QuotaFetchError(resp.status_code)

        try:
            body = resp.json()
        except ValueError:
            raise QuotaFetchError(
                resp.status_code, "Quota API returned an invalid body"
            ) from None

        quotas = parse_quota_response(body)
        logger.debug("google_quota_fetched", model_count=len(quotas))
        return quotas

    def extract_models(
        self,
        quotas: "dict[str, ModelQuotaInfo]",
        model_ids: "Sequence[str]",
        account_email: "str | None" = None,
    ) -> "list[ModelQuota]":
        return extract_model_quotas(quotas, model_ids, account_email)
