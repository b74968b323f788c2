import math
from dataclasses import dataclass, field
from typing import Any

UNTITLED_SESSION = "untitled"

TOKEN_FIELDS: "tuple[str, ...]" = (
    "input",
    "output",
    "reasoning",
    "cache_read",
    "cache_write",
)


def _count(value: "Any") -> "int":
    # bool is an int subclass, never a token count
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    return max(0, int(value))


@dataclass(frozen=True, slots=True)
class TokenBuckets:
    """
    TokenBuckets holds the five token counters of a reply.
    Addition is componentwise and returns a new object.
    """

    input: "int" = 0
    output: "int" = 0
    reasoning: "int" = 0
    cache_read: "int" = 0
    cache_write: "int" = 0

    @classmethod
    def from_message(cls, tokens: "Any") -> "TokenBuckets":
        """
        builds buckets from the raw "tokens" object of a stored
        message. Missing or non-numeric counters count as zero.
        """
        if not isinstance(tokens, dict):
            return cls()

        cache = tokens.get("cache")
        if not isinstance(cache, dict):
            cache = {}

        return cls(
            input=_count(tokens.get("input")),
            output=_count(tokens.get("output")),
            reasoning=_count(tokens.get("reasoning")),
            cache_read=_count(cache.get("read")),
            cache_write=_count(cache.get("write")),
        )

    def total(self) -> "int":
        return (
            self.input
            + self.output
            + self.reasoning
            + self.cache_read
            + self.cache_write
        )

    def __add__(self, other: "TokenBuckets") -> "TokenBuckets":
        return TokenBuckets(
            input=self.input + other.input,
            output=self.output + other.output,
            reasoning=self.reasoning + other.reasoning,
            cache_read=self.cache_read + other.cache_read,
            cache_write=self.cache_write + other.cache_write,
        )


@dataclass(frozen=True, slots=True)
class UsageRecord:
    """
    UsageRecord represents one assistant reply read from
    local storage.
    """

    id: "str"
    session_id: "str"
    # source identifiers as logged, not the pricing identifiers
    provider_id: "str | None"
    model_id: "str | None"
    tokens: "TokenBuckets"
    # epoch milliseconds
    created_ms: "int"


@dataclass(frozen=True, slots=True)
class SessionInfo:
    id: "str"
    title: "str | None" = None
    parent_id: "str | None" = None
    created_ms: "int | None" = None
    updated_ms: "int | None" = None


@dataclass(frozen=True, slots=True)
class PricingKey:
    """
    PricingKey is the official (provider, model) pair used
    to look up rates in the pricing catalog.
    """

    provider: "str"
    model: "str"

    def __str__(self) -> "str":
        return f"{self.provider}/{self.model}"


@dataclass(frozen=True, slots=True)
class UnknownKey:
    """
    UnknownKey records source identifiers that could not be priced.
    mapped_provider is None when no official provider could be
    inferred; when it is set, the mapping worked but the catalog
    has no entry for it.
    """

    source_provider: "str"
    source_model: "str"
    mapped_provider: "str | None" = None
    mapped_model: "str | None" = None

    @property
    def is_unpriced(self) -> "bool":
        return self.mapped_provider is not None


@dataclass(kw_only=True)
class UsageRow:
    """
    UsageRow is the running total shared by every breakdown.
    """

    tokens: "TokenBuckets" = field(default_factory=TokenBuckets)
    cost_usd: "float" = 0.0
    message_count: "int" = 0

    def add(self, tokens: "TokenBuckets", cost_usd: "float" = 0.0) -> "None":
        self.tokens = self.tokens + tokens
        self.cost_usd += cost_usd
        self.message_count += 1


@dataclass(kw_only=True)
class ModelRow(UsageRow):
    key: "PricingKey"


@dataclass(kw_only=True)
class SessionRow(UsageRow):
    session_id: "str"
    title: "str" = UNTITLED_SESSION


@dataclass(kw_only=True)
class SourceProviderRow(UsageRow):
    provider_id: "str"


@dataclass(kw_only=True)
class SourceModelRow(UsageRow):
    provider_id: "str"
    model_id: "str"


@dataclass(kw_only=True)
class UnknownRow(UsageRow):
    key: "UnknownKey"


@dataclass(frozen=True, slots=True)
class UsageWindow:
    since_ms: "int | None" = None
    until_ms: "int | None" = None


@dataclass(frozen=True, slots=True)
class UsageTotals:
    priced: "TokenBuckets"
    unknown: "TokenBuckets"
    cost_usd: "float"
    message_count: "int"
    session_count: "int"


@dataclass(frozen=True, slots=True)
class AggregateResult:
    window: "UsageWindow"
    totals: "UsageTotals"
    by_model: "list[ModelRow]"
    by_session: "list[SessionRow]"
    by_source_provider: "list[SourceProviderRow]"
    by_source_model: "list[SourceModelRow]"
    unknown: "list[UnknownRow]"


@dataclass(frozen=True, slots=True)
class SessionModelTokens:
    model_id: "str"
    input: "int"
    output: "int"


@dataclass(frozen=True, slots=True)
class SessionTokenSummary:
    session_id: "str"
    models: "list[SessionModelTokens]"
    total_input: "int"
    total_output: "int"


@dataclass(frozen=True, slots=True)
class AccountCredential:
    """
    AccountCredential is one externally supplied account. The
    refresh token is read-only to this package.
    """

    refresh_token: "str" = field(repr=False)
    project_id: "str | None" = None
    email: "str | None" = None

    @property
    def label(self) -> "str":
        return self.email or "Unknown"


@dataclass(frozen=True, slots=True)
class CachedAccessToken:
    """
    CachedAccessToken is a short-lived access token persisted
    between runs. It never carries the refresh token.
    """

    access_token: "str" = field(repr=False)
    # epoch milliseconds
    expires_at: "int"
    project_id: "str"
    email: "str | None" = None

    def to_dict(self) -> "dict[str, Any]":
        data: "dict[str, Any]" = {
            "accessToken": self.access_token,
            "expiresAt": self.expires_at,
            "projectId": self.project_id,
        }
        if self.email is not None:
            data["email"] = self.email
        return data

    @classmethod
    def from_dict(cls, data: "Any") -> "CachedAccessToken | None":
        if not isinstance(data, dict):
            return None

        access_token = data.get("accessToken")
        expires_at = data.get("expiresAt")
        project_id = data.get("projectId")
        email = data.get("email")
        if not isinstance(access_token, str) or not isinstance(project_id, str):
            return None
        if isinstance(expires_at, bool) or not isinstance(expires_at, (int, float)):
            return None
        if isinstance(expires_at, float) and not math.isfinite(expires_at):
            return None

        return cls(
            access_token=access_token,
            expires_at=int(expires_at),
            project_id=project_id,
            email=email if isinstance(email, str) else None,
        )


@dataclass(frozen=True, slots=True)
class TokenGrant:
    access_token: "str" = field(repr=False)
    expires_in_seconds: "int"


@dataclass(frozen=True, slots=True)
class ModelQuotaInfo:
    """
    ModelQuotaInfo is the raw per-model quota snapshot
    returned by the quota endpoint.
    """

    remaining_fraction: "float"
    reset_time_iso: "str | None" = None


@dataclass(frozen=True, slots=True)
class ModelQuota:
    model_id: "str"
    display_name: "str"
    percent_remaining: "int"
    reset_time_iso: "str | None" = None
    account_email: "str | None" = None


@dataclass(frozen=True, slots=True)
class AccountFailure:
    email: "str"
    error: "str"


@dataclass(frozen=True, slots=True)
class RefreshSummary:
    total: "int"
    success_count: "int"
    failures: "list[AccountFailure]"


@dataclass(frozen=True, slots=True)
class QuotaReport:
    """
    QuotaReport combines per-account quota results. success is
    True when at least one account returned model data.
    """

    success: "bool"
    models: "list[ModelQuota]" = field(default_factory=list)
    errors: "list[AccountFailure]" = field(default_factory=list)
    error: "str | None" = None
