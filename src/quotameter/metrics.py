from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram


class QuotaMetrics:
    """
    records token refresh, cache lookup and quota fetch
    outcomes as Prometheus series.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._registry: "CollectorRegistry" = registry
        self._token_refresh: "Counter" = Counter(
            "quotameter_token_refresh_total",
            "Access token refresh attempts by outcome",
            ["provider", "outcome"],
            registry=registry,
        )
        self._cache_lookups: "Counter" = Counter(
            "quotameter_token_cache_lookups_total",
            "Access token cache lookups by result",
            ["result"],
            registry=registry,
        )
        self._quota_fetch: "Counter" = Counter(
            "quotameter_quota_fetch_total",
            "Quota requests by outcome",
            ["provider", "outcome"],
            registry=registry,
        )
        self._account_duration: "Histogram" = Histogram(
            "quotameter_account_duration_seconds",
            "Duration of one account's refresh and quota cycle",
            ["provider"],
            registry=registry,
        )

    @property
    def registry(self) -> "CollectorRegistry":
        return self._registry

    def inc_token_refresh(self, provider: "str", outcome: "str") -> "None":
        self._token_refresh.labels(provider=provider, outcome=outcome).inc()

    def inc_cache_lookup(self, hit: "bool") -> "None":
        self._cache_lookups.labels(result="hit" if hit else "miss").inc()

    def inc_quota_fetch(self, provider: "str", outcome: "str") -> "None":
        self._quota_fetch.labels(provider=provider, outcome=outcome).inc()

    def observe_account_duration(
        self, provider: "str", duration_seconds: "float"
    ) -> "None":
        self._account_duration.labels(provider=provider).observe(duration_seconds)
