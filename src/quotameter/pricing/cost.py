from quotameter.models import TOKEN_FIELDS, PricingKey, TokenBuckets
from quotameter.pricing.catalog import PricingCatalog

TOKENS_PER_RATE_UNIT = 1_000_000


def calculate_cost(
    key: "PricingKey",
    tokens: "TokenBuckets",
    catalog: "PricingCatalog",
) -> "float | None":
    """
    prices a token bucket in USD. Returns None when the catalog
    has no entry for the key; callers treat that as unpriced.
    """
    rates = catalog.lookup(key.provider, key.model)
    if rates is None:
        return None

    cost = 0.0
    for field_name in TOKEN_FIELDS:
        rate = rates.rate_for(field_name)
        cost += getattr(tokens, field_name) * rate / TOKENS_PER_RATE_UNIT

    return max(0.0, cost)
