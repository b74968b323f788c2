import pytest
from prometheus_client import CollectorRegistry

from quotameter.pricing.catalog import ModelRates, StaticPricingCatalog


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


@pytest.fixture()
def catalog() -> "StaticPricingCatalog":
    """
    small catalog with round per-million rates.
    """
    return StaticPricingCatalog(
        {
            ("anthropic", "claude-opus-4-5"): ModelRates(
                input=5.0, output=25.0, cache_read=0.5, cache_write=6.25
            ),
            ("anthropic", "claude-sonnet-4-5"): ModelRates(input=3.0, output=15.0),
            ("openai", "gpt-5"): ModelRates(input=1.25, output=10.0, cache_read=0.125),
            ("google", "gemini-3-pro-preview"): ModelRates(input=2.0, output=12.0),
            ("moonshotai", "kimi-k2-thinking"): ModelRates(input=0.6, output=2.5),
            ("zai", "glm-4.7"): ModelRates(input=0.6, output=2.2),
        }
    )
