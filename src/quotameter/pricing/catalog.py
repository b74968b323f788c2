import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Protocol

import aiofiles
import structlog

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class ModelRates:
    """
    ModelRates holds USD prices per 1,000,000 tokens. Optional
    rates fall back to input (cache) or output (reasoning).
    """

    input: "float"
    output: "float"
    cache_read: "float | None" = None
    cache_write: "float | None" = None
    reasoning: "float | None" = None

    def rate_for(self, field_name: "str") -> "float":
        if field_name == "input":
            return self.input
        if field_name == "output":
            return self.output
        if field_name == "cache_read":
            return self.input if self.cache_read is None else self.cache_read
        if field_name == "cache_write":
            return self.input if self.cache_write is None else self.cache_write
        if field_name == "reasoning":
            return self.output if self.reasoning is None else self.reasoning
        raise KeyError(field_name)


class PricingCatalog(Protocol):
    """
    PricingCatalog resolves an official (provider, model) pair
    to its rates, or None when the catalog has no entry.
    """

    def lookup(self, provider: "str", model: "str") -> "ModelRates | None": ...


def _rate(value: "Any") -> "float | None":
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


class StaticPricingCatalog:
    """
    StaticPricingCatalog is an in-memory catalog keyed by
    (provider, model).
    """

    def __init__(
        self, rates: "Mapping[tuple[str, str], ModelRates] | None" = None
    ) -> "None":
        self._rates: "dict[tuple[str, str], ModelRates]" = dict(rates or {})

    def __len__(self) -> "int":
        return len(self._rates)

    def lookup(self, provider: "str", model: "str") -> "ModelRates | None":
        return self._rates.get((provider, model))

    @classmethod
    def from_models_dev(cls, data: "Any") -> "StaticPricingCatalog":
        """
        builds a catalog from a models.dev style document:
        {provider: {"models": {model: {"cost": {...}}}}}.
        Models without a cost block are left out.
        """
        rates: "dict[tuple[str, str], ModelRates]" = {}
        if not isinstance(data, dict):
            return cls(rates)

        for provider_id, provider in data.items():
            if not isinstance(provider, dict):
                continue
            models = provider.get("models")
            if not isinstance(models, dict):
                continue

            for model_id, model in models.items():
                cost = model.get("cost") if isinstance(model, dict) else None
                if not isinstance(cost, dict):
                    continue
                rates[(provider_id, model_id)] = ModelRates(
                    input=_rate(cost.get("input")) or 0.0,
                    output=_rate(cost.get("output")) or 0.0,
                    cache_read=_rate(cost.get("cache_read")),
                    cache_write=_rate(cost.get("cache_write")),
                    reasoning=_rate(cost.get("reasoning")),
                )

        return cls(rates)


async def load_catalog(path: "Path") -> "StaticPricingCatalog":
    """
    loads a models.dev snapshot from disk. A missing or
    unreadable snapshot yields an empty catalog, so every
    record ends up in the unpriced section instead of failing
    the report.
    """
    try:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            raw = await f.read()
        data = json.loads(raw)
    except FileNotFoundError:
        logger.warning("pricing_catalog_missing", path=str(path))
        return StaticPricingCatalog()
    except (OSError, ValueError) as e:
        logger.warning("pricing_catalog_unreadable", path=str(path), error=str(e))
        return StaticPricingCatalog()

    catalog = StaticPricingCatalog.from_models_dev(data)
    logger.debug("pricing_catalog_loaded", path=str(path), models=len(catalog))
    return catalog
