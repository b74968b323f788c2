import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Sequence, Union

import aiofiles

from quotameter.models import PricingKey, UnknownKey
from quotameter.pricing.catalog import PricingCatalog

UNKNOWN_ID = "unknown"


@dataclass(frozen=True, slots=True)
class Rewrite:
    """
    Rewrite is one textual substitution applied to every model
    id. scope names the vendor quirk it exists for.
    """

    pattern: "re.Pattern[str]"
    replacement: "str"
    scope: "str"

    def apply(self, model: "str") -> "str":
        return self.pattern.sub(self.replacement, model, count=1)


# applied in order, regardless of vendor
DEFAULT_REWRITES: "tuple[Rewrite, ...]" = (
    Rewrite(re.compile(r"^antigravity-", re.IGNORECASE), "", "routing-prefix"),
    Rewrite(re.compile(r"-thinking$", re.IGNORECASE), "", "thinking-variant"),
    Rewrite(
        re.compile(r"claude-([a-z-]+)-4\.5\b", re.IGNORECASE),
        r"claude-\1-4-5",
        "anthropic",
    ),
    Rewrite(re.compile(r"\bglm-(\d+)\.(\d+)-free\b", re.IGNORECASE), r"glm-\1.\2", "zai"),
    Rewrite(re.compile(r"^big-pickle$", re.IGNORECASE), "glm-4.7", "opencode-alias"),
)

# prefix rules are checked before substring rules
PROVIDER_PREFIXES: "tuple[tuple[re.Pattern[str], str], ...]" = (
    (re.compile(r"^claude"), "anthropic"),
    (re.compile(r"^gpt"), "openai"),
    (re.compile(r"^o\d"), "openai"),
    (re.compile(r"^gemini"), "google"),
    (re.compile(r"^kimi"), "moonshotai"),
    (re.compile(r"^glm"), "zai"),
)

PROVIDER_SUBSTRINGS: "tuple[tuple[str, str], ...]" = (
    ("claude", "anthropic"),
    ("gemini", "google"),
    ("gpt", "openai"),
    ("kimi", "moonshotai"),
    ("glm", "zai"),
)

# alternates tried, in order, when the primary name has no catalog entry
DEFAULT_CATALOG_FALLBACKS: "dict[tuple[str, str], tuple[str, ...]]" = {
    ("moonshotai", "kimi-k2"): ("kimi-k2-thinking",),
    ("google", "gemini-3-pro"): ("gemini-3-pro-preview",),
    ("google", "gemini-3-flash"): ("gemini-3-flash-preview",),
}


@dataclass(frozen=True, slots=True)
class Mapped:
    key: "PricingKey"


@dataclass(frozen=True, slots=True)
class Unmapped:
    unknown: "UnknownKey"


@dataclass(frozen=True, slots=True)
class MappedUnpriced:
    unknown: "UnknownKey"


MappingResult = Union[Mapped, Unmapped, MappedUnpriced]


def normalize_model_id(
    raw: "str", rewrites: "Sequence[Rewrite]" = DEFAULT_REWRITES
) -> "str":
    model = raw.strip().lower()
    for rewrite in rewrites:
        model = rewrite.apply(model)
    return model


def infer_provider(model: "str") -> "str | None":
    lower = model.lower()
    for pattern, provider in PROVIDER_PREFIXES:
        if pattern.match(lower):
            return provider

    for needle, provider in PROVIDER_SUBSTRINGS:
        if needle in lower:
            return provider

    return None


class ModelMapper:
    """
    ModelMapper turns logged (provider, model) identifiers into
    the official pricing key used by the catalog.

    The result is a tagged value:
     - Mapped: a key with a catalog entry.
     - Unmapped: the model id is missing or no provider could
     be inferred from it.
     - MappedUnpriced: a provider was inferred but neither the
     normalized name nor any configured alternate is priced.

    Mapping only reads the in-memory catalog, so the same input
    always yields the same result.
    """

    def __init__(
        self,
        catalog: "PricingCatalog",
        rewrites: "Sequence[Rewrite]" = DEFAULT_REWRITES,
        fallbacks: "Mapping[tuple[str, str], Sequence[str]] | None" = None,
    ) -> "None":
        self._catalog = catalog
        self._rewrites = tuple(rewrites)
        self._fallbacks: "dict[tuple[str, str], tuple[str, ...]]" = {
            k: tuple(v)
            for k, v in (
                DEFAULT_CATALOG_FALLBACKS if fallbacks is None else fallbacks
            ).items()
        }

    def map(
        self, source_provider: "str | None", source_model: "str | None"
    ) -> "MappingResult":
        provider_id = source_provider or UNKNOWN_ID

        if not isinstance(source_model, str) or not source_model:
            return Unmapped(UnknownKey(provider_id, UNKNOWN_ID))

        model = normalize_model_id(source_model, self._rewrites)
        provider = infer_provider(model)
        if provider is None:
            return Unmapped(UnknownKey(provider_id, source_model, None, model))

        for candidate in (model, *self._fallbacks.get((provider, model), ())):
            if self._catalog.lookup(provider, candidate) is not None:
                return Mapped(PricingKey(provider, candidate))

        return MappedUnpriced(UnknownKey(provider_id, source_model, provider, model))


def parse_fallbacks(data: "Any") -> "dict[tuple[str, str], tuple[str, ...]]":
    """
    validates a JSON object of the form
    {"provider/model": ["alternate", ...]} and merges it over
    the defaults. Raises ValueError on any other shape.
    """
    merged = dict(DEFAULT_CATALOG_FALLBACKS)
    if not isinstance(data, dict):
        raise ValueError("fallbacks must be a JSON object")

    for name, alternates in data.items():
        provider, sep, model = str(name).partition("/")
        if not sep or not provider or not model:
            raise ValueError(f"fallback key must look like provider/model: {name}")
        if isinstance(alternates, str):
            alternates = [alternates]
        if not isinstance(alternates, list) or not all(
            isinstance(a, str) for a in alternates
        ):
            raise ValueError(f"fallback alternates must be strings: {name}")
        merged[(provider, model.lower())] = tuple(a.lower() for a in alternates)

    return merged


async def load_fallbacks(path: "Path") -> "dict[tuple[str, str], tuple[str, ...]]":
    async with aiofiles.open(path, "r", encoding="utf-8") as f:
        data = json.loads(await f.read())
    return parse_fallbacks(data)
