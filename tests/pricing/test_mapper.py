import json
from pathlib import Path

import pytest

from quotameter.models import PricingKey, UnknownKey
from quotameter.pricing.catalog import ModelRates, StaticPricingCatalog
from quotameter.pricing.mapper import (
    Mapped,
    MappedUnpriced,
    ModelMapper,
    Unmapped,
    infer_provider,
    load_fallbacks,
    normalize_model_id,
    parse_fallbacks,
)


class TestNormalizeModelId:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("antigravity-claude-opus-4-5-thinking", "claude-opus-4-5"),
            ("claude-opus-4.5", "claude-opus-4-5"),
            ("claude-sonnet-4.5-thinking", "claude-sonnet-4-5"),
            ("glm-4.6-free", "glm-4.6"),
            ("big-pickle", "glm-4.7"),
            ("  GPT-5  ", "gpt-5"),
        ],
    )
    def test_rewrites(self, raw: "str", expected: "str") -> "None":
        assert normalize_model_id(raw) == expected

    def test_leaves_plain_ids_alone(self) -> "None":
        assert normalize_model_id("gemini-3-pro-preview") == "gemini-3-pro-preview"


class TestInferProvider:
    @pytest.mark.parametrize(
        "model, provider",
        [
            ("claude-opus-4-5", "anthropic"),
            ("gpt-5", "openai"),
            ("o3-mini", "openai"),
            ("gemini-3-pro", "google"),
            ("kimi-k2", "moonshotai"),
            ("glm-4.7", "zai"),
            ("us.anthropic.claude-sonnet", "anthropic"),
            ("azure-gpt-4o", "openai"),
        ],
    )
    def test_known_families(self, model: "str", provider: "str") -> "None":
        assert infer_provider(model) == provider

    def test_unknown_family(self) -> "None":
        assert infer_provider("unknown-custom-model-v2") is None

    def test_o_prefix_needs_a_digit(self) -> "None":
        assert infer_provider("orca-mini") is None


class TestModelMapper:
    def test_thinking_variant_maps_to_base_model(
        self, catalog: "StaticPricingCatalog"
    ) -> "None":
        mapper = ModelMapper(catalog)
        result = mapper.map("anthropic", "claude-opus-4-5-thinking")
        assert result == Mapped(PricingKey("anthropic", "claude-opus-4-5"))

    def test_provider_is_inferred_from_model_not_source(
        self, catalog: "StaticPricingCatalog"
    ) -> "None":
        mapper = ModelMapper(catalog)
        result = mapper.map("google", "antigravity-claude-opus-4-5-thinking")
        assert result == Mapped(PricingKey("anthropic", "claude-opus-4-5"))

    def test_unrecognized_model_is_unmapped(
        self, catalog: "StaticPricingCatalog"
    ) -> "None":
        mapper = ModelMapper(catalog)
        result = mapper.map("acme", "unknown-custom-model-v2")
        assert isinstance(result, Unmapped)
        assert result.unknown.source_provider == "acme"
        assert result.unknown.source_model == "unknown-custom-model-v2"
        assert result.unknown.mapped_provider is None
        assert not result.unknown.is_unpriced

    def test_missing_model_is_unmapped(self, catalog: "StaticPricingCatalog") -> "None":
        mapper = ModelMapper(catalog)
        assert mapper.map(None, None) == Unmapped(UnknownKey("unknown", "unknown"))
        assert mapper.map("openai", "") == Unmapped(UnknownKey("openai", "unknown"))

    def test_known_provider_without_rates_is_unpriced(
        self, catalog: "StaticPricingCatalog"
    ) -> "None":
        mapper = ModelMapper(catalog)
        result = mapper.map("openai", "gpt-9-ultra")
        assert result == MappedUnpriced(
            UnknownKey("openai", "gpt-9-ultra", "openai", "gpt-9-ultra")
        )
        assert result.unknown.is_unpriced

    def test_fallback_used_when_primary_missing(
        self, catalog: "StaticPricingCatalog"
    ) -> "None":
        mapper = ModelMapper(catalog)
        assert mapper.map("opencode", "kimi-k2") == Mapped(
            PricingKey("moonshotai", "kimi-k2-thinking")
        )
        assert mapper.map("google", "gemini-3-pro") == Mapped(
            PricingKey("google", "gemini-3-pro-preview")
        )

    def test_primary_preferred_over_fallback(self) -> "None":
        catalog = StaticPricingCatalog(
            {
                ("moonshotai", "kimi-k2"): ModelRates(input=1.0, output=1.0),
                ("moonshotai", "kimi-k2-thinking"): ModelRates(input=2.0, output=2.0),
            }
        )
        mapper = ModelMapper(catalog)
        assert mapper.map("x", "kimi-k2") == Mapped(PricingKey("moonshotai", "kimi-k2"))

    def test_fallbacks_can_be_disabled(self, catalog: "StaticPricingCatalog") -> "None":
        mapper = ModelMapper(catalog, fallbacks={})
        assert isinstance(mapper.map("x", "kimi-k2"), MappedUnpriced)

    def test_casing_and_routing_prefix_do_not_matter(
        self, catalog: "StaticPricingCatalog"
    ) -> "None":
        mapper = ModelMapper(catalog)
        expected = Mapped(PricingKey("anthropic", "claude-opus-4-5"))
        assert mapper.map("opencode", "Claude-Opus-4-5") == expected
        assert mapper.map("google", "Antigravity-Claude-Opus-4.5-Thinking") == expected

    def test_same_input_same_result(self, catalog: "StaticPricingCatalog") -> "None":
        mapper = ModelMapper(catalog)
        first = mapper.map("opencode", "big-pickle")
        assert first == mapper.map("opencode", "big-pickle")
        assert first == Mapped(PricingKey("zai", "glm-4.7"))


class TestParseFallbacks:
    def test_merges_over_defaults(self) -> "None":
        fallbacks = parse_fallbacks({"openai/GPT-9": ["gpt-5"]})
        assert fallbacks[("openai", "gpt-9")] == ("gpt-5",)
        assert fallbacks[("moonshotai", "kimi-k2")] == ("kimi-k2-thinking",)

    def test_rejects_bad_keys(self) -> "None":
        with pytest.raises(ValueError):
            parse_fallbacks({"gpt-9": ["gpt-5"]})

    def test_rejects_non_string_alternates(self) -> "None":
        with pytest.raises(ValueError):
            parse_fallbacks({"openai/gpt-9": [5]})

    def test_rejects_non_object(self) -> "None":
        with pytest.raises(ValueError):
            parse_fallbacks([])


class TestLoadFallbacks:
    @pytest.mark.asyncio
    async def test_loaded_fallbacks_drive_mapping(
        self, tmp_path: "Path", catalog: "StaticPricingCatalog"
    ) -> "None":
        path = tmp_path / "fallbacks.json"
        path.write_text(json.dumps({"openai/gpt-9": "gpt-5"}))

        mapper = ModelMapper(catalog, fallbacks=await load_fallbacks(path))
        assert mapper.map("openai", "gpt-9") == Mapped(PricingKey("openai", "gpt-5"))

    @pytest.mark.asyncio
    async def test_malformed_json_raises_value_error(self, tmp_path: "Path") -> "None":
        path = tmp_path / "fallbacks.json"
        path.write_text("{not json")
        with pytest.raises(ValueError):
            await load_fallbacks(path)
