"""Tests for credential-prefix provider routing."""

import pytest

from skycommand.atc.routing import (
    DEFAULT_CHUTES_MODEL,
    DEFAULT_OPENROUTER_MODEL,
    ProviderRoute,
    RouteOverrides,
    resolve_route,
    supports_vision,
)


class TestResolveRoute:
    """First matching prefix wins."""

    @pytest.mark.parametrize(
        "key,provider,base_url,model",
        [
            ("sk-or-v1-abc", "openrouter", "https://openrouter.ai/api/v1", DEFAULT_OPENROUTER_MODEL),
            ("cpk_abc", "chutes", "https://llm.chutes.ai/v1", DEFAULT_CHUTES_MODEL),
            ("ghp_abc", "github", "https://models.inference.ai.azure.com", "gpt-4o"),
            ("github_pat_abc", "github", "https://models.inference.ai.azure.com", "gpt-4o"),
            (
                "AIzaXXXX",
                "google",
                "https://generativelanguage.googleapis.com/v1beta/openai/",
                "gemini-1.5-flash",
            ),
            ("sk-abc123", "deepseek", "https://api.deepseek.com", "deepseek-chat"),
            ("something-else", "openai", "https://api.openai.com/v1", "gpt-4o-mini"),
        ],
    )
    def test_prefixes(self, key, provider, base_url, model):
        route = resolve_route(key)
        assert route.provider == provider
        assert route.base_url == base_url
        assert route.model == model

    def test_sk_key_containing_or_is_not_deepseek(self):
        # "sk-" but with "or-" somewhere later: falls through to OpenAI
        assert resolve_route("sk-proj-or-123").provider == "openai"

    def test_openrouter_model_override(self):
        route = resolve_route("sk-or-v1-abc", RouteOverrides(model="anthropic/claude-3.5-sonnet"))
        assert route.model == "anthropic/claude-3.5-sonnet"

    def test_chutes_model_from_config(self):
        route = resolve_route("cpk_abc", RouteOverrides(chutes_model="unsloth/gemma-3-27b-it"))
        assert route.model == "unsloth/gemma-3-27b-it"

    def test_custom_provider_for_unmatched_key(self):
        overrides = RouteOverrides(base_url="http://localhost:11434/v1")
        route = resolve_route("local-key", overrides)
        assert route.provider == "custom"
        assert route.base_url == "http://localhost:11434/v1"
        assert route.model == "gemini-1.5-flash"

    def test_known_prefix_beats_custom_provider(self):
        overrides = RouteOverrides(base_url="http://localhost:11434/v1")
        assert resolve_route("AIzaXXXX", overrides).provider == "google"

    def test_github_model_not_overridable(self):
        assert resolve_route("ghp_abc", RouteOverrides(model="other")).model == "gpt-4o"


class TestSupportsVision:
    """Vision gating by model id."""

    def test_vision_models(self):
        assert supports_vision(resolve_route("AIzaXXXX"))
        assert supports_vision(resolve_route("ghp_abc"))
        assert supports_vision(resolve_route("cpk_abc"))

    def test_deepseek_is_text_only(self):
        assert not supports_vision(resolve_route("sk-abc123"))

    def test_o1_is_text_only(self):
        route = ProviderRoute("openai", "OpenAI", "https://api.openai.com/v1", "o1-mini")
        assert not supports_vision(route)

    def test_openrouter_flash_always_vision(self):
        route = resolve_route("sk-or-v1", RouteOverrides(model="deepseek/deepseek-vision-pro"))
        assert supports_vision(route)

    def test_openrouter_text_model(self):
        route = resolve_route("sk-or-v1", RouteOverrides(model="deepseek/deepseek-chat"))
        assert not supports_vision(route)
