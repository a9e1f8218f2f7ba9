"""
Credential-prefix routing for the model gateway.

The API key alone decides which OpenAI-compatible provider is called:
the table below is evaluated top to bottom and the first matching
predicate wins. Everything here is pure so it can be tested without
network access.
"""

from dataclasses import dataclass
from typing import Callable, Optional

DEFAULT_OPENROUTER_MODEL = "google/gemini-2.0-flash-001"
DEFAULT_CHUTES_MODEL = "Qwen/Qwen3-32B"
DEFAULT_CUSTOM_MODEL = "gemini-1.5-flash"


@dataclass(frozen=True)
class ProviderRoute:
    """Where and with which model a request is sent."""

    provider: str
    label: str  # Human-readable provider name
    base_url: str
    model: str


@dataclass(frozen=True)
class RouteOverrides:
    """Configurable parts of the routing table."""

    base_url: Optional[str] = None  # Custom provider for unmatched keys
    model: Optional[str] = None  # OpenRouter / custom provider model
    chutes_model: str = DEFAULT_CHUTES_MODEL


RoutePredicate = Callable[[str, RouteOverrides], bool]
RouteBuilder = Callable[[RouteOverrides], ProviderRoute]


ROUTING_TABLE: list[tuple[RoutePredicate, RouteBuilder]] = [
    (
        lambda key, o: key.startswith("sk-or-"),
        lambda o: ProviderRoute(
            "openrouter", "OpenRouter", "https://openrouter.ai/api/v1",
            o.model or DEFAULT_OPENROUTER_MODEL,
        ),
    ),
    (
        lambda key, o: key.startswith("cpk_"),
        lambda o: ProviderRoute(
            "chutes", "Chutes AI", "https://llm.chutes.ai/v1", o.chutes_model,
        ),
    ),
    (
        lambda key, o: key.startswith(("ghp_", "github_pat_")),
        lambda o: ProviderRoute(
            "github", "GitHub Models", "https://models.inference.ai.azure.com", "gpt-4o",
        ),
    ),
    (
        lambda key, o: key.startswith("AIza"),
        lambda o: ProviderRoute(
            "google", "Google Gemini",
            "https://generativelanguage.googleapis.com/v1beta/openai/", "gemini-1.5-flash",
        ),
    ),
    (
        lambda key, o: key.startswith("sk-") and "or-" not in key,
        lambda o: ProviderRoute(
            "deepseek", "DeepSeek", "https://api.deepseek.com", "deepseek-chat",
        ),
    ),
    # Unrecognized key: configured endpoint first, then plain OpenAI
    (
        lambda key, o: bool(o.base_url),
        lambda o: ProviderRoute(
            "custom", "Custom Provider", o.base_url, o.model or DEFAULT_CUSTOM_MODEL,
        ),
    ),
    (
        lambda key, o: True,
        lambda o: ProviderRoute(
            "openai", "OpenAI", "https://api.openai.com/v1", "gpt-4o-mini",
        ),
    ),
]


def resolve_route(api_key: str, overrides: Optional[RouteOverrides] = None) -> ProviderRoute:
    """
    Select provider, endpoint and model for an API key.

    Args:
        api_key: Credential string; only its prefix is inspected
        overrides: Configured models / custom endpoint

    Returns:
        ProviderRoute for the first matching rule
    """
    overrides = overrides or RouteOverrides()

    for predicate, build in ROUTING_TABLE:
        if predicate(api_key, overrides):
            return build(overrides)

    raise AssertionError("routing table has no catch-all rule")


_TEXT_ONLY_MARKERS = ("deepseek", "o1-")
_OPENROUTER_VISION_MARKERS = ("flash", "vision", "pro")


def supports_vision(route: ProviderRoute) -> bool:
    """
    Decide whether the image can be attached for this route.

    OpenRouter models named flash/vision/pro always take images; other
    models do unless they belong to a known text-only family.
    """
    model = route.model
    if route.provider == "openrouter" and any(m in model for m in _OPENROUTER_VISION_MARKERS):
        return True
    return not any(m in model for m in _TEXT_ONLY_MARKERS)
