"""
Model gateway - one vision chat-completion call per transmission.

Routes the request by API key prefix (see routing.py), attaches the
captured frame when the model can see, and turns provider failures into
controller phrases the session can speak and log.
"""

import logging
import time
from collections import OrderedDict
from typing import Callable, Optional

from openai import APIStatusError, AsyncOpenAI

from skycommand.atc.errors import MissingCredentialError
from skycommand.atc.prompts import (
    SYSTEM_INSTRUCTION,
    VISION_OFFLINE_NOTICE,
    VISUAL_SIGNAL_WEAK,
    build_user_prompt,
)
from skycommand.atc.routing import ProviderRoute, RouteOverrides, resolve_route, supports_vision
from skycommand.config import ModelConfig

logger = logging.getLogger(__name__)

QUOTA_EXCEEDED = (
    "RADAR OFFLINE: Daily Quota Exceeded for this API Key. Please switch to a GitHub "
    "Personal Access Token (Free GPT-4o) or a Paid Google Key in Settings."
)

PAYMENT_REQUIRED = (
    "RADAR OFFLINE: Payment Required. Your Chutes AI balance may be zero or the model "
    "requires a subscription. Please check your account at chutes.ai."
)


def classify_failure(status: Optional[int], message: str) -> str:
    """
    Map a provider failure to a controller message.

    Checked in order: quota exhaustion, payment required, anything else.

    Args:
        status: HTTP status code, if the provider returned one
        message: Error text

    Returns:
        Message to speak and log
    """
    if status == 429 or "429" in message or "Resource has been exhausted" in message:
        return QUOTA_EXCEEDED
    if status == 402 or "402" in message:
        return PAYMENT_REQUIRED
    return f"Radar contact lost. [Error {status or 'Unknown'}]: {message}"


def build_messages(image_b64: str, pilot_context: str, vision: bool) -> list[dict]:
    """Build the system + user messages for one call."""
    prompt = build_user_prompt(pilot_context)
    messages: list[dict] = [{"role": "system", "content": SYSTEM_INSTRUCTION}]

    if vision:
        messages.append({
            "role": "user",
            "content": [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{image_b64}"}},
            ],
        })
    else:
        messages.append({"role": "user", "content": prompt + VISION_OFFLINE_NOTICE})

    return messages


ClientFactory = Callable[[ProviderRoute, str], AsyncOpenAI]


class ModelGateway:
    """
    Vision chat-completion gateway.

    Usage:
        gateway = ModelGateway(get_config().model)
        reply = await gateway.analyze(frame_b64, "this is Speedbird 123", api_key)
    """

    def __init__(
        self,
        config: Optional[ModelConfig] = None,
        client_factory: Optional[ClientFactory] = None,
        max_clients: int = 4,
    ):
        """
        Args:
            config: Model settings (token budget, temperature, overrides)
            client_factory: Builds the OpenAI client for a route (tests inject fakes)
            max_clients: Number of provider clients kept alive
        """
        self.config = config or ModelConfig()
        self._client_factory = client_factory or self._default_client
        self._max_clients = max_clients
        self._clients: OrderedDict[tuple[str, str], AsyncOpenAI] = OrderedDict()

    @property
    def overrides(self) -> RouteOverrides:
        return RouteOverrides(
            base_url=self.config.base_url,
            model=self.config.model,
            chutes_model=self.config.chutes_model,
        )

    def route_for(self, api_key: str) -> ProviderRoute:
        """Resolve the provider route for a key."""
        return resolve_route(api_key, self.overrides)

    def _default_client(self, route: ProviderRoute, api_key: str) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=api_key,
            base_url=route.base_url,
            timeout=self.config.timeout,
            default_headers={"X-Title": self.config.app_title},
        )

    def _client(self, route: ProviderRoute, api_key: str) -> AsyncOpenAI:
        key = (route.base_url, api_key)
        if key in self._clients:
            self._clients.move_to_end(key)
            return self._clients[key]

        client = self._client_factory(route, api_key)
        self._clients[key] = client
        while len(self._clients) > self._max_clients:
            self._clients.popitem(last=False)
        return client

    async def analyze(self, image_b64: str, pilot_context: str, api_key: str) -> str:
        """
        Run one transmission through the routed model.

        Args:
            image_b64: Base64 JPEG of the current frame
            pilot_context: What the pilot just said ("" for routine checks)
            api_key: Credential, also used for routing

        Returns:
            The model reply, or a classified failure message

        Raises:
            MissingCredentialError: If no API key is configured
        """
        if not api_key:
            raise MissingCredentialError("No API key configured")

        route = self.route_for(api_key)
        vision = supports_vision(route)
        if not vision:
            logger.info("Vision not supported by %s, sending text only", route.model)

        messages = build_messages(image_b64, pilot_context, vision)
        logger.info("Transmitting to %s (%s)", route.label, route.model)

        start = time.perf_counter()
        try:
            response = await self._client(route, api_key).chat.completions.create(
                model=route.model,
                messages=messages,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
            )
        except APIStatusError as e:
            logger.error("Model call failed (%s): %s", e.status_code, e.message)
            return classify_failure(e.status_code, e.message)
        except Exception as e:
            logger.error("Model call failed: %s", e)
            return classify_failure(getattr(e, "status_code", None), str(e))

        latency = (time.perf_counter() - start) * 1000
        logger.debug("Reply from %s in %.0fms", route.label, latency)

        content = response.choices[0].message.content if response.choices else None
        return content or VISUAL_SIGNAL_WEAK

    async def check(self, api_key: str) -> str:
        """Text-only connectivity check against the routed provider."""
        if not api_key:
            raise MissingCredentialError("No API key configured")

        route = self.route_for(api_key)
        try:
            response = await self._client(route, api_key).chat.completions.create(
                model=route.model,
                messages=[{"role": "user", "content": "Say 'Radar contact' if you can hear me."}],
                max_tokens=50,
            )
        except APIStatusError as e:
            return classify_failure(e.status_code, e.message)
        except Exception as e:
            return classify_failure(None, str(e))

        content = response.choices[0].message.content if response.choices else None
        return content or VISUAL_SIGNAL_WEAK

    async def close(self) -> None:
        """Close all provider clients."""
        for client in self._clients.values():
            await client.close()
        self._clients.clear()
