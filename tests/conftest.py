"""Shared fakes for the ATC tests."""

import pytest

from skycommand.atc.errors import MissingCredentialError
from skycommand.atc.routing import resolve_route


class ScriptedGateway:
    """Stands in for ModelGateway: returns queued replies and records calls."""

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.calls = []
        self.release = None  # asyncio.Event to hold a call in flight

    async def analyze(self, image_b64, pilot_context, api_key):
        self.calls.append((image_b64, pilot_context, api_key))
        if not api_key:
            raise MissingCredentialError("No API key configured")
        if self.release is not None:
            await self.release.wait()
        reply = self.replies.pop(0) if self.replies else "Roger."
        if isinstance(reply, Exception):
            raise reply
        return reply

    def route_for(self, api_key):
        return resolve_route(api_key)

    async def close(self):
        pass


@pytest.fixture
def gateway():
    return ScriptedGateway()


