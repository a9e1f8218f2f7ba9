"""
ATC module for skycommand.

Dialogue state machine, model gateway, frame sources and speech channels
for a tower controller that watches the pilot's screen.
"""

from skycommand.atc.dialogue import ConversationStage, DialogueOrchestrator, LogEntry, Sender
from skycommand.atc.gateway import ModelGateway
from skycommand.atc.routing import ProviderRoute, resolve_route

__all__ = [
    "ConversationStage",
    "DialogueOrchestrator",
    "LogEntry",
    "ModelGateway",
    "ProviderRoute",
    "Sender",
    "resolve_route",
]
