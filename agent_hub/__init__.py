"""Client-side orchestration of multiple chat agents against a remote completion service."""

from agent_hub.domain.models.agent_state import AgentDescriptor, BroadcastOutcome, ChatMessage
from agent_hub.domain.orchestration.agent import ChatAgent
from agent_hub.domain.orchestration.agent_manager import AgentManager
from agent_hub.infrastructure.http.api_client import APIClient

__version__ = "0.1.0"

__all__ = [
    "AgentDescriptor",
    "AgentManager",
    "APIClient",
    "BroadcastOutcome",
    "ChatAgent",
    "ChatMessage",
]
