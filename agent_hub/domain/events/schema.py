from typing import Dict, Any
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from enum import Enum

from agent_hub.domain.models.agent_state import AgentIdentity, utcnow


class AgentEventType(str, Enum):
    """Topics published by agents and the agent manager"""
    ACTIVATED = "activated"
    DEACTIVATED = "deactivated"
    THINKING = "thinking"
    RESPONSE = "response"
    ERROR = "error"
    METADATA_UPDATED = "metadata-updated"
    HISTORY_CLEARED = "history-cleared"
    CONFIG_UPDATED = "config-updated"


class AgentEvent(BaseModel):
    """Immutable event carrying the emitting agent's identity"""
    model_config = ConfigDict(frozen=True)

    type: AgentEventType
    agent: AgentIdentity
    timestamp: datetime = Field(default_factory=utcnow)
    payload: Dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> Dict[str, Any]:
        """JSON-safe form for observers outside the process"""
        return self.model_dump(mode="json", by_alias=True)
