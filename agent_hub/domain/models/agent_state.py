from typing import Dict, Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel
from datetime import datetime, timezone
from enum import Enum

from agent_hub.domain.models.capabilities import (
    Capability, parse_capabilities, prompt_for_capabilities
)


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model that serializes with camelCase keys"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MessageRole(str, Enum):
    """Role tag of a conversation message"""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    ERROR = "error"


class ActivationState(str, Enum):
    """Agent activation status"""
    INACTIVE = "inactive"
    ACTIVE = "active"


class TokenUsage(CamelModel):
    """Token accounting reported by the chat service"""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatMessage(CamelModel):
    """A single role-tagged message in an agent's context or history"""
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    usage: Optional[TokenUsage] = None
    finish_reason: Optional[str] = None

    def to_wire(self) -> Dict[str, str]:
        """Reduce to the {role, content} pair sent to the chat service"""
        return {"role": self.role.value, "content": self.content}


class GenerationConfig(CamelModel):
    """Tunable generation parameters"""
    temperature: float = Field(default=0.7, ge=0.0, le=1.0)
    max_tokens: int = Field(default=2000, gt=0)
    model: str = Field(default="gpt-4", min_length=1)


class AgentIdentity(CamelModel):
    """Identity attached to every agent event"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str


class AgentDescriptor(CamelModel):
    """Everything needed to construct an agent"""
    id: str = Field(min_length=1, description="Unique agent identifier")
    name: str = Field(description="Display name")
    description: str = Field(default="", description="What the agent is good at")
    capabilities: List[Capability] = Field(default_factory=list)
    system_prompt: Optional[str] = Field(None, description="Explicit prompt; derived from capabilities when absent")
    config: GenerationConfig = Field(default_factory=GenerationConfig)

    @field_validator("capabilities", mode="before")
    @classmethod
    def _unique_capabilities(cls, value: Any) -> List[Capability]:
        return parse_capabilities(value or [])

    @property
    def resolved_system_prompt(self) -> str:
        """System prompt actually sent to the service"""
        return self.system_prompt or prompt_for_capabilities(self.capabilities)

    @classmethod
    def from_payload(
        cls,
        data: Dict[str, Any],
        defaults: Optional[GenerationConfig] = None
    ) -> "AgentDescriptor":
        """Build a descriptor from a catalog entry or a flat config dict.

        Unknown capability tags raise UnknownCapabilityError before any
        pydantic validation runs, so callers see the offending tag.
        """
        agent_id = data.get("id")
        capabilities = parse_capabilities(data.get("capabilities") or [], agent_id)

        base = (defaults or GenerationConfig()).model_dump()
        nested = data.get("config") or {}
        overrides = {
            "temperature": nested.get("temperature", data.get("temperature")),
            "max_tokens": nested.get("maxTokens", nested.get("max_tokens", data.get("maxTokens", data.get("max_tokens")))),
            "model": nested.get("model", data.get("model")),
        }
        base.update({k: v for k, v in overrides.items() if v is not None})

        return cls(
            id=agent_id,
            name=data.get("name") or agent_id,
            description=data.get("description", ""),
            capabilities=capabilities,
            system_prompt=data.get("systemPrompt", data.get("system_prompt")),
            config=GenerationConfig(**base),
        )


class PerformanceStats(CamelModel):
    """Per-agent request counters"""
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_response_ms: float = 0.0
    total_tokens: int = 0

    @computed_field
    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests

    def record(self, duration_ms: float, success: bool, tokens: int = 0):
        """Fold one finished request into the counters"""
        self.total_requests += 1
        if success:
            self.successful_requests += 1
        else:
            self.failed_requests += 1
        # Running mean over all requests
        self.average_response_ms += (duration_ms - self.average_response_ms) / self.total_requests
        self.total_tokens += tokens


class AgentSnapshot(CamelModel):
    """Persisted form of one agent"""
    config: AgentDescriptor
    context: List[ChatMessage] = Field(default_factory=list)
    conversation_history: List[ChatMessage] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    stats: PerformanceStats = Field(default_factory=PerformanceStats)
    timestamp: datetime = Field(default_factory=utcnow)


class ConversationEntry(CamelModel):
    """One successful broadcast response in the manager transcript"""
    agent_id: str
    message: ChatMessage
    timestamp: datetime = Field(default_factory=utcnow)


class ConversationSnapshot(CamelModel):
    """Persisted form of the whole manager"""
    timestamp: datetime = Field(default_factory=utcnow)
    active_agent_ids: List[str] = Field(default_factory=list)
    conversation: List[ConversationEntry] = Field(default_factory=list)
    agents: Dict[str, AgentSnapshot] = Field(default_factory=dict)


class UsageRecord(CamelModel):
    """Entry in the persisted usage log"""
    agent_id: str
    model: str
    usage: TokenUsage
    timestamp: datetime = Field(default_factory=utcnow)


class BroadcastOutcome(CamelModel):
    """Settled result of one agent's part in a broadcast"""
    agent_id: str
    agent_name: str
    success: bool
    message: Optional[ChatMessage] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
