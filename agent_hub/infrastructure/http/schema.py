from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import Field, TypeAdapter

from agent_hub.domain.models.agent_state import CamelModel, TokenUsage


class HealthStatus(CamelModel):
    """GET /health"""
    status: str
    provider: Optional[str] = None
    model: Optional[str] = None
    version: Optional[str] = None
    uptime: Optional[float] = None
    timestamp: Optional[str] = None
    endpoints: List[str] = Field(default_factory=list)
    features: List[str] = Field(default_factory=list)


class CatalogAgent(CamelModel):
    """Agent entry from GET /agents; capabilities stay raw until validated by the domain"""
    id: str
    name: str
    description: str = ""
    capabilities: List[str] = Field(default_factory=list)
    model: Optional[str] = None


class AgentCatalog(CamelModel):
    """GET /agents"""
    agents: List[CatalogAgent] = Field(default_factory=list)
    count: int = 0


class ChatSuccess(CamelModel):
    """POST /chat with success=true"""
    success: Literal[True]
    response: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    finish_reason: Optional[str] = None
    model: Optional[str] = None
    timestamp: Optional[str] = None


class ChatFailure(CamelModel):
    """POST /chat with success=false"""
    success: Literal[False]
    error: str = "Failed to get response"


ChatResult = Union[ChatSuccess, ChatFailure]

chat_result_adapter: TypeAdapter[ChatResult] = TypeAdapter(ChatResult)


class LoginResult(CamelModel):
    """POST /auth/login"""
    success: bool
    token: Optional[str] = None
    expires_in: Optional[int] = None
    error: Optional[str] = None


class BatchRequest(CamelModel):
    """One entry for APIClient.batch_request"""
    endpoint: str
    method: str = "GET"
    json_body: Optional[Dict[str, Any]] = None


class BatchResult(CamelModel):
    """Per-request outcome of a batch"""
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
