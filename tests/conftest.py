import asyncio
from typing import Any, Callable, Dict, List, Optional, Set

import pytest

from agent_hub.domain.models.agent_state import AgentDescriptor, TokenUsage
from agent_hub.domain.orchestration.agent import ChatAgent
from agent_hub.domain.orchestration.agent_manager import AgentManager
from agent_hub.errors import HttpError
from agent_hub.infrastructure.config.settings import ContextSettings
from agent_hub.infrastructure.http.schema import (
    AgentCatalog, CatalogAgent, ChatSuccess, HealthStatus, LoginResult
)
from agent_hub.infrastructure.persistence.conversation_store import ConversationStore


class FakeChatClient:
    """Scripted stand-in for APIClient"""

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self.failing_agents: Set[str] = set()
        self.handler: Optional[Callable[[Dict[str, Any]], Any]] = None
        self.catalog: List[CatalogAgent] = []
        self.catalog_error: Optional[Exception] = None
        self.token: Optional[str] = None
        self.closed = False

    async def send_chat(self, messages, *, agent_id=None, model=None, temperature=None, max_tokens=None):
        call = {
            "messages": messages,
            "agent_id": agent_id,
            "model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        self.calls.append(call)
        await asyncio.sleep(0)

        if agent_id in self.failing_agents:
            raise HttpError(500, f"upstream failure for {agent_id}")

        if self.handler is not None:
            result = self.handler(call)
            if asyncio.iscoroutine(result):
                result = await result
            return result

        return ChatSuccess(
            success=True,
            response=f"{agent_id} reply {len(self.calls)}",
            usage=TokenUsage(prompt_tokens=5, completion_tokens=7, total_tokens=12),
            finish_reason="stop",
            model=model
        )

    async def list_agents(self) -> AgentCatalog:
        if self.catalog_error is not None:
            raise self.catalog_error
        return AgentCatalog(agents=self.catalog, count=len(self.catalog))

    async def health_check(self) -> HealthStatus:
        return HealthStatus(status="ok", provider="fake", model="gpt-4")

    async def login(self, username: str, password: str) -> LoginResult:
        if password != "secret":
            return LoginResult(success=False, error="Invalid credentials")
        self.set_auth_token("token-123")
        return LoginResult(success=True, token="token-123", expires_in=3600)

    def set_auth_token(self, token):
        self.token = token

    async def aclose(self):
        self.closed = True


def make_descriptor(agent_id: str, **kwargs) -> AgentDescriptor:
    return AgentDescriptor(
        id=agent_id,
        name=kwargs.pop("name", agent_id.title()),
        capabilities=kwargs.pop("capabilities", ["general"]),
        **kwargs
    )


@pytest.fixture
def fake_client():
    return FakeChatClient()


@pytest.fixture
def context_settings():
    return ContextSettings()


@pytest.fixture
def agent(fake_client, context_settings):
    return ChatAgent(make_descriptor("alpha"), fake_client, context_settings=context_settings)


@pytest.fixture
def conversation_store():
    return ConversationStore()


@pytest.fixture
def manager(fake_client, conversation_store):
    manager = AgentManager(fake_client, store=conversation_store)
    for agent_id in ("a", "b", "c"):
        manager.add_agent(make_descriptor(agent_id))
    return manager
