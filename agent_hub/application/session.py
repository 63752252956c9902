from typing import Any, Dict, List, Optional
import structlog

from agent_hub.domain.events.dispatcher import EventDispatcher
from agent_hub.domain.models.agent_state import BroadcastOutcome, utcnow
from agent_hub.domain.orchestration.agent_manager import AgentManager
from agent_hub.errors import RequestError
from agent_hub.infrastructure.config.settings import Settings
from agent_hub.infrastructure.http.api_client import APIClient
from agent_hub.infrastructure.http.schema import HealthStatus, LoginResult
from agent_hub.infrastructure.persistence.conversation_store import ConversationStore
from agent_hub.infrastructure.persistence.key_value_store import create_store

logger = structlog.get_logger(__name__)


class ChatSession:
    """Wires the request layer, persistence and agent manager for one user session"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        client: Optional[APIClient] = None,
        store: Optional[ConversationStore] = None,
        events: Optional[EventDispatcher] = None,
    ):
        self.settings = settings or Settings.from_env()
        self.client = client or APIClient.from_settings(self.settings)
        self.store = store or ConversationStore(create_store(self.settings.storage_dir))
        self.manager = AgentManager(
            self.client,
            store=self.store,
            events=events,
            context_settings=self.settings.context,
            generation_defaults=self.settings.generation_defaults()
        )
        self.health: Optional[HealthStatus] = None
        self.initialized = False

    @property
    def events(self) -> EventDispatcher:
        return self.manager.events

    async def initialize(self):
        """Restore auth, probe the service, load agents, then restore the last conversation"""

        token = await self.store.load_auth_token()
        if token and not self.client.token:
            self.client.set_auth_token(token)

        await self.check_health()
        await self.manager.load_agents()
        await self.manager.load_conversation()

        self.initialized = True
        logger.info("Session initialized", agents=len(self.manager.agents), healthy=self.health is not None)

    async def check_health(self) -> Optional[HealthStatus]:
        try:
            self.health = await self.client.health_check()
        except RequestError as e:
            logger.warning("Chat service unreachable", error=str(e))
            self.health = None
        return self.health

    async def login(self, username: str, password: str) -> LoginResult:
        result = await self.client.login(username, password)
        if result.success and result.token:
            await self.store.save_auth_token(result.token)
        return result

    async def logout(self):
        self.client.set_auth_token(None)
        await self.store.clear_auth_token()

    def toggle_agent(self, agent_id: str) -> bool:
        """Flip an agent's activation and return the new state"""

        agent = self.manager.get_agent(agent_id)
        if agent is None:
            raise KeyError(agent_id)
        if agent.is_active:
            self.manager.deactivate_agent(agent_id)
        else:
            self.manager.activate_agent(agent_id)
        return agent.is_active

    async def send(
        self,
        content: str,
        *,
        temperature: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> List[BroadcastOutcome]:
        """Broadcast a user message to the active agents and save the result"""

        text = content.strip()
        if not text:
            raise ValueError("Message is empty")
        if not self.manager.active_agent_ids:
            raise ValueError("Select at least one agent")

        outcomes = await self.manager.broadcast_message(
            text,
            temperature=temperature,
            metadata={"userInput": True, "timestamp": utcnow().isoformat(), **(metadata or {})}
        )

        try:
            await self.manager.save_conversation()
        except OSError as e:
            logger.warning("Failed to save conversation", error=str(e))

        return outcomes

    async def clear(self):
        self.manager.clear_conversation()
        await self.manager.save_conversation()

    async def export(self) -> Dict[str, Any]:
        snapshot = await self.manager.save_conversation()
        return snapshot.model_dump(mode="json", by_alias=True)

    async def close(self):
        await self.client.aclose()
