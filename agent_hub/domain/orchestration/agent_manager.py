from typing import Any, Dict, List, Optional, Protocol, Union
import asyncio
import structlog

from agent_hub.domain.catalog import build_descriptors, default_descriptors
from agent_hub.domain.events.dispatcher import EventDispatcher, Unsubscribe
from agent_hub.domain.events.schema import AgentEvent
from agent_hub.domain.models.agent_state import (
    AgentDescriptor, BroadcastOutcome, ChatMessage, ConversationEntry,
    ConversationSnapshot, GenerationConfig, UsageRecord
)
from agent_hub.domain.orchestration.agent import ChatAgent, ChatClient
from agent_hub.errors import RequestError, SerializationError
from agent_hub.infrastructure.config.settings import ContextSettings
from agent_hub.infrastructure.http.schema import AgentCatalog
from agent_hub.infrastructure.persistence.conversation_store import ConversationStore

logger = structlog.get_logger(__name__)


class CatalogClient(Protocol):
    async def list_agents(self) -> AgentCatalog: ...


class AgentManager:
    """Registry of agents, the active subset, and the broadcast fan-out.

    The registry, active set and transcript are only mutated here, and only
    between suspension points, so they stay consistent without locking:
    ``active_agent_ids`` always equals the ids of registered agents whose
    own state is active.
    """

    def __init__(
        self,
        client: ChatClient,
        *,
        store: Optional[ConversationStore] = None,
        events: Optional[EventDispatcher] = None,
        context_settings: Optional[ContextSettings] = None,
        generation_defaults: Optional[GenerationConfig] = None,
    ):
        self.client = client
        self.store = store or ConversationStore()
        self.events = events or EventDispatcher()
        self.context_settings = context_settings or ContextSettings()
        self.generation_defaults = generation_defaults or GenerationConfig()

        self.agents: Dict[str, ChatAgent] = {}
        # Insertion-ordered set of active ids
        self._active: Dict[str, None] = {}
        self.current_conversation: List[ConversationEntry] = []
        self._subscriptions: Dict[str, Unsubscribe] = {}

    # Registry

    def add_agent(self, descriptor: Union[AgentDescriptor, Dict[str, Any]]) -> ChatAgent:
        """Create and register an agent; an existing id is replaced"""

        if not isinstance(descriptor, AgentDescriptor):
            descriptor = AgentDescriptor.from_payload(descriptor, self.generation_defaults)

        if descriptor.id in self.agents:
            logger.info("Replacing registered agent", agent_id=descriptor.id)
            self._detach(descriptor.id)

        agent = ChatAgent(
            descriptor,
            self.client,
            context_settings=self.context_settings,
            events=EventDispatcher()
        )
        self.agents[agent.id] = agent
        self._subscriptions[agent.id] = agent.events.subscribe(self._forward_event)

        logger.info("Agent registered", agent_id=agent.id, capabilities=[c.value for c in agent.capabilities])
        return agent

    def remove_agent(self, agent_id: str) -> bool:
        """Deregister an agent and drop it from the active set"""

        if agent_id not in self.agents:
            return False
        self._detach(agent_id)
        logger.info("Agent removed", agent_id=agent_id)
        return True

    def _detach(self, agent_id: str):
        unsubscribe = self._subscriptions.pop(agent_id, None)
        if unsubscribe:
            unsubscribe()
        self.agents.pop(agent_id, None)
        self._active.pop(agent_id, None)

    def _forward_event(self, event: AgentEvent):
        self.events.emit(event)

    def get_agent(self, agent_id: str) -> Optional[ChatAgent]:
        return self.agents.get(agent_id)

    def all_agents(self) -> List[ChatAgent]:
        return list(self.agents.values())

    @property
    def active_agent_ids(self) -> List[str]:
        return list(self._active)

    def active_agents(self) -> List[ChatAgent]:
        return [self.agents[agent_id] for agent_id in self._active]

    def get_all_states(self) -> List[Dict[str, Any]]:
        return [agent.get_state() for agent in self.agents.values()]

    async def load_agents(self, catalog_client: Optional[CatalogClient] = None) -> List[ChatAgent]:
        """Register agents from the remote catalog, or the built-in set if it is unavailable"""

        source = catalog_client or self.client
        descriptors: List[AgentDescriptor] = []
        try:
            catalog = await source.list_agents()
            descriptors = build_descriptors(
                (entry.model_dump() for entry in catalog.agents),
                self.generation_defaults
            )
        except RequestError as e:
            logger.warning("Failed to load agent catalog, using built-in agents", error=str(e))

        if not descriptors:
            descriptors = default_descriptors(self.generation_defaults)

        return [self.add_agent(descriptor) for descriptor in descriptors]

    # Activation

    def activate_agent(self, agent_id: str):
        agent = self.agents.get(agent_id)
        if agent is None:
            return
        agent.activate()
        self._active[agent_id] = None

    def deactivate_agent(self, agent_id: str):
        agent = self.agents.get(agent_id)
        if agent is None:
            return
        agent.deactivate()
        self._active.pop(agent_id, None)

    # Broadcast

    async def broadcast_message(
        self,
        content: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> List[BroadcastOutcome]:
        """Send one user message to every active agent at once.

        All requests are in flight before any is awaited, and the call only
        returns once each has settled. One outcome per agent, in active-set
        order; agent failures are reported in the outcome, never raised.
        """

        agents = self.active_agents()
        if not agents:
            logger.info("Broadcast skipped, no active agents")
            return []

        options = {
            "temperature": temperature,
            "max_tokens": max_tokens,
            "model": model,
            "metadata": metadata,
        }

        logger.info("Broadcasting message", agents=[a.id for a in agents], length=len(content))

        results = await asyncio.gather(
            *(self._dispatch(agent, content, options) for agent in agents),
            return_exceptions=True
        )

        outcomes: List[BroadcastOutcome] = []
        usage_records: List[UsageRecord] = []

        for agent, result in zip(agents, results):
            if isinstance(result, BaseException):
                outcomes.append(BroadcastOutcome(
                    agent_id=agent.id,
                    agent_name=agent.name,
                    success=False,
                    error=str(result) or type(result).__name__,
                    error_type=type(result).__name__
                ))
                continue

            self.current_conversation.append(ConversationEntry(agent_id=agent.id, message=result))
            outcomes.append(BroadcastOutcome(
                agent_id=agent.id,
                agent_name=agent.name,
                success=True,
                message=result
            ))
            if result.usage is not None:
                usage_records.append(UsageRecord(
                    agent_id=agent.id,
                    model=result.metadata.get("model", agent.config.model),
                    usage=result.usage
                ))

        failed = [o.agent_id for o in outcomes if not o.success]
        if failed:
            logger.warning("Broadcast finished with failures", failed=failed, total=len(outcomes))

        await self._record_usage(usage_records)
        return outcomes

    async def _dispatch(self, agent: ChatAgent, content: str, options: Dict[str, Any]) -> ChatMessage:
        with structlog.contextvars.bound_contextvars(agent_id=agent.id):
            return await agent.send_message(content, **options)

    async def _record_usage(self, records: List[UsageRecord]):
        if not records:
            return
        try:
            await self.store.append_usage(records)
        except Exception as e:
            logger.warning("Failed to append usage log", error=str(e))

    async def summarize_contexts(self) -> Dict[str, bool]:
        """Run context summarization on every agent concurrently"""

        agents = self.all_agents()
        results = await asyncio.gather(*(agent.summarize_context() for agent in agents))
        return {agent.id: compacted for agent, compacted in zip(agents, results)}

    def clear_conversation(self):
        """Clear every agent's history and the transcript"""

        for agent in self.agents.values():
            agent.clear_history()
        self.current_conversation = []

    # Persistence

    def snapshot(self) -> ConversationSnapshot:
        return ConversationSnapshot(
            active_agent_ids=self.active_agent_ids,
            conversation=[entry.model_copy(deep=True) for entry in self.current_conversation],
            agents={agent_id: agent.save_context() for agent_id, agent in self.agents.items()}
        )

    async def save_conversation(self) -> ConversationSnapshot:
        snapshot = self.snapshot()
        await self.store.save_snapshot(snapshot)
        logger.info("Conversation saved", agents=len(snapshot.agents), entries=len(snapshot.conversation))
        return snapshot

    async def load_conversation(self) -> Optional[ConversationSnapshot]:
        """Restore the saved snapshot; a missing or corrupt one yields None"""

        try:
            snapshot = await self.store.load_snapshot()
        except SerializationError as e:
            logger.error("Failed to load conversation", error=str(e))
            return None

        if snapshot is None:
            return None

        self.restore_snapshot(snapshot)
        logger.info("Conversation restored", active=self.active_agent_ids, entries=len(self.current_conversation))
        return snapshot

    def restore_snapshot(self, snapshot: ConversationSnapshot):
        """Apply a snapshot to the registry.

        Live agents are overwritten. Agents are synthesized from saved config
        only when the registry is empty; otherwise unknown ids are ignored.
        Activation is reapplied directly, without activation events.
        """

        cold_start = not self.agents

        for agent_id, saved in snapshot.agents.items():
            agent = self.agents.get(agent_id)
            if agent is None:
                if not cold_start:
                    logger.info("Ignoring saved agent absent from registry", agent_id=agent_id)
                    continue
                agent = self.add_agent(saved.config.model_copy(update={"id": agent_id}))
            agent.load_context(saved)

        active_ids = [agent_id for agent_id in snapshot.active_agent_ids if agent_id in self.agents]
        self._active = dict.fromkeys(active_ids)
        for agent_id, agent in self.agents.items():
            agent.restore_activation(agent_id in self._active)

        self.current_conversation = [entry.model_copy(deep=True) for entry in snapshot.conversation]
