from typing import Dict, Any, List, Optional, Protocol
import time
import structlog

from agent_hub.domain.context.context_window import ContextWindow
from agent_hub.domain.events.dispatcher import EventDispatcher
from agent_hub.domain.events.schema import AgentEvent, AgentEventType
from agent_hub.domain.models.agent_state import (
    ActivationState, AgentDescriptor, AgentIdentity, AgentSnapshot, ChatMessage,
    GenerationConfig, MessageRole, PerformanceStats, utcnow
)
from agent_hub.domain.models.capabilities import Capability
from agent_hub.errors import AgentInactiveError, RemoteChatError, SummarizationError
from agent_hub.infrastructure.config.settings import ContextSettings
from agent_hub.infrastructure.http.schema import ChatResult
from agent_hub.infrastructure.observability.logging import agent_logger, metrics

logger = structlog.get_logger(__name__)

SUMMARY_SYSTEM_PROMPT = (
    "You compress conversations. Summarize the conversation you are given in a few "
    "short paragraphs of prose, keeping facts, decisions and open questions."
)
SUMMARY_TEMPERATURE = 0.3
SUMMARY_MAX_TOKENS = 500


class ChatClient(Protocol):
    """The part of the request layer an agent needs"""

    async def send_chat(
        self,
        messages: List[Dict[str, str]],
        *,
        agent_id: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> ChatResult: ...


class ChatAgent:
    """One conversational participant with its own context window and history.

    The agent is the only writer of its context, history, metadata and
    counters. ``send_message`` requires the agent to be active; deactivation
    leaves context and history untouched.
    """

    def __init__(
        self,
        descriptor: AgentDescriptor,
        client: ChatClient,
        *,
        context_settings: Optional[ContextSettings] = None,
        events: Optional[EventDispatcher] = None,
    ):
        self.descriptor = descriptor
        self.client = client
        self.context_settings = context_settings or ContextSettings()
        self.events = events or EventDispatcher()

        self.state = ActivationState.INACTIVE
        self.context = ContextWindow(self.context_settings.max_messages)
        self.history: List[ChatMessage] = []
        self.metadata: Dict[str, Any] = {}
        self.stats = PerformanceStats()
        self.created_at = utcnow()
        self.last_active = utcnow()

    @property
    def id(self) -> str:
        return self.descriptor.id

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def description(self) -> str:
        return self.descriptor.description

    @property
    def capabilities(self) -> List[Capability]:
        return list(self.descriptor.capabilities)

    @property
    def system_prompt(self) -> str:
        return self.descriptor.resolved_system_prompt

    @property
    def config(self) -> GenerationConfig:
        return self.descriptor.config

    @property
    def is_active(self) -> bool:
        return self.state == ActivationState.ACTIVE

    @property
    def identity(self) -> AgentIdentity:
        return AgentIdentity(id=self.id, name=self.name)

    # Activation

    def activate(self):
        """Move to active; repeated calls keep the state but still notify"""
        self.state = ActivationState.ACTIVE
        self.update_activity()
        self._emit(AgentEventType.ACTIVATED)

    def deactivate(self):
        """Move to inactive; repeated calls keep the state but still notify"""
        self.state = ActivationState.INACTIVE
        self._emit(AgentEventType.DEACTIVATED)

    def restore_activation(self, active: bool):
        """Set the activation state silently, as when restoring a snapshot"""
        self.state = ActivationState.ACTIVE if active else ActivationState.INACTIVE

    def update_activity(self):
        self.last_active = utcnow()

    # Conversation

    def build_message_history(self) -> List[Dict[str, str]]:
        """System prompt followed by the most recent context messages as {role, content}"""
        recent = self.context.recent(self.context_settings.request_window)
        return [{"role": MessageRole.SYSTEM.value, "content": self.system_prompt}] + [m.to_wire() for m in recent]

    async def send_message(
        self,
        content: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ChatMessage:
        """Send one user message and return the assistant's reply"""

        if not self.is_active:
            raise AgentInactiveError(self.id)

        # Validates the per-call overrides before anything is recorded
        overrides = {"temperature": temperature, "max_tokens": max_tokens, "model": model}
        effective = GenerationConfig(**{
            **self.config.model_dump(),
            **{k: v for k, v in overrides.items() if v is not None}
        })

        user_message = ChatMessage(
            role=MessageRole.USER,
            content=content,
            metadata=dict(metadata or {})
        )
        self._add_to_context(user_message)

        messages = self.build_message_history()

        self._emit(AgentEventType.THINKING)

        started = time.perf_counter()
        try:
            result = await self.client.send_chat(
                messages,
                agent_id=self.id,
                model=effective.model,
                temperature=effective.temperature,
                max_tokens=effective.max_tokens
            )
            if not result.success:
                raise RemoteChatError(result.error)
        except Exception as e:
            self._record_failure(e, _elapsed_ms(started))
            raise

        duration_ms = _elapsed_ms(started)
        assistant_message = ChatMessage(
            role=MessageRole.ASSISTANT,
            content=result.response,
            usage=result.usage,
            finish_reason=result.finish_reason,
            metadata={
                "agentId": self.id,
                "model": result.model or effective.model,
                "responseMs": round(duration_ms, 2)
            }
        )
        self._add_to_context(assistant_message)
        self.stats.record(duration_ms, success=True, tokens=result.usage.total_tokens)
        metrics.record_agent_request(self.id, duration_ms, success=True)
        self.update_activity()

        self._emit(AgentEventType.RESPONSE, {
            "message": assistant_message.model_dump(mode="json", by_alias=True),
            "usage": result.usage.model_dump(by_alias=True),
            "stats": self.stats.model_dump(by_alias=True)
        })

        return assistant_message

    def _add_to_context(self, message: ChatMessage):
        self.history.append(message)
        evicted = self.context.append(message)
        if evicted:
            agent_logger.log_context_update(
                self.id, "truncated",
                {"evicted": len(evicted), "context_size": len(self.context)}
            )

    def _record_failure(self, error: Exception, duration_ms: float):
        """Log a failed request into history (not context) and the counters"""

        self.history.append(ChatMessage(
            role=MessageRole.ERROR,
            content=str(error),
            metadata={"agentId": self.id, "errorType": type(error).__name__}
        ))
        self.stats.record(duration_ms, success=False)
        metrics.record_agent_request(self.id, duration_ms, success=False)
        self._emit(AgentEventType.ERROR, {
            "error": str(error),
            "errorType": type(error).__name__,
            "stats": self.stats.model_dump(by_alias=True)
        })

    # Context maintenance

    async def summarize_context(self) -> bool:
        """Fold older context messages into one synthetic system message.

        Only runs once the context holds at least ``summarize_threshold``
        messages; the newest ``summarize_keep_recent`` stay verbatim. Failures
        are logged and leave the context unchanged. Returns True when the
        context was compacted.
        """

        threshold = self.context_settings.summarize_threshold
        keep_recent = self.context_settings.summarize_keep_recent

        messages = self.context.to_list()
        if len(messages) < threshold:
            return False

        folded = messages[:len(messages) - keep_recent]

        try:
            summary = await self._request_summary(folded)
        except SummarizationError as e:
            logger.warning("Context summarization failed", agent_id=self.id, error=str(e))
            return False

        summary_message = ChatMessage(
            role=MessageRole.SYSTEM,
            content=f"Summary of the earlier conversation: {summary}",
            metadata={"summary": True, "summarizedMessages": len(folded)}
        )
        removed = self.context.compact(folded, summary_message)
        self.history.append(summary_message)

        agent_logger.log_context_update(
            self.id, "summarized",
            {"folded": removed, "context_size": len(self.context)}
        )
        return True

    async def _request_summary(self, folded: List[ChatMessage]) -> str:
        transcript = "\n".join(f"{m.role.value}: {m.content}" for m in folded)
        request = [
            {"role": MessageRole.SYSTEM.value, "content": SUMMARY_SYSTEM_PROMPT},
            {"role": MessageRole.USER.value, "content": f"Summarize the following conversation:\n\n{transcript}"}
        ]

        try:
            result = await self.client.send_chat(
                request,
                agent_id=self.id,
                model=self.config.model,
                temperature=SUMMARY_TEMPERATURE,
                max_tokens=SUMMARY_MAX_TOKENS
            )
        except Exception as e:
            raise SummarizationError(f"{type(e).__name__}: {e}") from e

        if not result.success:
            raise SummarizationError(result.error)
        if not result.response.strip():
            raise SummarizationError("Empty summary")
        return result.response.strip()

    def clear_history(self):
        """Drop context and history"""
        self.context.clear()
        self.history = []
        self._emit(AgentEventType.HISTORY_CLEARED)

    def update_config(
        self,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
        system_prompt: Optional[str] = None,
    ):
        """Change generation parameters or the explicit system prompt"""

        updates = {"temperature": temperature, "max_tokens": max_tokens, "model": model}
        config = GenerationConfig(**{
            **self.config.model_dump(),
            **{k: v for k, v in updates.items() if v is not None}
        })

        descriptor_updates: Dict[str, Any] = {"config": config}
        if system_prompt is not None:
            descriptor_updates["system_prompt"] = system_prompt or None
        self.descriptor = self.descriptor.model_copy(update=descriptor_updates)

        self._emit(AgentEventType.CONFIG_UPDATED, {
            "config": config.model_dump(by_alias=True),
            "systemPrompt": self.system_prompt
        })

    def update_metadata(self, **values: Any):
        self.metadata.update(values)
        self._emit(AgentEventType.METADATA_UPDATED, {"metadata": dict(self.metadata)})

    # Introspection and persistence

    def get_state(self) -> Dict[str, Any]:
        """Get a summary of the agent"""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "capabilities": [c.value for c in self.capabilities],
            "isActive": self.is_active,
            "contextSize": len(self.context),
            "historySize": len(self.history),
            "config": self.config.model_dump(by_alias=True),
            "stats": self.stats.model_dump(by_alias=True),
            "lastActive": self.last_active.isoformat()
        }

    def save_context(self) -> AgentSnapshot:
        return AgentSnapshot(
            config=self.descriptor.model_copy(deep=True),
            context=[m.model_copy(deep=True) for m in self.context],
            conversation_history=[m.model_copy(deep=True) for m in self.history],
            metadata=dict(self.metadata),
            stats=self.stats.model_copy()
        )

    def load_context(self, snapshot: AgentSnapshot):
        """Overwrite config, context, history and counters from a snapshot"""
        self.descriptor = snapshot.config.model_copy(update={"id": self.id}, deep=True)
        self.context.replace(m.model_copy(deep=True) for m in snapshot.context)
        self.history = [m.model_copy(deep=True) for m in snapshot.conversation_history]
        self.metadata = dict(snapshot.metadata)
        self.stats = snapshot.stats.model_copy()

    def _emit(self, event_type: AgentEventType, payload: Optional[Dict[str, Any]] = None):
        agent_logger.log_agent_event(event_type.value, self.id)
        self.events.emit(AgentEvent(type=event_type, agent=self.identity, payload=payload or {}))

    def __repr__(self) -> str:
        return f"ChatAgent(id={self.id!r}, state={self.state.value})"


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000
