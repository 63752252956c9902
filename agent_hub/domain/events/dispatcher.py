from typing import Callable, Dict, List, Optional
import copy
import structlog

from agent_hub.domain.events.schema import AgentEvent, AgentEventType

logger = structlog.get_logger(__name__)

EventHandler = Callable[[AgentEvent], None]
Unsubscribe = Callable[[], None]


class EventDispatcher:
    """Synchronous publish/subscribe channel for agent events.

    Handlers run in subscription order on the caller's thread; emitting never
    suspends. A failing handler is logged and does not stop the others.
    Each handler receives its own deep copy of the event so observers cannot
    affect each other or the emitter.
    """

    def __init__(self):
        self.event_handlers: Dict[Optional[AgentEventType], List[EventHandler]] = {}

    def subscribe(self, handler: EventHandler, event_type: Optional[AgentEventType] = None) -> Unsubscribe:
        """Register a handler for one topic, or for every topic when event_type is None"""

        if event_type not in self.event_handlers:
            self.event_handlers[event_type] = []
        self.event_handlers[event_type].append(handler)

        def unsubscribe():
            handlers = self.event_handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def emit(self, event: AgentEvent):
        """Deliver an event to topic handlers, then to catch-all handlers"""

        handlers = list(self.event_handlers.get(event.type, [])) + list(self.event_handlers.get(None, []))
        for handler in handlers:
            try:
                handler(copy.deepcopy(event))
            except Exception as e:
                logger.error("Error in event handler",
                             event_type=event.type.value,
                             agent_id=event.agent.id,
                             error=str(e))

    def handler_count(self, event_type: Optional[AgentEventType] = None) -> int:
        return len(self.event_handlers.get(event_type, []))
