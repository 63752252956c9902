from agent_hub.domain.events.dispatcher import EventDispatcher
from agent_hub.domain.events.schema import AgentEvent, AgentEventType
from agent_hub.domain.models.agent_state import AgentIdentity


def _event(event_type=AgentEventType.RESPONSE, **payload):
    return AgentEvent(type=event_type, agent=AgentIdentity(id="a", name="A"), payload=payload)


def test_topic_and_catch_all_handlers():
    dispatcher = EventDispatcher()
    topic, everything = [], []
    dispatcher.subscribe(topic.append, AgentEventType.ERROR)
    dispatcher.subscribe(everything.append)

    dispatcher.emit(_event(AgentEventType.RESPONSE))
    dispatcher.emit(_event(AgentEventType.ERROR))

    assert [e.type for e in topic] == [AgentEventType.ERROR]
    assert [e.type for e in everything] == [AgentEventType.RESPONSE, AgentEventType.ERROR]


def test_unsubscribe_stops_delivery():
    dispatcher = EventDispatcher()
    seen = []
    unsubscribe = dispatcher.subscribe(seen.append)

    unsubscribe()
    unsubscribe()
    dispatcher.emit(_event())

    assert seen == []
    assert dispatcher.handler_count() == 0


def test_failing_handler_does_not_block_others():
    dispatcher = EventDispatcher()
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    dispatcher.subscribe(broken)
    dispatcher.subscribe(seen.append)
    dispatcher.emit(_event())

    assert len(seen) == 1


def test_handlers_receive_independent_copies():
    dispatcher = EventDispatcher()
    seen = []

    def mutate(event):
        event.payload["items"].append("changed")

    dispatcher.subscribe(mutate)
    dispatcher.subscribe(seen.append)
    original = _event(items=[])
    dispatcher.emit(original)

    assert seen[0].payload["items"] == []
    assert original.payload["items"] == []


def test_wire_format():
    wire = _event(AgentEventType.METADATA_UPDATED, metadata={"x": 1}).to_wire()
    assert wire["type"] == "metadata-updated"
    assert wire["agent"] == {"id": "a", "name": "A"}
    assert wire["payload"] == {"metadata": {"x": 1}}
