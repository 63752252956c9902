import asyncio

from agent_hub.domain.events.schema import AgentEventType
from agent_hub.domain.models.agent_state import MessageRole
from agent_hub.domain.orchestration.agent_manager import AgentManager
from agent_hub.errors import HttpError, NetworkTransientError
from agent_hub.infrastructure.http.schema import CatalogAgent, ChatSuccess
from tests.conftest import make_descriptor


def _activate_all(manager):
    for agent_id in ("a", "b", "c"):
        manager.activate_agent(agent_id)


class TestBroadcast:

    async def test_settles_every_agent_despite_failure(self, manager, fake_client):
        _activate_all(manager)
        fake_client.failing_agents.add("b")

        outcomes = await manager.broadcast_message("hello")

        assert [o.agent_id for o in outcomes] == ["a", "b", "c"]
        assert [o.success for o in outcomes] == [True, False, True]
        assert outcomes[1].error == "upstream failure for b"
        assert outcomes[1].error_type == "HttpError"
        assert outcomes[0].message.role == MessageRole.ASSISTANT

        # The failing agent still recorded the exchange in its own history
        failed = manager.get_agent("b")
        assert [m.role for m in failed.history] == [MessageRole.USER, MessageRole.ERROR]

    async def test_no_active_agents_returns_empty(self, manager, fake_client):
        assert await manager.broadcast_message("hello") == []
        assert fake_client.calls == []

    async def test_deactivated_agent_is_skipped(self, manager, fake_client):
        _activate_all(manager)
        manager.deactivate_agent("b")

        outcomes = await manager.broadcast_message("hello")

        assert [o.agent_id for o in outcomes] == ["a", "c"]
        assert {call["agent_id"] for call in fake_client.calls} == {"a", "c"}
        assert manager.get_agent("b").history == []

    async def test_requests_are_in_flight_together(self, manager, fake_client):
        _activate_all(manager)
        release = asyncio.Event()
        started = []

        async def handler(call):
            started.append(call["agent_id"])
            if len(started) == 3:
                release.set()
            await asyncio.wait_for(release.wait(), timeout=1)
            return ChatSuccess(success=True, response=f"{call['agent_id']} done")

        fake_client.handler = handler
        outcomes = await manager.broadcast_message("hello")

        assert sorted(started) == ["a", "b", "c"]
        assert all(o.success for o in outcomes)

    async def test_overrides_reach_every_agent(self, manager, fake_client):
        _activate_all(manager)
        await manager.broadcast_message("hello", temperature=0.1, max_tokens=32)

        assert {(c["temperature"], c["max_tokens"]) for c in fake_client.calls} == {(0.1, 32)}

    async def test_transcript_and_usage_log(self, manager, fake_client, conversation_store):
        _activate_all(manager)
        fake_client.failing_agents.add("c")

        await manager.broadcast_message("hello")

        assert [e.agent_id for e in manager.current_conversation] == ["a", "b"]
        usage = await conversation_store.load_usage_log()
        assert [r.agent_id for r in usage] == ["a", "b"]
        assert usage[0].usage.total_tokens == 12
        assert usage[0].model == "gpt-4"

    async def test_usage_log_failure_does_not_fail_broadcast(self, manager, conversation_store):
        _activate_all(manager)

        async def broken(records):
            raise OSError("disk full")

        conversation_store.append_usage = broken
        outcomes = await manager.broadcast_message("hello")
        assert all(o.success for o in outcomes)

    async def test_summarize_contexts_covers_every_agent(self, manager):
        _activate_all(manager)
        for i in range(10):
            await manager.broadcast_message(f"question {i}")
        manager.deactivate_agent("c")

        results = await manager.summarize_contexts()

        assert results == {"a": True, "b": True, "c": True}
        assert len(manager.get_agent("c").context) == 11


class TestActiveSet:

    def test_active_ids_follow_agent_state(self, manager):
        manager.activate_agent("a")
        manager.activate_agent("c")
        manager.deactivate_agent("a")

        assert manager.active_agent_ids == ["c"]
        for agent in manager.all_agents():
            assert agent.is_active == (agent.id in manager.active_agent_ids)

    def test_unknown_ids_are_ignored(self, manager):
        manager.activate_agent("ghost")
        manager.deactivate_agent("ghost")
        assert manager.active_agent_ids == []

    def test_activation_order_is_preserved(self, manager):
        for agent_id in ("c", "a", "b"):
            manager.activate_agent(agent_id)
        assert manager.active_agent_ids == ["c", "a", "b"]

    def test_remove_agent_drops_it_from_active_set(self, manager):
        manager.activate_agent("a")
        assert manager.remove_agent("a") is True
        assert manager.get_agent("a") is None
        assert manager.active_agent_ids == []
        assert manager.remove_agent("a") is False


class TestRegistry:

    def test_add_agent_replaces_existing_id(self, manager):
        old = manager.get_agent("a")
        manager.activate_agent("a")

        new = manager.add_agent(make_descriptor("a", name="Replacement"))

        assert manager.get_agent("a") is new
        assert new is not old
        assert new.name == "Replacement"
        assert "a" not in manager.active_agent_ids
        assert old.events.handler_count() == 0
        assert new.events.handler_count() == 1

    def test_add_agent_accepts_raw_config(self, manager):
        agent = manager.add_agent({"id": "d", "name": "Delta", "capabilities": ["research"], "temperature": 0.2})
        assert agent.config.temperature == 0.2
        assert agent.config.max_tokens == 2000

    def test_agent_events_are_forwarded(self, manager):
        seen = []
        manager.events.subscribe(seen.append, AgentEventType.ACTIVATED)

        manager.activate_agent("b")

        assert len(seen) == 1
        assert seen[0].agent.id == "b"

    def test_removed_agent_events_are_not_forwarded(self, manager):
        seen = []
        manager.events.subscribe(seen.append)
        agent = manager.get_agent("a")
        manager.remove_agent("a")

        agent.activate()
        assert seen == []

    def test_get_all_states(self, manager):
        manager.activate_agent("b")
        states = {s["id"]: s for s in manager.get_all_states()}
        assert states["b"]["isActive"] is True
        assert states["a"]["contextSize"] == 0

    async def test_clear_conversation(self, manager):
        _activate_all(manager)
        await manager.broadcast_message("hello")

        manager.clear_conversation()

        assert manager.current_conversation == []
        assert all(agent.history == [] for agent in manager.all_agents())


class TestLoadAgents:

    async def test_loads_from_catalog(self, fake_client, conversation_store):
        fake_client.catalog = [
            CatalogAgent(id="coder", name="Coder", capabilities=["programming"], model="gpt-4o"),
            CatalogAgent(id="odd", name="Odd", capabilities=["telepathy"]),
        ]
        manager = AgentManager(fake_client, store=conversation_store)

        agents = await manager.load_agents()

        assert [a.id for a in agents] == ["coder"]
        assert manager.get_agent("coder").config.model == "gpt-4o"

    async def test_falls_back_to_defaults(self, fake_client, conversation_store):
        fake_client.catalog_error = NetworkTransientError("down", attempts=3)
        manager = AgentManager(fake_client, store=conversation_store)

        await manager.load_agents()

        assert set(manager.agents) == {"default", "technical", "creative", "analytical"}

    async def test_empty_catalog_uses_defaults(self, fake_client, conversation_store):
        manager = AgentManager(fake_client, store=conversation_store)
        await manager.load_agents()
        assert "default" in manager.agents

    async def test_http_error_uses_defaults(self, fake_client, conversation_store):
        fake_client.catalog_error = HttpError(503, "unavailable")
        manager = AgentManager(fake_client, store=conversation_store)
        await manager.load_agents()
        assert len(manager.agents) == 4
