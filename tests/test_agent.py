import pytest

from agent_hub.domain.events.schema import AgentEventType
from agent_hub.domain.models.agent_state import AgentDescriptor, MessageRole
from agent_hub.domain.models.capabilities import BASE_PROMPT, Capability
from agent_hub.domain.orchestration.agent import ChatAgent
from agent_hub.errors import AgentInactiveError, HttpError, RemoteChatError, UnknownCapabilityError
from agent_hub.infrastructure.http.schema import ChatFailure, ChatSuccess
from agent_hub.infrastructure.observability.logging import metrics
from tests.conftest import make_descriptor


def _record_events(agent):
    events = []
    agent.events.subscribe(events.append)
    return events


class TestActivation:

    def test_activate_and_deactivate(self, agent):
        agent.activate()
        assert agent.is_active is True
        agent.deactivate()
        assert agent.is_active is False

    def test_double_activate_is_idempotent_but_notifies(self, agent):
        events = _record_events(agent)
        agent.activate()
        agent.activate()

        assert agent.is_active is True
        assert [e.type for e in events] == [AgentEventType.ACTIVATED, AgentEventType.ACTIVATED]
        assert events[0].agent.id == "alpha"

    def test_restore_activation_is_silent(self, agent):
        events = _record_events(agent)
        agent.restore_activation(True)
        assert agent.is_active is True
        assert events == []

    async def test_deactivated_agent_keeps_context(self, agent):
        agent.activate()
        await agent.send_message("hello")
        agent.deactivate()

        assert len(agent.context) == 2
        assert len(agent.history) == 2


class TestSendMessage:

    async def test_inactive_agent_fails_without_network_call(self, agent, fake_client):
        with pytest.raises(AgentInactiveError):
            await agent.send_message("hello")
        assert fake_client.calls == []
        assert agent.history == []

    async def test_success_appends_user_and_assistant(self, agent, fake_client):
        agent.activate()
        reply = await agent.send_message("hello", metadata={"source": "test"})

        assert reply.role == MessageRole.ASSISTANT
        assert reply.content == "alpha reply 1"
        assert reply.usage.total_tokens == 12
        assert reply.finish_reason == "stop"
        assert [m.role for m in agent.context] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert agent.history[0].metadata == {"source": "test"}

        call = fake_client.calls[0]
        assert call["agent_id"] == "alpha"
        assert call["temperature"] == 0.7
        assert call["max_tokens"] == 2000
        assert call["model"] == "gpt-4"

    async def test_payload_is_system_plus_ten_recent(self, agent, fake_client):
        agent.activate()
        for i in range(15):
            await agent.send_message(f"question {i}")

        for call in fake_client.calls:
            assert len(call["messages"]) <= 11
            assert call["messages"][0] == {"role": "system", "content": agent.system_prompt}
            assert all(set(m) == {"role", "content"} for m in call["messages"])

        last = fake_client.calls[-1]["messages"]
        assert len(last) == 11
        assert last[-1] == {"role": "user", "content": "question 14"}

    async def test_context_is_capped_at_fifty_most_recent(self, agent):
        agent.activate()
        for i in range(30):
            await agent.send_message(f"question {i}")

        assert len(agent.history) == 60
        assert len(agent.context) == 50
        assert list(agent.context) == agent.history[-50:]
        timestamps = [m.timestamp for m in agent.context]
        assert timestamps == sorted(timestamps)

    async def test_overrides_are_forwarded(self, agent, fake_client):
        agent.activate()
        await agent.send_message("hi", temperature=0.2, max_tokens=64, model="gpt-4o")

        call = fake_client.calls[0]
        assert (call["temperature"], call["max_tokens"], call["model"]) == (0.2, 64, "gpt-4o")

    async def test_invalid_override_is_rejected_before_recording(self, agent, fake_client):
        agent.activate()
        with pytest.raises(ValueError):
            await agent.send_message("hi", temperature=1.5)
        assert agent.history == []
        assert fake_client.calls == []

    async def test_events_are_emitted_in_order(self, agent):
        agent.activate()
        events = _record_events(agent)
        await agent.send_message("hi")

        assert [e.type for e in events] == [AgentEventType.THINKING, AgentEventType.RESPONSE]
        assert events[1].payload["message"]["content"] == "alpha reply 1"

    async def test_failure_is_recorded_in_history_only(self, agent, fake_client):
        agent.activate()
        fake_client.failing_agents.add("alpha")
        events = _record_events(agent)

        with pytest.raises(HttpError):
            await agent.send_message("hi")

        assert [m.role for m in agent.context] == [MessageRole.USER]
        assert agent.history[-1].role == MessageRole.ERROR
        assert agent.history[-1].metadata["errorType"] == "HttpError"
        assert agent.stats.failed_requests == 1
        assert agent.stats.success_rate == 0.0
        assert events[-1].type == AgentEventType.ERROR
        assert "upstream failure" in events[-1].payload["error"]

    async def test_failure_result_raises_remote_chat_error(self, agent, fake_client):
        agent.activate()
        fake_client.handler = lambda call: ChatFailure(success=False, error="model overloaded")

        with pytest.raises(RemoteChatError, match="model overloaded"):
            await agent.send_message("hi")
        assert agent.history[-1].content == "model overloaded"

    async def test_stats_track_successes_and_failures(self, agent, fake_client):
        agent.activate()
        await agent.send_message("one")
        fake_client.failing_agents.add("alpha")
        with pytest.raises(HttpError):
            await agent.send_message("two")

        assert agent.stats.total_requests == 2
        assert agent.stats.successful_requests == 1
        assert agent.stats.total_tokens == 12
        assert agent.stats.success_rate == 0.5
        assert agent.stats.average_response_ms >= 0

    async def test_outcomes_feed_process_metrics(self, agent, fake_client):
        metrics.reset()
        agent.activate()
        await agent.send_message("one")
        fake_client.failing_agents.add("alpha")
        with pytest.raises(HttpError):
            await agent.send_message("two")

        summary = metrics.get_metrics_summary()
        assert summary["agent.requests.succeeded"] == 1
        assert summary["agent.requests.failed"] == 1
        assert summary["agent.alpha.requests.failed"] == 1
        assert summary["latency.agent_response"]["count"] == 2


class TestSummarization:

    async def _fill(self, agent, exchanges):
        agent.activate()
        for i in range(exchanges):
            await agent.send_message(f"question {i}")

    async def test_below_threshold_does_nothing(self, agent, fake_client):
        await self._fill(agent, 9)
        calls_before = len(fake_client.calls)

        assert await agent.summarize_context() is False
        assert len(fake_client.calls) == calls_before
        assert len(agent.context) == 18

    async def test_compacts_all_but_last_ten(self, agent, fake_client):
        await self._fill(agent, 10)
        tail = list(agent.context)[-10:]
        fake_client.handler = lambda call: ChatSuccess(success=True, response="they talked a lot")

        assert await agent.summarize_context() is True

        context = list(agent.context)
        assert len(context) == 11
        assert context[0].role == MessageRole.SYSTEM
        assert "they talked a lot" in context[0].content
        assert context[1:] == tail
        assert agent.history[-1] is context[0]

        request = fake_client.calls[-1]
        assert request["temperature"] == 0.3
        assert request["max_tokens"] == 500
        assert "question 0" in request["messages"][-1]["content"]

    async def test_failure_keeps_context(self, agent, fake_client):
        await self._fill(agent, 10)
        before = list(agent.context)
        fake_client.failing_agents.add("alpha")

        assert await agent.summarize_context() is False
        assert list(agent.context) == before


class TestConfiguration:

    def test_system_prompt_derived_from_capabilities(self, fake_client):
        agent = ChatAgent(make_descriptor("tech", capabilities=["technical", "debugging"]), fake_client)
        assert agent.system_prompt.startswith(BASE_PROMPT)
        assert "bugs" in agent.system_prompt
        assert agent.capabilities == [Capability.TECHNICAL, Capability.DEBUGGING]

    def test_explicit_system_prompt_wins(self, fake_client):
        agent = ChatAgent(make_descriptor("x", system_prompt="Be terse."), fake_client)
        assert agent.system_prompt == "Be terse."

    def test_unknown_capability_rejected(self):
        with pytest.raises(UnknownCapabilityError) as excinfo:
            AgentDescriptor.from_payload({"id": "x", "name": "X", "capabilities": ["general", "telepathy"]})
        assert excinfo.value.tag == "telepathy"

    def test_update_config_validates_and_notifies(self, agent):
        events = _record_events(agent)
        agent.update_config(temperature=0.1, model="gpt-4o")

        assert agent.config.temperature == 0.1
        assert agent.config.model == "gpt-4o"
        assert events[-1].type == AgentEventType.CONFIG_UPDATED

        with pytest.raises(ValueError):
            agent.update_config(max_tokens=0)

    async def test_clear_history_notifies(self, agent):
        agent.activate()
        await agent.send_message("hi")
        events = _record_events(agent)
        agent.clear_history()

        assert len(agent.context) == 0
        assert agent.history == []
        assert events[-1].type == AgentEventType.HISTORY_CLEARED

    def test_update_metadata_notifies(self, agent):
        events = _record_events(agent)
        agent.update_metadata(pinned=True)

        assert agent.metadata == {"pinned": True}
        assert events[-1].type == AgentEventType.METADATA_UPDATED
        assert events[-1].payload == {"metadata": {"pinned": True}}
