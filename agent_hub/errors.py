from typing import Optional


class AgentHubError(Exception):
    """Base exception for all agent-hub errors."""


# Request layer

class RequestError(AgentHubError):
    """Base for failures raised by the request layer."""


class NetworkTransientError(RequestError):
    """Connection-level failure that persisted through every retry."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class RateLimitedError(RequestError):
    """The service answered 429; carries the Retry-After hint in seconds."""

    def __init__(self, retry_after: int):
        super().__init__(f"Rate limit exceeded. Retry after {retry_after} seconds.")
        self.retry_after = retry_after


class HttpError(RequestError):
    """Non-2xx response other than 429."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class RemoteChatError(RequestError):
    """The chat endpoint answered with success=false."""


# Agents

class AgentError(AgentHubError):
    """Base for agent-related errors."""


class AgentInactiveError(AgentError):
    """send_message was called on an inactive agent."""

    def __init__(self, agent_id: str):
        super().__init__(f"Agent '{agent_id}' is not active")
        self.agent_id = agent_id


class UnknownCapabilityError(AgentError, ValueError):
    """A capability tag outside the supported set."""

    def __init__(self, tag: str, agent_id: Optional[str] = None):
        where = f" for agent '{agent_id}'" if agent_id else ""
        super().__init__(f"Unknown capability '{tag}'{where}")
        self.tag = tag


# Persistence / maintenance / config

class SerializationError(AgentHubError):
    """A persisted value could not be decoded."""


class SummarizationError(AgentHubError):
    """Context summarization failed; the original context is kept."""


class ConfigError(AgentHubError):
    """Invalid or missing configuration."""
