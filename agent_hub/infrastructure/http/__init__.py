from agent_hub.infrastructure.http.api_client import APIClient

__all__ = ["APIClient"]
