from typing import Iterable, List, Optional
import json
import structlog
from pydantic import TypeAdapter, ValidationError

from agent_hub.domain.models.agent_state import ConversationSnapshot, UsageRecord
from agent_hub.errors import SerializationError
from agent_hub.infrastructure.persistence.key_value_store import InMemoryKeyValueStore, KeyValueStore

logger = structlog.get_logger(__name__)

CONVERSATION_KEY = "conversation-state"
AUTH_TOKEN_KEY = "auth-token"
USAGE_LOG_KEY = "usage-log"

_usage_log_adapter = TypeAdapter(List[UsageRecord])


class ConversationStore:
    """Serializes manager snapshots, the auth token and the usage log as JSON"""

    def __init__(self, store: Optional[KeyValueStore] = None, usage_log_limit: int = 1000):
        self.store = store or InMemoryKeyValueStore()
        self.usage_log_limit = usage_log_limit

    async def save_snapshot(self, snapshot: ConversationSnapshot):
        await self.store.set(CONVERSATION_KEY, snapshot.model_dump_json(by_alias=True))

    async def load_snapshot(self) -> Optional[ConversationSnapshot]:
        """Return the saved snapshot, None when nothing is stored.

        Raises SerializationError when the stored value cannot be decoded or
        is not a valid snapshot.
        """
        raw = await self.store.get(CONVERSATION_KEY)
        if raw is None:
            return None
        try:
            return ConversationSnapshot.model_validate_json(raw)
        except ValidationError as e:
            raise SerializationError(f"Corrupt conversation snapshot: {e.error_count()} validation errors") from e

    async def clear_snapshot(self) -> bool:
        return await self.store.delete(CONVERSATION_KEY)

    async def save_auth_token(self, token: str):
        await self.store.set(AUTH_TOKEN_KEY, json.dumps({"token": token}))

    async def load_auth_token(self) -> Optional[str]:
        try:
            raw = await self.store.get(AUTH_TOKEN_KEY)
        except SerializationError:
            logger.warning("Ignoring unreadable auth token entry")
            return None
        if raw is None:
            return None
        try:
            token = json.loads(raw).get("token")
        except (ValueError, AttributeError):
            logger.warning("Ignoring unreadable auth token entry")
            return None
        return token if isinstance(token, str) and token else None

    async def clear_auth_token(self) -> bool:
        return await self.store.delete(AUTH_TOKEN_KEY)

    async def append_usage(self, records: Iterable[UsageRecord]):
        """Append records, keeping only the newest usage_log_limit entries"""
        records = list(records)
        if not records:
            return
        log = await self.load_usage_log()
        log.extend(records)
        log = log[-self.usage_log_limit:]
        await self.store.set(USAGE_LOG_KEY, _usage_log_adapter.dump_json(log, by_alias=True).decode("utf-8"))

    async def load_usage_log(self) -> List[UsageRecord]:
        try:
            raw = await self.store.get(USAGE_LOG_KEY)
        except SerializationError:
            logger.warning("Discarding corrupt usage log")
            return []
        if raw is None:
            return []
        try:
            return _usage_log_adapter.validate_json(raw)
        except ValidationError:
            logger.warning("Discarding corrupt usage log")
            return []
