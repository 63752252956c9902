from collections import deque
from typing import Deque, Iterable, Iterator, List, Optional, Sequence

from agent_hub.domain.models.agent_state import ChatMessage


class ContextWindow:
    """Bounded working set of an agent's messages.

    Eviction policy is drop-oldest by raw message count: once more than
    ``max_messages`` are held, the oldest entries are discarded so only the
    most recent ``max_messages`` remain. ``append`` is the only growth path.
    """

    def __init__(self, max_messages: int = 50, messages: Optional[Iterable[ChatMessage]] = None):
        if max_messages <= 0:
            raise ValueError("max_messages must be positive")
        self.max_messages = max_messages
        self._messages: Deque[ChatMessage] = deque()
        for message in messages or []:
            self.append(message)

    def append(self, message: ChatMessage) -> List[ChatMessage]:
        """Add a message and return whatever was evicted"""
        self._messages.append(message)
        evicted = []
        while len(self._messages) > self.max_messages:
            evicted.append(self._messages.popleft())
        return evicted

    def recent(self, count: int) -> List[ChatMessage]:
        """The most recent ``count`` messages, oldest first"""
        if count <= 0:
            return []
        return list(self._messages)[-count:]

    def compact(self, folded: Sequence[ChatMessage], summary: ChatMessage) -> int:
        """Replace ``folded`` messages with a single leading ``summary``.

        Messages are matched by identity, so anything appended while the
        summary was being produced stays in place. Returns how many of the
        folded messages were still present.
        """
        folded_ids = {id(m) for m in folded}
        remaining = [m for m in self._messages if id(m) not in folded_ids]
        removed = len(self._messages) - len(remaining)
        self._messages = deque([summary, *remaining])
        return removed

    def replace(self, messages: Iterable[ChatMessage]):
        """Overwrite the window, keeping only the newest entries that fit"""
        self._messages = deque(messages)
        while len(self._messages) > self.max_messages:
            self._messages.popleft()

    def clear(self):
        self._messages.clear()

    def to_list(self) -> List[ChatMessage]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(list(self._messages))
