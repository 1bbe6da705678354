"""
Client events carried on the pool's event bus.
"""

from dataclasses import dataclass
from enum import Enum


class EventType(Enum):
    MESSAGE_PUBLISHED = "MessagePublished"
    MESSAGE_RECEIVED = "MessageReceived"


@dataclass(frozen=True)
class ClientEvent:
    """A completed action reported by a worker. Not attributed to any worker."""
    event_type: EventType
    count: int = 1

    @classmethod
    def published(cls) -> "ClientEvent":
        return cls(EventType.MESSAGE_PUBLISHED)

    @classmethod
    def received(cls) -> "ClientEvent":
        return cls(EventType.MESSAGE_RECEIVED)
