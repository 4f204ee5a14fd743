import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from fastapi.encoders import jsonable_encoder


class EventType(str, Enum):
    # server -> client, informational
    WELCOME = "welcome"
    JOIN_CONFIRMED = "joinConfirmed"
    PONG = "pong"

    # server -> client, lifecycle notifications
    REQUEST_OPENED = "participationRequest"
    REQUEST_CLOSED = "participationRequestDeactivated"
    RECORD_CREATED = "participationRecordCreated"
    RECORD_UPDATED = "participationRecordUpdated"
    RECORDS_DELETED = "participationRecordsDeleted"


class ClientMessageType(str, Enum):
    PING = "ping"
    JOIN = "join"


LIFECYCLE_EVENTS = frozenset(
    {
        EventType.REQUEST_OPENED,
        EventType.REQUEST_CLOSED,
        EventType.RECORD_CREATED,
        EventType.RECORD_UPDATED,
        EventType.RECORDS_DELETED,
    }
)


@dataclass(frozen=True)
class Event:
    """A ``{type, payload}`` frame on the realtime channel."""

    type: EventType
    payload: Any = None

    def to_message(self) -> dict:
        message = {"type": self.type.value}
        if self.payload is not None:
            message["payload"] = jsonable_encoder(self.payload)
        return message

    def encode(self) -> str:
        return json.dumps(self.to_message())


class EventPublisher(Protocol):
    async def publish(self, event: Event) -> None:
        ...

