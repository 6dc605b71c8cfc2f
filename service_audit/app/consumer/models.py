"""
Audit consumer data models.

These are transport-neutral: a ``ChannelMessage`` is whatever the channel
adapter delivered, identified by the channel's message id.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

PARTITION_KEY_PREFIX = "SESSION"
SORT_KEY_PREFIX = "TXMA"
KEY_SEPARATOR = "#"


@dataclass(frozen=True)
class ChannelMessage:
    """One delivered message of a batch."""
    message_id: str
    body: str
    delivery_attempt: int = 1
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EventKeyFields:
    """The fields of an audit event body that make up its storage key."""
    session_id: str
    event_name: str
    timestamp: Any

    @classmethod
    def from_body(cls, body: str) -> "EventKeyFields":
        """
        Extract key fields from a serialized audit event.

        Only the key fields are read; the rest of the payload is opaque.
        Raises ValueError when the body is not JSON or lacks a key field.
        """
        payload = json.loads(body)
        if not isinstance(payload, dict):
            raise ValueError("Audit event body is not a JSON object")

        user = payload.get("user")
        session_id = user.get("session_id") if isinstance(user, dict) else None
        event_name = payload.get("event_name")
        timestamp = payload.get("timestamp")

        missing = [
            name for name, value in (
                ("user.session_id", session_id),
                ("event_name", event_name),
                ("timestamp", timestamp),
            )
            if value is None or value == ""
        ]
        if missing:
            raise ValueError(f"Audit event body missing {', '.join(missing)}")

        return cls(session_id=str(session_id), event_name=str(event_name), timestamp=timestamp)


def partition_key(session_id: str) -> str:
    return f"{PARTITION_KEY_PREFIX}{KEY_SEPARATOR}{session_id}"


def sort_key(event_name: str, timestamp: Any, message_id: str) -> str:
    return KEY_SEPARATOR.join([SORT_KEY_PREFIX, event_name, str(timestamp), message_id])


@dataclass(frozen=True)
class PersistedAuditRecord:
    """Storage representation of one delivered audit event."""
    partition_key: str
    sort_key: str
    event: str
    expiry_date: int

    @classmethod
    def from_message(cls, message: ChannelMessage, fields: EventKeyFields, expiry_date: int) -> "PersistedAuditRecord":
        return cls(
            partition_key=partition_key(fields.session_id),
            sort_key=sort_key(fields.event_name, fields.timestamp, message.message_id),
            event=message.body,
            expiry_date=expiry_date,
        )


@dataclass
class BatchResult:
    """Outcome of one batch: the message ids the channel must redeliver."""
    failed_message_ids: List[str] = field(default_factory=list)
    processed: int = 0

    @property
    def succeeded(self) -> int:
        return self.processed - len(self.failed_message_ids)

    def has_failures(self) -> bool:
        return bool(self.failed_message_ids)

    def to_batch_item_failures(self) -> Dict[str, List[Dict[str, str]]]:
        """Partial-batch response shape understood by queue runtimes."""
        return {
            "batchItemFailures": [
                {"itemIdentifier": message_id} for message_id in self.failed_message_ids
            ]
        }


@dataclass(frozen=True)
class MessageOutcome:
    message_id: str
    ok: bool
    reason: Optional[str] = None
