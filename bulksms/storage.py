"""
Storage interface consumed by the scheduler and storage sync.

Persistence is owned by the application; this module only defines the
records and methods the gateway relies on, plus a thread-safe in-memory
implementation.
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class MessageStatus(str, Enum):
    """Campaign status."""
    PENDING = "pending"
    SENDING = "sending"
    COMPLETED = "completed"
    FAILED = "failed"
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"


class DeliveryStatus(str, Enum):
    """Per-recipient delivery status."""
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass
class Contact:
    id: int
    list_id: int
    name: str
    phone: str
    opted_in: bool = True
    blacklisted: bool = False


@dataclass
class Message:
    """A campaign: one template sent to every eligible contact of a list."""
    id: int
    content: str
    list_id: Optional[int]
    status: MessageStatus = MessageStatus.PENDING
    campaign_name: str = ""
    scheduled_at: Optional[datetime] = None
    total_recipients: int = 0
    sent_count: int = 0
    delivered_count: int = 0
    failed_count: int = 0
    completed_at: Optional[datetime] = None


@dataclass
class MessageDelivery:
    """One personalized SMS of a campaign."""
    message_id: int
    contact_id: int
    phone: str
    personalized_content: str
    status: DeliveryStatus = DeliveryStatus.PENDING
    id: Optional[int] = None
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)


@runtime_checkable
class Storage(Protocol):
    """Persistence methods the gateway calls."""

    def get_scheduled_messages(self) -> list[Message]:
        """Messages in ``scheduled`` status."""
        ...

    def get_message(self, message_id: int) -> Optional[Message]:
        ...

    def update_message(self, message_id: int, **fields) -> Optional[Message]:
        ...

    def get_opted_in_contacts(self, list_id: int) -> list[Contact]:
        """Contacts of a list that are opted in and not blacklisted."""
        ...

    def create_message_delivery(self, delivery: MessageDelivery) -> MessageDelivery:
        """Store a delivery record and return it with its id."""
        ...

    def get_message_deliveries(self, message_id: int) -> list[MessageDelivery]:
        ...

    def update_message_delivery(self, delivery_id: int, **fields) -> Optional[MessageDelivery]:
        ...

    def blacklist_contact_by_phone(self, phone: str) -> int:
        """Blacklist and opt out every contact with this phone; returns the count."""
        ...


class InMemoryStorage:
    """Thread-safe in-memory Storage implementation."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._contacts: dict[int, Contact] = {}
        self._messages: dict[int, Message] = {}
        self._deliveries: dict[int, MessageDelivery] = {}
        self._next_delivery_id = 1

    def add_contact(self, contact: Contact) -> Contact:
        with self._lock:
            self._contacts[contact.id] = contact
        return contact

    def add_message(self, message: Message) -> Message:
        with self._lock:
            self._messages[message.id] = message
        return message

    def get_contacts(self) -> list[Contact]:
        with self._lock:
            return [replace(c) for c in self._contacts.values()]

    def get_scheduled_messages(self) -> list[Message]:
        with self._lock:
            return [
                replace(m) for m in self._messages.values()
                if m.status == MessageStatus.SCHEDULED
            ]

    def get_message(self, message_id: int) -> Optional[Message]:
        with self._lock:
            message = self._messages.get(message_id)
            return replace(message) if message else None

    def update_message(self, message_id: int, **fields) -> Optional[Message]:
        with self._lock:
            message = self._messages.get(message_id)
            if message is None:
                return None
            updated = replace(message, **fields)
            self._messages[message_id] = updated
            return replace(updated)

    def get_opted_in_contacts(self, list_id: int) -> list[Contact]:
        with self._lock:
            return [
                replace(c) for c in self._contacts.values()
                if c.list_id == list_id and c.opted_in and not c.blacklisted
            ]

    def create_message_delivery(self, delivery: MessageDelivery) -> MessageDelivery:
        with self._lock:
            stored = replace(delivery, id=self._next_delivery_id)
            self._deliveries[stored.id] = stored
            self._next_delivery_id += 1
            return replace(stored)

    def get_message_deliveries(self, message_id: int) -> list[MessageDelivery]:
        with self._lock:
            return [
                replace(d) for d in self._deliveries.values()
                if d.message_id == message_id
            ]

    def update_message_delivery(self, delivery_id: int, **fields) -> Optional[MessageDelivery]:
        with self._lock:
            delivery = self._deliveries.get(delivery_id)
            if delivery is None:
                return None
            updated = replace(delivery, **fields)
            self._deliveries[delivery_id] = updated
            return replace(updated)

    def blacklist_contact_by_phone(self, phone: str) -> int:
        with self._lock:
            matched = [c for c in self._contacts.values() if c.phone == phone]
            for contact in matched:
                self._contacts[contact.id] = replace(contact, blacklisted=True, opted_in=False)
        if matched:
            logger.info(f"Blacklisted {len(matched)} contact(s) for {phone}")
        return len(matched)
