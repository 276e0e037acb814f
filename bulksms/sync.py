"""
Applies gateway events to storage.

Keeps the gateway itself free of persistence: delivery outcomes update the
per-recipient records and campaign counters, opt-outs blacklist the sender.
"""

import logging
from datetime import datetime
from typing import Optional

from .events import EventChannel, EventDispatcher, EventKind, GatewayEvent
from .storage import DeliveryStatus, MessageDelivery, MessageStatus, Storage
from .types import DeliveryOutcome, OutcomeStatus

logger = logging.getLogger(__name__)

# Delivery records that can still move to the given outcome
_OPEN_STATUSES = {
    OutcomeStatus.SENT: (DeliveryStatus.PENDING,),
    OutcomeStatus.DELIVERED: (DeliveryStatus.SENT, DeliveryStatus.PENDING),
    OutcomeStatus.FAILED: (DeliveryStatus.PENDING, DeliveryStatus.SENT),
}


class StorageSync:
    """
    Event handlers that keep campaign records current.

    Example:

    .. code-block:: python

        sync = StorageSync(storage)
        dispatcher = sync.dispatcher(gateway.events)
        dispatcher.start()
    """

    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    def dispatcher(self, channel: EventChannel) -> EventDispatcher:
        """Build the dispatcher that routes events to this sync."""
        return EventDispatcher(channel, {
            EventKind.MESSAGE_PROCESSED: self.on_message_processed,
            EventKind.OPT_OUT: self.on_opt_out,
        })

    def on_message_processed(self, event: GatewayEvent) -> None:
        outcome: DeliveryOutcome = event.data
        message_id = self._message_id(outcome)
        if message_id is None:
            logger.debug(f"Outcome for {outcome.phone} has no campaign, not recorded")
            return

        delivery = self._find_delivery(message_id, outcome)
        if delivery is None:
            logger.warning(f"No open delivery for message {message_id} to {outcome.phone}")
            return

        now = datetime.now()
        fields: dict = {"status": DeliveryStatus(outcome.outcome.value)}
        if outcome.outcome == OutcomeStatus.SENT:
            fields["sent_at"] = now
        elif outcome.outcome == OutcomeStatus.DELIVERED:
            fields["delivered_at"] = now
        else:
            fields["failure_reason"] = outcome.error
        self.storage.update_message_delivery(delivery.id, **fields)

        self._update_counts(message_id, outcome.outcome, delivery.status)

    def on_opt_out(self, event: GatewayEvent) -> None:
        phone: str = event.data
        count = self.storage.blacklist_contact_by_phone(phone)
        if not count:
            logger.info(f"Opt-out from unknown number {phone}")

    @staticmethod
    def _message_id(outcome: DeliveryOutcome) -> Optional[int]:
        if outcome.correlation_id is None:
            return None
        try:
            return int(outcome.correlation_id)
        except ValueError:
            return None

    def _find_delivery(self, message_id: int, outcome: DeliveryOutcome) -> Optional[MessageDelivery]:
        open_statuses = _OPEN_STATUSES[outcome.outcome]
        for delivery in self.storage.get_message_deliveries(message_id):
            if delivery.phone == outcome.phone and delivery.status in open_statuses:
                return delivery
        return None

    def _update_counts(
        self,
        message_id: int,
        outcome: OutcomeStatus,
        previous: DeliveryStatus
    ) -> None:
        """
        Apply one delivery transition to the campaign counters.

        ``sent_count`` counts deliveries currently sent or delivered, so a
        carrier failure for a message already counted as sent moves it from
        sent to failed instead of counting it twice.
        """
        message = self.storage.get_message(message_id)
        if message is None:
            return

        sent = message.sent_count
        delivered = message.delivered_count
        failed = message.failed_count

        if outcome == OutcomeStatus.SENT:
            sent += 1
        elif outcome == OutcomeStatus.DELIVERED:
            delivered += 1
            if previous == DeliveryStatus.PENDING:
                sent += 1
        else:
            failed += 1
            if previous == DeliveryStatus.SENT:
                sent = max(sent - 1, 0)

        fields: dict = {
            "sent_count": sent,
            "delivered_count": delivered,
            "failed_count": failed,
        }
        complete = sent + failed >= message.total_recipients
        if message.status in (MessageStatus.SENDING, MessageStatus.COMPLETED):
            fields["status"] = MessageStatus.COMPLETED if complete else MessageStatus.SENDING
            if complete and message.completed_at is None:
                fields["completed_at"] = datetime.now()

        self.storage.update_message(message_id, **fields)
