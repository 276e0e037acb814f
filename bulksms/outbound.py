"""
Outbound message queue.

FIFO of messages drained one at a time through the modem, with a fixed
delay after every send.
"""

import logging
import threading
from collections import deque
from typing import Callable, Deque, Optional

from .events import EventChannel, EventKind
from .types import DeliveryOutcome, OutcomeStatus, QueuedMessage
from .exceptions import SMSGatewayError

logger = logging.getLogger(__name__)

# Send primitive: returns the modem's message reference (or None)
SendFunction = Callable[[QueuedMessage], Optional[int]]


class OutboundQueue:
    """
    Rate-limited, single-flight outbound queue.

    ``submit`` may be called from any thread. At most one drain worker
    exists at a time; the ``_processing`` flag, read and written only under
    ``_lock``, is what guarantees it. A failed message is reported and
    dropped, never re-queued.

    Draining only happens while ``is_ready()`` is true. Messages submitted
    while the gateway is not ready stay queued until ``resume()``.
    """

    def __init__(
        self,
        send: SendFunction,
        events: EventChannel,
        rate_limit_delay: float = 1.0,
        is_ready: Optional[Callable[[], bool]] = None
    ) -> None:
        """
        Initialize outbound queue.

        Args:
            send: Send primitive for one message
            events: Channel receiving MESSAGE_PROCESSED events
            rate_limit_delay: Seconds to wait after every send
            is_ready: Whether sending is currently possible
        """
        self._send = send
        self.events = events
        self.rate_limit_delay = rate_limit_delay
        self._is_ready = is_ready or (lambda: True)

        self._messages: Deque[QueuedMessage] = deque()
        self._lock = threading.Lock()
        self._processing = False
        self._idle = threading.Condition(self._lock)
        self._stop_event = threading.Event()
        self._worker: Optional[threading.Thread] = None

    def submit(self, message: QueuedMessage) -> None:
        """
        Append a message and start draining if no drain is active.

        Args:
            message: Message to send
        """
        with self._lock:
            self._messages.append(message)
            depth = len(self._messages)
            logger.debug(f"Queued message for {message.phone} (depth={depth})")
            self._start_drain_locked()

    def resume(self) -> None:
        """Start draining whatever is queued, if not already draining."""
        with self._lock:
            self._stop_event.clear()
            self._start_drain_locked()

    def _start_drain_locked(self) -> None:
        if self._processing or not self._messages or not self._is_ready():
            return
        self._processing = True
        self._worker = threading.Thread(
            target=self._drain,
            daemon=True,
            name="OutboundDrainThread"
        )
        self._worker.start()

    def _drain(self) -> None:
        logger.debug("Drain started")
        while True:
            with self._lock:
                if not self._messages or self._stop_event.is_set() or not self._is_ready():
                    self._processing = False
                    self._idle.notify_all()
                    logger.debug(f"Drain finished ({len(self._messages)} left)")
                    return
                message = self._messages.popleft()

            self._process(message)

            # Hard ceiling on modem/carrier throughput
            self._stop_event.wait(self.rate_limit_delay)

    def _process(self, message: QueuedMessage) -> None:
        try:
            ref = self._send(message)
        except Exception as e:
            logger.error(
                f"Failed to send message to {message.phone}: {e}",
                exc_info=not isinstance(e, SMSGatewayError)
            )
            outcome = DeliveryOutcome(
                correlation_id=message.correlation_id,
                phone=message.phone,
                outcome=OutcomeStatus.FAILED,
                error=str(e)
            )
        else:
            outcome = DeliveryOutcome(
                correlation_id=message.correlation_id,
                phone=message.phone,
                outcome=OutcomeStatus.SENT,
                reference=ref
            )

        self.events.publish(EventKind.MESSAGE_PROCESSED, outcome)

    def stop(self, timeout: float = 5.0) -> None:
        """
        Stop draining after the message in flight; queued messages stay.

        Args:
            timeout: Seconds to wait for the drain worker to exit
        """
        self._stop_event.set()
        worker = self._worker
        if worker and worker is not threading.current_thread():
            worker.join(timeout=timeout)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until no drain is active.

        Returns:
            True if idle, False on timeout
        """
        with self._lock:
            return self._idle.wait_for(lambda: not self._processing, timeout=timeout)

    @property
    def is_draining(self) -> bool:
        with self._lock:
            return self._processing

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)
