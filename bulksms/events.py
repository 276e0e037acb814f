"""
Gateway events.

A single tagged-event channel replaces per-event listener registration:
producers publish ``GatewayEvent`` objects, and one consumer reads them,
either directly with ``get()`` or through an ``EventDispatcher`` whose
handlers are fixed when it is built.
"""

import logging
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Optional

logger = logging.getLogger(__name__)


class EventKind(Enum):
    """Kinds of events published on the channel."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    MESSAGE_PROCESSED = "message_processed"  # data: DeliveryOutcome
    OPT_OUT = "opt_out"                      # data: phone number
    RAW = "raw"                              # data: unclassified modem line
    SIGNAL_STRENGTH = "signal_strength"      # data: int 0..31
    SIM_INFO = "sim_info"                    # data: IMSI
    JOB_EXECUTED = "job_executed"            # data: {"message_id", "recipient_count"}
    JOB_FAILED = "job_failed"                # data: {"message_id", "error"}


@dataclass(frozen=True)
class GatewayEvent:
    """One event with its payload."""
    kind: EventKind
    data: Any = None


EventHandler = Callable[[GatewayEvent], None]


class EventChannel:
    """Thread-safe FIFO of gateway events."""

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: "queue.Queue[Optional[GatewayEvent]]" = queue.Queue(maxsize=maxsize)

    def publish(self, kind: EventKind, data: Any = None) -> None:
        """
        Publish an event.

        Never blocks the producer: when a bounded channel is full the event
        is dropped and logged.
        """
        event = GatewayEvent(kind, data)
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            logger.error(f"Event channel full, dropping {kind.value} event")
            return
        logger.debug(f"Published {kind.value} event")

    def get(self, timeout: Optional[float] = None) -> Optional[GatewayEvent]:
        """
        Take the next event.

        Args:
            timeout: Seconds to wait; None waits forever

        Returns:
            The event, or None if nothing arrived in time
        """
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        """Wake a consumer blocked in get() with a None."""
        self._queue.put(None)

    def __len__(self) -> int:
        return self._queue.qsize()


class EventDispatcher:
    """
    The single consumer of an EventChannel.

    Routes each event to the handler registered for its kind. Events without
    a handler are dropped. A failing handler is logged and does not stop
    the dispatcher.

    Example:

    .. code-block:: python

        dispatcher = EventDispatcher(gateway.events, {
            EventKind.OPT_OUT: lambda event: print(f"Opt-out: {event.data}"),
        })
        dispatcher.start()
    """

    def __init__(
        self,
        channel: EventChannel,
        handlers: Mapping[EventKind, EventHandler]
    ) -> None:
        self.channel = channel
        self._handlers = dict(handlers)
        self._thread: Optional[threading.Thread] = None
        self._stopping = threading.Event()

    def start(self) -> None:
        """Start dispatching on a daemon thread."""
        if self._thread and self._thread.is_alive():
            return
        self._stopping.clear()
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name="EventDispatcherThread"
        )
        self._thread.start()
        logger.info("Started event dispatcher")

    def stop(self, timeout: float = 1.0) -> None:
        """Stop dispatching; events already queued stay in the channel."""
        if not self._thread:
            return
        self._stopping.set()
        self.channel.close()
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            logger.warning("Event dispatcher did not terminate in time")
        self._thread = None
        logger.info("Stopped event dispatcher")

    def dispatch(self, event: GatewayEvent) -> None:
        """Route one event to its handler."""
        handler = self._handlers.get(event.kind)
        if handler is None:
            return
        try:
            handler(event)
        except Exception as e:
            logger.error(f"Handler for {event.kind.value} failed: {e}", exc_info=True)

    def _run(self) -> None:
        while not self._stopping.is_set():
            event = self.channel.get()
            if event is None:
                continue
            self.dispatch(event)
