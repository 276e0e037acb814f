"""
SMS gateway facade.

The single object the rest of an application talks to: connection
lifecycle, outbound queue and status, with every outcome published on one
event channel.
"""

import logging
import threading
from typing import Optional

from .core import SerialTransport, Transport
from .events import EventChannel, EventKind
from .modem import SMSModem
from .outbound import OutboundQueue
from .parsers.network import UNKNOWN_OPERATOR
from .types import ConnectionState, GatewayConfig, GatewayStatus, QueuedMessage
from .exceptions import SMSGatewayError, SendFailure, TransportError

logger = logging.getLogger(__name__)


class SMSGateway:
    """
    Bulk SMS gateway over one USB modem.

    Events published on ``gateway.events``: ``CONNECTED``,
    ``DISCONNECTED``, ``MESSAGE_PROCESSED`` (a DeliveryOutcome, from the
    queue and from carrier status reports) and ``OPT_OUT`` (the sender's
    phone number), plus the informational kinds listed in EventKind.

    Messages queued while disconnected are kept and sent once ``connect()``
    succeeds.

    Example usage:

    .. code-block:: python

        gateway = SMSGateway(GatewayConfig(port="/dev/ttyUSB0"))
        if gateway.connect():
            gateway.queue_message(QueuedMessage("+15551234567", "Hello", "42"))
            print(gateway.get_status())

        while (event := gateway.events.get(timeout=5)) is not None:
            print(event.kind, event.data)
    """

    def __init__(
        self,
        config: GatewayConfig,
        transport: Optional[Transport] = None,
        rate_limit_delay: float = 1.0,
        command_timeout: float = 10.0,
        send_timeout: float = 30.0,
        events: Optional[EventChannel] = None,
        log_urcs: bool = False
    ) -> None:
        """
        Initialize the gateway. Nothing is opened until connect().

        Args:
            config: Serial link settings
            transport: Custom transport instance (for testing). Used instead
                       of opening ``config.port``.
            rate_limit_delay: Seconds between consecutive sends
            command_timeout: AT command timeout in seconds
            send_timeout: Timeout for the network to accept a message body
            events: Channel to publish on (a new one if omitted)
            log_urcs: Log URCs at INFO level instead of DEBUG
        """
        self.config = config
        self.events = events if events is not None else EventChannel()
        self.command_timeout = command_timeout
        self.send_timeout = send_timeout
        self.log_urcs = log_urcs

        self._transport = transport
        self._modem: Optional[SMSModem] = None

        self._state = ConnectionState.DISCONNECTED
        self._state_lock = threading.Lock()
        self._connect_lock = threading.Lock()

        self._last_signal = 0
        self._last_provider = UNKNOWN_OPERATOR

        self.queue = OutboundQueue(
            send=self._send,
            events=self.events,
            rate_limit_delay=rate_limit_delay,
            is_ready=self.is_connected
        )

        logger.info(f"Initialized SMSGateway for {config.port}")

    @property
    def state(self) -> ConnectionState:
        with self._state_lock:
            return self._state

    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def modem(self) -> Optional[SMSModem]:
        """The modem engine while connected, else None."""
        return self._modem

    def _set_state(self, new_state: ConnectionState) -> None:
        with self._state_lock:
            old_state = self._state
            self._state = new_state

        if old_state == new_state:
            return

        logger.info(f"Connection state: {old_state.value} -> {new_state.value}")
        if new_state == ConnectionState.CONNECTED:
            self.events.publish(EventKind.CONNECTED)
        elif old_state == ConnectionState.CONNECTED:
            self.events.publish(EventKind.DISCONNECTED)

    def connect(self) -> bool:
        """
        Open the serial link and initialize the modem.

        Never raises: failures are logged and leave the gateway
        disconnected.

        Returns:
            True if the gateway is connected
        """
        with self._connect_lock:
            if self.is_connected():
                return True

            self._set_state(ConnectionState.CONNECTING)

            try:
                transport = self._transport or SerialTransport(
                    port=self.config.port,
                    baudrate=self.config.baudrate
                )
            except TransportError as e:
                logger.error(f"Cannot open modem port: {e}")
                self._set_state(ConnectionState.DISCONNECTED)
                return False

            modem = SMSModem(
                transport=transport,
                events=self.events,
                timeout=self.command_timeout,
                send_timeout=self.send_timeout,
                log_urcs=self.log_urcs,
                on_disconnect=self._on_transport_lost
            )

            try:
                modem.start()
                identity = modem.initialize(sim_pin=self.config.sim_pin)
            except SMSGatewayError as e:
                logger.error(f"Modem initialization failed: {e}")
                modem.close()
                self._set_state(ConnectionState.DISCONNECTED)
                return False

            self._modem = modem
            self._last_signal = identity.signal_strength
            self._set_state(ConnectionState.CONNECTED)

        self.queue.resume()
        return True

    def disconnect(self) -> None:
        """
        Stop sending and close the serial link.

        Messages still queued are kept for the next connect().
        """
        with self._connect_lock:
            self.queue.stop()
            modem, self._modem = self._modem, None
            if modem is not None:
                modem.close()
            self._set_state(ConnectionState.DISCONNECTED)

    close = disconnect

    def _on_transport_lost(self, error: Exception) -> None:
        if not self.is_connected():
            return
        logger.error(f"Lost connection to modem: {error}")
        self._set_state(ConnectionState.DISCONNECTED)
        modem = self._modem
        if modem is not None:
            modem.close()

    def _send(self, message: QueuedMessage) -> Optional[int]:
        modem = self._modem
        if modem is None or not self.is_connected():
            raise SendFailure("Gateway not connected")

        try:
            return modem.send_message(message)
        except TransportError as e:
            self._on_transport_lost(e)
            raise SendFailure(f"Serial link failed while sending: {e}") from e

    def queue_message(self, message: QueuedMessage) -> None:
        """
        Queue a message for sending.

        Args:
            message: Message to send; correlation_id is echoed back in its
                     MESSAGE_PROCESSED event
        """
        self.queue.submit(message)

    def get_status(self) -> GatewayStatus:
        """
        Report gateway status.

        While connected, signal strength and operator are queried live.
        A failing query falls back to the last known value instead of
        failing the whole call. While disconnected, signal strength is 0.

        Returns:
            GatewayStatus
        """
        connected = self.is_connected()
        modem = self._modem

        if connected and modem is not None:
            try:
                self._last_signal = modem.network.get_signal_strength()
            except SMSGatewayError as e:
                logger.warning(f"Signal query failed, using last known value: {e}")
            try:
                self._last_provider = modem.network.get_operator_name()
            except SMSGatewayError as e:
                logger.warning(f"Operator query failed, using last known value: {e}")

        return GatewayStatus(
            connected=connected,
            signal_strength=self._last_signal if connected else 0,
            sim_provider=self._last_provider,
            queue_length=len(self.queue)
        )

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, *exc):
        self.disconnect()

    def __repr__(self) -> str:
        return f"<SMSGateway port={self.config.port} state={self.state.value}>"
