"""
SMS modem engine.

Builds the gateway's view of the modem on top of the core: the
initialization sequence, the send primitive and handling of unsolicited
delivery reports and inbound messages.
"""

import logging
import threading
from collections import OrderedDict
from typing import Callable, Optional

from .core import ModemCore, Transport
from .events import EventChannel, EventKind
from .features import DeviceManager, NetworkManager, SMSManager
from .parsers.sms import SMSParser, is_opt_out
from .types import DeliveryOutcome, ModemIdentity, QueuedMessage
from .exceptions import ModemInitError, SMSGatewayError

logger = logging.getLogger(__name__)


class SMSModem:
    """
    AT protocol engine for a single SMS modem.

    Provides:

    - device: Responsiveness, SIM state, unlock and identity
    - network: Signal strength, operator, registration
    - sms: Text-mode send, read and delete

    Unsolicited ``+CDSI`` (status report stored) and ``+CMTI`` (message
    stored) lines are read back on the URC dispatcher thread and published
    on the event channel as ``MESSAGE_PROCESSED`` and ``OPT_OUT`` events.
    Every other unsolicited line is published as ``RAW``.

    Example usage:

    .. code-block:: python

        events = EventChannel()
        modem = SMSModem(SerialTransport("/dev/ttyUSB0"), events)
        modem.start()
        identity = modem.initialize(sim_pin="1234")
        ref = modem.send_message(QueuedMessage("+15551234567", "Hello"))
        modem.close()
    """

    def __init__(
        self,
        transport: Transport,
        events: EventChannel,
        timeout: float = 10.0,
        send_timeout: float = 30.0,
        log_urcs: bool = False,
        max_tracked_references: int = 1000,
        on_disconnect: Optional[Callable[[Exception], None]] = None
    ) -> None:
        """
        Initialize SMSModem.

        Args:
            transport: Open transport to the modem
            events: Channel that receives delivery and opt-out events
            timeout: AT command timeout in seconds
            send_timeout: Timeout for the network to accept a message body
            log_urcs: Log URCs at INFO level instead of DEBUG
            max_tracked_references: Sent messages remembered for matching
                                    delivery reports
            on_disconnect: Called once if the transport fails
        """
        self.events = events
        self._core = ModemCore(
            transport=transport,
            timeout=timeout,
            log_urcs=log_urcs,
            on_disconnect=on_disconnect
        )

        self.device = DeviceManager(self._core)
        self.network = NetworkManager(self._core)
        self.sms = SMSManager(self._core, send_timeout=send_timeout)

        self._sms_parser = SMSParser()

        # Message reference -> message, for matching status reports
        self._sent: "OrderedDict[int, QueuedMessage]" = OrderedDict()
        self._sent_lock = threading.Lock()
        self._max_tracked = max_tracked_references

        self._core.register_urc_callback("+CDSI", self._on_status_report_stored)
        self._core.register_urc_callback("+CMTI", self._on_message_stored)
        self._core.urc_handler.set_fallback(self._on_unclassified)

        logger.info("Initialized SMSModem")

    def start(self) -> None:
        """Start the reader and URC dispatcher threads."""
        self._core.start()

    def close(self) -> None:
        """Stop the threads and close the transport."""
        self._core.close()

    def initialize(self, sim_pin: Optional[str] = None) -> ModemIdentity:
        """
        Run the connect-time initialization sequence.

        Each step must succeed before the next runs: responsiveness, text
        mode, notification mode, status report request, SIM unlock (when a
        PIN is given), signal strength, registration, SIM identity.

        Args:
            sim_pin: SIM unlock code, if configured

        Returns:
            ModemIdentity gathered along the way

        Raises:
            ModemInitError: Naming the step that failed
        """
        results: dict = {}

        steps: list[tuple[str, Callable[[], object]]] = [
            ("responsiveness", self.device.ping),
            ("text mode", self.sms.set_text_mode),
            ("notification mode", self.sms.set_notification_mode),
            ("status reports", self.sms.request_delivery_reports),
        ]
        if sim_pin:
            steps.append(("SIM unlock", lambda: self.device.unlock_sim(sim_pin)))
        steps += [
            ("signal strength", self.network.get_signal_strength),
            ("network registration", self.network.get_registration_status),
            ("SIM identity", self.device.get_sim_identity),
        ]

        for name, step in steps:
            logger.info(f"Initialization step: {name}")
            try:
                results[name] = step()
            except SMSGatewayError as e:
                logger.error(f"Modem initialization failed at {name}: {e}")
                raise ModemInitError(
                    f"Modem initialization failed at step '{name}': {e}",
                    step=name,
                    command=e.command,
                    response=e.response
                ) from e

        identity = ModemIdentity(
            signal_strength=results["signal strength"],
            registration=results["network registration"],
            sim_identity=results["SIM identity"]
        )

        if not identity.registration.is_registered:
            logger.warning(f"Modem not registered to a network (stat={identity.registration.stat})")

        self.events.publish(EventKind.SIGNAL_STRENGTH, identity.signal_strength)
        self.events.publish(EventKind.SIM_INFO, identity.sim_identity)
        logger.info(f"Modem initialized: {identity}")
        return identity

    def send_message(self, message: QueuedMessage) -> Optional[int]:
        """
        Send one queued message and remember its reference.

        Returns:
            Message reference, or None if the modem reported none

        Raises:
            SendFailure: If the send sequence fails
            TransportError: If the serial link fails
        """
        ref = self.sms.send_sms(message.phone, message.body)
        if ref is not None:
            with self._sent_lock:
                self._sent[ref] = message
                self._sent.move_to_end(ref)
                while len(self._sent) > self._max_tracked:
                    self._sent.popitem(last=False)
        return ref

    def _on_status_report_stored(self, line: str) -> None:
        _, index = self._sms_parser.parse_stored_indication(line)
        report = self.sms.read_status_report(index)
        self._discard(index)

        with self._sent_lock:
            original = self._sent.get(report.reference)

        outcome = DeliveryOutcome(
            correlation_id=original.correlation_id if original else None,
            phone=original.phone if original else report.recipient,
            outcome=report.outcome,
            error=f"status report code {report.status_code}" if report.status_code >= 0x40 else None,
            reference=report.reference
        )
        if original is None:
            logger.warning(f"Status report for unknown reference {report.reference}")

        logger.info(f"Delivery report for {outcome.phone}: {outcome.outcome.value}")
        self.events.publish(EventKind.MESSAGE_PROCESSED, outcome)

    def _on_message_stored(self, line: str) -> None:
        _, index = self._sms_parser.parse_stored_indication(line)
        message = self.sms.read_inbound(index)
        self._discard(index)

        if is_opt_out(message.body):
            logger.info(f"Opt-out received from {message.sender}")
            self.events.publish(EventKind.OPT_OUT, message.sender)
        else:
            logger.debug(f"Inbound message from {message.sender} is not an opt-out")

    def _on_unclassified(self, line: str) -> None:
        self.events.publish(EventKind.RAW, line)

    def _discard(self, index: int) -> None:
        try:
            self.sms.delete_sms(index)
        except SMSGatewayError as e:
            logger.warning(f"Could not delete stored record {index}: {e}")

    def send_raw_at(self, cmd: str, timeout: Optional[float] = None) -> list[str]:
        """
        Send a raw AT command.

        Args:
            cmd: AT command (e.g., "AT+CSQ")
            timeout: Command timeout in seconds (uses default if None)

        Returns:
            List of response lines
        """
        return self._core.send_at(cmd, timeout=timeout)

    @property
    def is_running(self) -> bool:
        """Check if the reader thread is running."""
        return self._core.is_running()

    @property
    def is_disconnected(self) -> bool:
        """Check if the device was disconnected."""
        return self._core.is_disconnected()

    def __repr__(self) -> str:
        status = "running" if self.is_running else "stopped"
        return f"<SMSModem status={status}>"
