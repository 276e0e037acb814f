"""
Core modem class coordinating transport, protocol, and URC handling.

This is the foundation that feature managers build upon.
"""

import logging
import threading
import time
from typing import Callable, Optional

from .transport import Transport
from .protocol import ATProtocol
from .urc import URCHandler, URCCallback
from ..exceptions import TransportError

logger = logging.getLogger(__name__)

DisconnectCallback = Callable[[Exception], None]


class ModemCore:
    """
    Core modem functionality.

    Coordinates:
    - Transport layer (serial communication)
    - Protocol layer (AT command execution)
    - URC handling (unsolicited result codes)
    - Reader thread (continuous modem monitoring)

    The reader thread is the only consumer of the transport's input.
    """

    def __init__(
        self,
        transport: Transport,
        timeout: float = 10.0,
        log_urcs: bool = False,
        max_urc_queue_size: int = 1000,
        on_disconnect: Optional[DisconnectCallback] = None
    ) -> None:
        """
        Initialize modem core.

        Args:
            transport: Transport instance for communication
            timeout: Default timeout for AT commands
            log_urcs: Whether to log URCs at INFO level
            max_urc_queue_size: Maximum URCs to queue
            on_disconnect: Optional callback for disconnection events
        """
        self.transport = transport
        self.protocol = ATProtocol(transport, default_timeout=timeout)
        self.urc_handler = URCHandler(
            max_queue_size=max_urc_queue_size,
            log_urcs=log_urcs
        )

        # Reader thread management
        self._reader_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._running = False
        self._on_disconnect = on_disconnect

        # Error handling
        self._consecutive_errors = 0
        self._max_consecutive_errors = 5
        self._disconnected = False

        # Bytes of a line whose terminator has not arrived yet
        self._partial = b""

        logger.info("Initialized ModemCore")

    def start(self) -> None:
        """
        Start the reader and URC dispatcher threads.

        The reader thread continuously reads from the transport and routes
        lines to either the protocol (for solicited responses) or URC handler
        (for unsolicited result codes).
        """
        if self._running:
            logger.warning("ModemCore already started")
            return

        self._disconnected = False
        self._consecutive_errors = 0
        self._partial = b""

        try:
            self.transport.reset_input_buffer()
        except TransportError as e:
            logger.warning(f"Could not flush stale input: {e}")

        self.urc_handler.start()

        self._stop_event.clear()
        self._reader_thread = threading.Thread(
            target=self._reader_loop,
            daemon=True,
            name="ModemReaderThread"
        )
        self._running = True
        self._reader_thread.start()
        logger.info("Started modem reader thread")

    def stop(self) -> None:
        """
        Stop the reader and URC dispatcher threads.

        Waits for the threads to terminate gracefully.
        """
        if self._reader_thread is None:
            return

        logger.info("Stopping modem reader thread...")
        self._stop_event.set()

        if self._reader_thread is not threading.current_thread():
            self._reader_thread.join(timeout=1.0)
            if self._reader_thread.is_alive():
                logger.warning("Reader thread did not terminate in time")

        self._reader_thread = None
        self._running = False
        self.urc_handler.stop()
        logger.info("Stopped modem reader thread")

    def close(self) -> None:
        """
        Close the modem connection.

        Stops the threads and closes the transport.
        """
        logger.info("Closing modem connection")
        self.stop()
        try:
            self.transport.close()
        except TransportError as e:
            logger.error(f"Error while closing transport: {e}")
        logger.info("Modem connection closed")

    def _reader_loop(self) -> None:
        """
        Continuously read lines from the modem.

        Classifies each line as either:
        - Solicited response (part of AT command response)
        - URC (unsolicited result code)

        Routes lines accordingly to protocol or URC handler.
        """
        logger.debug("Reader thread started")

        while not self._stop_event.is_set():
            try:
                chunk = self.transport.read_until(b"\r\n")
                self._consecutive_errors = 0

                if not chunk:
                    continue

                self._partial += chunk
                if not self._partial.endswith(b"\r\n"):
                    # Body prompt arrives without terminator
                    if self._partial.strip() == b">":
                        self._partial = b""
                        self._route_line(">")
                    continue

                line = self._partial.decode("utf-8", errors="ignore").strip()
                self._partial = b""

                if not line:
                    continue

                logger.debug(f"Reader received: {line}")
                self._route_line(line)

            except TransportError as e:
                logger.error(f"Transport failed, stopping reader thread: {e}")
                self._running = False
                self._disconnected = True

                if self._on_disconnect:
                    try:
                        self._on_disconnect(e)
                    except Exception as cb_error:
                        logger.error(f"Disconnect callback failed: {cb_error}", exc_info=True)

                break
            except Exception as e:
                self._consecutive_errors += 1
                logger.error(f"Error in reader loop ({self._consecutive_errors}/{self._max_consecutive_errors}): {e}")

                if self._consecutive_errors >= self._max_consecutive_errors:
                    logger.error(f"Too many consecutive errors ({self._consecutive_errors}), stopping reader thread")
                    self._running = False
                    break

                # Exponential backoff: 0.1s, 0.2s, 0.4s, 0.8s, 1.6s
                backoff_time = 0.1 * (2 ** (self._consecutive_errors - 1))
                time.sleep(backoff_time)

        logger.debug("Reader thread stopped")

    def _route_line(self, line: str) -> None:
        """
        Route a line to either protocol or URC handler.

        Args:
            line: Line to route
        """
        if self.protocol.is_response_pending() and not self.protocol.is_urc(line):
            self.protocol.append_response_line(line)
        else:
            self.urc_handler.handle_urc(line)

    def register_urc_callback(self, prefix: str, callback: URCCallback) -> None:
        """
        Register a callback for URCs matching a prefix.

        Args:
            prefix: URC prefix to match (e.g., "+CMTI")
            callback: Function to call when URC is received
        """
        self.urc_handler.register_callback(prefix, callback)

    def send_at(
        self,
        cmd: str,
        strip_ok: bool = False,
        remove_cmd_prefix: bool = False,
        timeout: Optional[float] = None,
        **kwargs
    ) -> list[str]:
        """
        Send an AT command.

        This is a convenience wrapper around protocol.send_command().

        Args:
            cmd: AT command (e.g., "AT+CSQ" or "+CSQ")
            strip_ok: Remove "OK" from response
            remove_cmd_prefix: Remove command prefix from first line
            timeout: Command timeout (uses default if None)
            **kwargs: Passed through (raw, expect_prompt, resp_prefix, body_follows)

        Returns:
            List of response lines

        Raises:
            CommandTimeout: If command times out
            ProtocolError: If command returns ERROR
        """
        return self.protocol.send_command(
            cmd=cmd,
            strip_ok=strip_ok,
            remove_cmd_prefix=remove_cmd_prefix,
            timeout=timeout,
            **kwargs
        )

    def is_running(self) -> bool:
        """
        Check if the reader thread is running.

        Returns:
            True if running
        """
        return self._running

    def is_disconnected(self) -> bool:
        """
        Check if the device was disconnected during operation.

        Returns:
            True if device was disconnected, False otherwise
        """
        return self._disconnected
