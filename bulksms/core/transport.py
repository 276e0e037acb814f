"""
Transport layer abstraction for modem communication.

Provides abstractions for serial communication with dependency injection support.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional
import serial
from serial import SerialException

from ..exceptions import TransportError, DeviceDisconnectedError

logger = logging.getLogger(__name__)

# Text-mode body prompt; the modem sends it without a line terminator
PROMPT = "> "

# Signature of a MockTransport responder: written command -> response lines
Responder = Callable[[str], list[str]]


class Transport(ABC):
    """Abstract base class for modem transport."""

    @abstractmethod
    def write(self, data: bytes) -> int:
        """
        Write data to the transport.

        Args:
            data: Bytes to write

        Returns:
            Number of bytes written

        Raises:
            TransportError: If write fails
        """
        pass

    @abstractmethod
    def read_until(self, terminator: bytes = b"\r\n", timeout: Optional[float] = None) -> bytes:
        """
        Read from transport until terminator is found.

        May return a partial chunk (without terminator) when the read
        timeout expires first.

        Args:
            terminator: Byte sequence marking end of data
            timeout: Optional timeout in seconds

        Returns:
            Bytes read, empty if nothing arrived

        Raises:
            TransportError: If read fails
        """
        pass

    @abstractmethod
    def reset_input_buffer(self) -> None:
        """Clear the input buffer."""
        pass

    @abstractmethod
    def is_open(self) -> bool:
        """Check if transport is open."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close the transport."""
        pass


class SerialTransport(Transport):
    """Serial port transport implementation."""

    def __init__(
        self,
        port: str,
        baudrate: int = 115200,
        timeout: float = 0.1
    ) -> None:
        """
        Initialize serial transport.

        The read timeout is kept short so the reader thread notices the
        body prompt and shutdown requests quickly.

        Args:
            port: Serial port path (e.g., /dev/ttyUSB0)
            baudrate: Baud rate for serial communication
            timeout: Read timeout in seconds

        Raises:
            TransportError: If serial port cannot be opened
        """
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout

        try:
            self._serial = serial.Serial(
                port=port,
                baudrate=baudrate,
                timeout=timeout
            )
            logger.info(f"Opened serial port {port} at {baudrate} baud")
        except SerialException as e:
            logger.error(f"Failed to open serial port {port}: {e}")
            raise TransportError(f"Failed to open serial port {port}: {e}") from e

    def write(self, data: bytes) -> int:
        """Write data to serial port."""
        try:
            written = self._serial.write(data)
            self._serial.flush()
            logger.debug(f"Wrote {written} bytes: {data}")
            return written
        except SerialException as e:
            logger.error(f"Serial write failed: {e}")
            raise TransportError(f"Serial write failed: {e}") from e

    def read_until(self, terminator: bytes = b"\r\n", timeout: Optional[float] = None) -> bytes:
        """Read from serial port until terminator."""
        try:
            # Temporarily change timeout if specified
            original_timeout = None
            if timeout is not None:
                original_timeout = self._serial.timeout
                self._serial.timeout = timeout

            data = self._serial.read_until(terminator)

            if original_timeout is not None:
                self._serial.timeout = original_timeout

            if data:
                logger.debug(f"Read {len(data)} bytes: {data}")

            return data
        except SerialException as e:
            error_str = str(e).lower()

            # Detect device disconnection
            if any(phrase in error_str for phrase in [
                "device disconnected",
                "device reports readiness to read but returned no data",
                "no such device",
                "device not configured",
                "input/output error"
            ]):
                logger.error(f"Device disconnected: {e}")
                raise DeviceDisconnectedError(
                    f"Serial device disconnected: {e}",
                    response=[str(e)]
                ) from e

            logger.error(f"Serial read failed: {e}")
            raise TransportError(f"Serial read failed: {e}") from e

    def reset_input_buffer(self) -> None:
        """Clear the serial input buffer."""
        try:
            self._serial.reset_input_buffer()
        except SerialException as e:
            logger.error(f"Failed to reset input buffer: {e}")
            raise TransportError(f"Failed to reset input buffer: {e}") from e

    def is_open(self) -> bool:
        """Check if serial port is open."""
        return bool(self._serial and self._serial.is_open)

    def close(self) -> None:
        """Close the serial port."""
        if self._serial and self._serial.is_open:
            try:
                self._serial.close()
            except SerialException as e:
                raise TransportError(f"Failed to close serial port {self.port}: {e}") from e
            logger.info(f"Closed serial port {self.port}")


class MockTransport(Transport):
    """
    Mock transport for testing.

    Simulates a modem without hardware. Each write releases the next queued
    response (or asks ``responder`` for one), so replies never arrive before
    the command that triggers them. Unsolicited lines can be pushed at any
    time with ``inject``.
    """

    def __init__(self, responder: Optional[Responder] = None) -> None:
        """
        Initialize mock transport.

        Args:
            responder: Optional callable mapping each written command
                       (decoded, line terminator removed) to response lines
        """
        self._open = True
        self._responder = responder
        self._input_buffer: list[bytes] = []
        self._response_queue: list[list[str]] = []
        self._lock = threading.Lock()
        self.written: list[str] = []
        logger.info("Initialized MockTransport")

    def add_response(self, lines: list[str]) -> None:
        """
        Queue a response, released by the next write.

        Args:
            lines: List of response lines (e.g., ["+CSQ: 24,99", "OK"]).
                   A ``PROMPT`` entry is sent without terminator.
        """
        with self._lock:
            self._response_queue.append(list(lines))
            logger.debug(f"Added mock response: {lines}")

    def inject(self, lines: list[str]) -> None:
        """Make lines readable immediately, as unsolicited output."""
        with self._lock:
            self._input_buffer.extend(self._encode(line) for line in lines)
            logger.debug(f"Injected mock lines: {lines}")

    @staticmethod
    def _encode(line: str) -> bytes:
        if line == PROMPT:
            return line.encode("utf-8")
        return (line + "\r\n").encode("utf-8")

    def write(self, data: bytes) -> int:
        """Simulate writing data."""
        if not self._open:
            raise DeviceDisconnectedError(
                "MockTransport is closed (simulating device disconnection)",
                response=["MockTransport closed"]
            )

        text = data.decode("utf-8", errors="ignore").rstrip("\r\n")
        logger.debug(f"Mock write: {data}")

        if self._responder is not None:
            lines = self._responder(text)
        else:
            with self._lock:
                lines = self._response_queue.pop(0) if self._response_queue else []

        with self._lock:
            self.written.append(text)
            self._input_buffer.extend(self._encode(line) for line in lines)

        return len(data)

    def read_until(self, terminator: bytes = b"\r\n", timeout: Optional[float] = None) -> bytes:
        """
        Simulate reading from modem.

        Returns buffered output one line at a time.
        """
        if not self._open:
            raise DeviceDisconnectedError(
                "MockTransport is closed (simulating device disconnection)",
                response=["MockTransport closed"]
            )

        with self._lock:
            if self._input_buffer:
                result = self._input_buffer.pop(0)
                logger.debug(f"Mock read: {result}")
                return result

        # Behave like a serial read timeout instead of spinning
        time.sleep(0.005)
        return b""

    def reset_input_buffer(self) -> None:
        """Clear mock input buffer."""
        with self._lock:
            self._input_buffer.clear()

    def is_open(self) -> bool:
        """Check if mock transport is open."""
        return self._open

    def close(self) -> None:
        """Close mock transport."""
        self._open = False
        logger.info("Closed MockTransport")

    def clear_responses(self) -> None:
        """Clear all queued responses (useful for testing)."""
        with self._lock:
            self._response_queue.clear()
            logger.debug("Cleared mock response queue")
