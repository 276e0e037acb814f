"""
Exceptions for the bulksms gateway.

Every failure is scoped to one unit of work (a command, a message, a
scheduled job) and carries the AT command and modem response that caused it.
"""

from typing import Optional


class SMSGatewayError(Exception):
    """
    Base exception for SMS gateway errors.

    All bulksms exceptions inherit from this class.
    """

    def __init__(
        self,
        message: str,
        command: Optional[str] = None,
        response: Optional[list[str]] = None
    ) -> None:
        """
        Initialize exception with context.

        Args:
            message: Error description
            command: AT command that caused the error (if applicable)
            response: Modem response (if applicable)
        """
        self.command = command
        self.response = response
        super().__init__(message)

    def __str__(self) -> str:
        """Format error message with context."""
        parts = [super().__str__()]

        if self.command:
            parts.append(f"Command: {self.command}")

        if self.response:
            parts.append(f"Response: {self.response}")

        return " | ".join(parts)


class ConfigurationError(SMSGatewayError):
    """Raised when gateway configuration is missing or invalid."""
    pass


class TransportError(SMSGatewayError):
    """
    Raised when the serial link fails (open, write, read or close).

    Fatal to the connection: the gateway flips to disconnected and does not
    retry on its own.
    """
    pass


class DeviceDisconnectedError(TransportError):
    """
    Raised when the device disappears during operation.

    Requires closing and reopening the connection.
    """
    pass


class ProtocolError(SMSGatewayError):
    """
    Raised when the modem answers a command with ERROR.

    Covers plain ``ERROR`` as well as ``+CMS ERROR`` and ``+CME ERROR``.
    The connection stays up.
    """
    pass


class SIMError(ProtocolError):
    """
    Raised when the SIM cannot be made ready.

    This indicates:
    - SIM not inserted
    - PIN rejected
    - PUK required
    """
    pass


class CommandTimeout(SMSGatewayError):
    """
    Raised when a command gets no terminal response in time.

    Repeated timeouts usually mean the link is dead; the caller decides
    whether to reconnect.
    """
    pass


class ATParseError(SMSGatewayError):
    """
    Raised when an AT command response cannot be parsed.

    This indicates:
    - Unexpected response format
    - Missing expected fields
    """
    pass


class ModemInitError(SMSGatewayError):
    """Raised when a step of the modem initialization sequence fails."""

    def __init__(
        self,
        message: str,
        step: Optional[str] = None,
        command: Optional[str] = None,
        response: Optional[list[str]] = None
    ) -> None:
        self.step = step
        super().__init__(message, command=command, response=response)


class SendFailure(SMSGatewayError):
    """
    Raised when the two-step send sequence for one SMS fails.

    Reported as a failed outcome; the queue moves on to the next message.
    """
    pass


class SchedulerExecutionError(SMSGatewayError):
    """Raised when a due job cannot expand or submit its recipients."""

    def __init__(self, message: str, message_id: Optional[int] = None) -> None:
        self.message_id = message_id
        super().__init__(message)
