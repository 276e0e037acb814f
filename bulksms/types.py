"""
Data types and structures for bulksms.

Provides type-safe representations of gateway, modem and scheduler data.
"""

import re
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum, Enum
from typing import Optional

from .exceptions import ConfigurationError

# Longest body that fits a single GSM 7-bit text-mode SMS
MAX_BODY_LENGTH = 160

_PHONE_PATTERN = re.compile(r"^\+?\d{3,15}$")


class RegistrationState(IntEnum):
    """Network registration status values."""
    NOT_REGISTERED = 0
    REGISTERED_HOME = 1
    SEARCHING = 2
    DENIED = 3
    UNKNOWN = 4
    REGISTERED_ROAMING = 5


class SIMState(Enum):
    """SIM card states reported by AT+CPIN?."""
    READY = "READY"
    SIM_PIN = "SIM PIN"
    SIM_PUK = "SIM PUK"
    SIM_PIN2 = "SIM PIN2"
    SIM_PUK2 = "SIM PUK2"
    PH_NET_PIN = "PH-NET PIN"
    NOT_INSERTED = "NOT INSERTED"


class ConnectionState(Enum):
    """Gateway connection state, owned by the gateway facade."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class OutcomeStatus(Enum):
    """Fate of one outbound message."""
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"


class JobState(Enum):
    """Lifecycle of a scheduled job."""
    NONE = "none"
    SCHEDULED = "scheduled"
    EXECUTING = "executing"
    EXECUTED = "executed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.EXECUTED, JobState.CANCELLED, JobState.FAILED)


@dataclass(frozen=True)
class GatewayConfig:
    """
    Serial link settings, resolved once at startup.

    Attributes:
        port: Serial port path (e.g., /dev/ttyUSB0)
        baudrate: Baud rate for serial communication
        sim_pin: SIM unlock code, if the SIM is PIN protected
    """
    port: str
    baudrate: int = 115200
    sim_pin: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.port:
            raise ConfigurationError("Serial port must not be empty")
        if self.baudrate <= 0:
            raise ConfigurationError(f"Invalid baud rate: {self.baudrate}")


@dataclass(frozen=True)
class QueuedMessage:
    """One SMS waiting in the outbound queue."""
    phone: str
    body: str
    correlation_id: Optional[str] = None

    def __post_init__(self) -> None:
        if not _PHONE_PATTERN.match(self.phone):
            raise ValueError(f"Invalid phone number: {self.phone!r}")
        if len(self.body) > MAX_BODY_LENGTH:
            raise ValueError(
                f"Message body is {len(self.body)} characters, "
                f"limit is {MAX_BODY_LENGTH}"
            )


@dataclass
class DeliveryOutcome:
    """
    Result of processing one message.

    ``sent`` comes from the outbound queue; ``delivered`` and ``failed`` may
    also arrive later from a carrier status report.
    """
    correlation_id: Optional[str]
    phone: str
    outcome: OutcomeStatus
    error: Optional[str] = None
    reference: Optional[int] = None  # TP-MR assigned by the modem
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class GatewayStatus:
    """Snapshot returned by SMSGateway.get_status()."""
    connected: bool
    signal_strength: int  # 0..31, 0 = no signal
    sim_provider: str
    queue_length: int


@dataclass
class RegistrationStatus:
    """
    Network registration status from AT+CREG?

    Attributes:
        n: Reporting mode (0=disable, 1=enable, 2=enable with location)
        stat: Registration status (see RegistrationState enum)
        lac: Location Area Code (hex string, if available)
        ci: Cell ID (hex string, if available)
    """
    n: int
    stat: int
    lac: Optional[str] = None
    ci: Optional[str] = None

    @property
    def is_registered(self) -> bool:
        """Check if registered to network (home or roaming)."""
        return self.stat in (
            RegistrationState.REGISTERED_HOME,
            RegistrationState.REGISTERED_ROAMING
        )


@dataclass
class ModemIdentity:
    """What the initialization sequence learned about the modem."""
    signal_strength: int
    registration: RegistrationStatus
    sim_identity: str  # IMSI from AT+CIMI


@dataclass
class InboundMessage:
    """Text-mode SMS-DELIVER read from modem storage."""
    index: int
    sender: str
    body: str
    timestamp: Optional[str] = None  # YY/MM/DD,HH:MM:SS+TZ


@dataclass
class DeliveryReport:
    """
    Text-mode SMS-STATUS-REPORT read from modem storage.

    ``status_code`` is TP-ST from 3GPP TS 23.040:
        0x00..0x1F: transaction completed
        0x20..0x3F: temporary error, service centre still trying
        0x40..0x7F: permanent error or gave up
    """
    index: int
    reference: int
    recipient: str
    status_code: int

    @property
    def outcome(self) -> OutcomeStatus:
        if self.status_code < 0x20:
            return OutcomeStatus.DELIVERED
        if self.status_code < 0x40:
            return OutcomeStatus.SENT
        return OutcomeStatus.FAILED


@dataclass
class ScheduledJob:
    """Armed timer for one scheduled message."""
    message_id: int
    fire_at: datetime
    timer: Optional[threading.Timer] = None
