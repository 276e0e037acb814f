"""
bulksms - Bulk SMS gateway over a USB cellular modem.
"""

from .version import __version__
from .gateway import SMSGateway
from .modem import SMSModem
from .config import load_config
from .core import MockTransport, SerialTransport, Transport
from .events import EventChannel, EventDispatcher, EventKind, GatewayEvent
from .outbound import OutboundQueue
from .scheduler import MessageScheduler, personalize
from .sync import StorageSync
from .storage import (
    Contact,
    Message,
    MessageDelivery,
    MessageStatus,
    DeliveryStatus,
    Storage,
    InMemoryStorage,
)

from .types import (
    GatewayConfig,
    QueuedMessage,
    DeliveryOutcome,
    GatewayStatus,
    OutcomeStatus,
    ConnectionState,
    JobState,
    RegistrationStatus,
    RegistrationState,
    SIMState,
)

from .exceptions import (
    SMSGatewayError,
    ConfigurationError,
    TransportError,
    DeviceDisconnectedError,
    ProtocolError,
    SIMError,
    CommandTimeout,
    ATParseError,
    ModemInitError,
    SendFailure,
    SchedulerExecutionError,
)

__all__ = [
    "__version__",
    "SMSGateway",
    "SMSModem",
    "load_config",
    "MockTransport",
    "SerialTransport",
    "Transport",
    "EventChannel",
    "EventDispatcher",
    "EventKind",
    "GatewayEvent",
    "OutboundQueue",
    "MessageScheduler",
    "personalize",
    "StorageSync",
    "Contact",
    "Message",
    "MessageDelivery",
    "MessageStatus",
    "DeliveryStatus",
    "Storage",
    "InMemoryStorage",
    "GatewayConfig",
    "QueuedMessage",
    "DeliveryOutcome",
    "GatewayStatus",
    "OutcomeStatus",
    "ConnectionState",
    "JobState",
    "RegistrationStatus",
    "RegistrationState",
    "SIMState",
    "SMSGatewayError",
    "ConfigurationError",
    "TransportError",
    "DeviceDisconnectedError",
    "ProtocolError",
    "SIMError",
    "CommandTimeout",
    "ATParseError",
    "ModemInitError",
    "SendFailure",
    "SchedulerExecutionError",
]
