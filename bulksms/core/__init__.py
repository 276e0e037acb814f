"""
Core modem infrastructure.

Provides low-level building blocks for modem communication:
- Transport: Serial communication abstraction
- Protocol: AT command execution
- URC: Unsolicited result code handling
- ModemCore: Coordination of all core components
"""

from .transport import Transport, SerialTransport, MockTransport, PROMPT
from .protocol import ATProtocol, CTRL_Z
from .urc import URCHandler, URCCallback
from .modem import ModemCore

__all__ = [
    "Transport",
    "SerialTransport",
    "MockTransport",
    "PROMPT",
    "ATProtocol",
    "CTRL_Z",
    "URCHandler",
    "URCCallback",
    "ModemCore",
]
