"""
Feature managers for modem functionality.

Provides high-level managers for different modem capabilities:
- DeviceManager: Responsiveness, SIM state, unlock and identity
- NetworkManager: Signal strength, operator, registration
- SMSManager: Text-mode SMS send, read and delete
"""

from .device_info import DeviceManager
from .network import NetworkManager
from .sms import SMSManager

__all__ = [
    "DeviceManager",
    "NetworkManager",
    "SMSManager",
]
