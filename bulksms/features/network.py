"""
Network manager.

Handles signal strength, operator and registration queries.
"""

import logging
from typing import TYPE_CHECKING

from ..types import RegistrationStatus
from ..parsers.network import (
    SignalStrengthParser,
    OperatorNameParser,
    RegistrationStatusParser
)

if TYPE_CHECKING:
    from ..core import ModemCore

logger = logging.getLogger(__name__)


class NetworkManager:
    """
    Manages network queries.

    Signal and operator parsing never fail: unrecognized replies degrade to
    0 and "Unknown". Command failures (ERROR, timeout) still raise.
    """

    def __init__(self, modem_core: "ModemCore") -> None:
        """
        Initialize network manager.

        Args:
            modem_core: ModemCore instance for AT command execution
        """
        self.modem = modem_core

        # Parsers
        self._signal_parser = SignalStrengthParser()
        self._operator_parser = OperatorNameParser()
        self._reg_status_parser = RegistrationStatusParser()

        logger.debug("Initialized NetworkManager")

    def get_signal_strength(self) -> int:
        """
        Get signal strength.

        Returns:
            RSSI on the 0..31 scale (0 = no signal)

        Example:

        .. code-block:: python

            rssi = modem.network.get_signal_strength()
        """
        logger.info("Getting signal strength")
        response = self.modem.send_at("AT+CSQ", strip_ok=True)
        rssi = self._signal_parser.parse(response)
        logger.debug(f"Signal strength: {rssi}")
        return rssi

    def get_operator_name(self) -> str:
        """
        Get current network operator name.

        Returns:
            Operator name, or "Unknown" if not registered
        """
        logger.info("Getting current operator")
        response = self.modem.send_at("AT+COPS?", strip_ok=True)
        operator = self._operator_parser.parse(response)
        logger.debug(f"Operator: {operator}")
        return operator

    def get_registration_status(self) -> RegistrationStatus:
        """
        Get network registration status.

        Returns:
            RegistrationStatus

        Raises:
            ATParseError: If the reply cannot be parsed
        """
        logger.info("Getting registration status")
        response = self.modem.send_at("AT+CREG?", strip_ok=True, remove_cmd_prefix=True)
        status = self._reg_status_parser.parse(response)
        logger.debug(f"Registration status: {status}")
        return status
