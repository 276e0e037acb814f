"""
Device information manager.

Handles device-related operations: responsiveness, SIM state, SIM unlock
and SIM identity.
"""

import logging
from typing import TYPE_CHECKING

from ..types import SIMState
from ..parsers.base import SimpleValueParser
from ..exceptions import ProtocolError, SIMError

if TYPE_CHECKING:
    from ..core import ModemCore

logger = logging.getLogger(__name__)


class DeviceManager:
    """
    Manages device information and status.

    Provides methods for checking the modem answers and preparing the SIM.
    """

    def __init__(self, modem_core: "ModemCore") -> None:
        """
        Initialize device manager.

        Args:
            modem_core: ModemCore instance for AT command execution
        """
        self.modem = modem_core
        self._simple_parser = SimpleValueParser()

        logger.debug("Initialized DeviceManager")

    def ping(self) -> None:
        """
        Check that the modem answers a bare AT.

        Raises:
            CommandTimeout: If the modem is silent
        """
        logger.info("Checking modem responsiveness")
        self.modem.send_at("AT")

    def get_sim_state(self) -> SIMState:
        """
        Get SIM card state.

        Returns:
            SIMState enum value

        Example:

        .. code-block:: python

            if modem.device.get_sim_state() == SIMState.SIM_PIN:
                modem.device.unlock_sim("1234")
        """
        logger.info("Getting SIM state")
        response = self.modem.send_at("AT+CPIN?", strip_ok=True, remove_cmd_prefix=True)
        state_str = self._simple_parser.parse(response)

        try:
            sim_state = SIMState(state_str)
        except ValueError:
            logger.warning(f"Unknown SIM state: {state_str}")
            return SIMState.NOT_INSERTED

        logger.debug(f"SIM state: {sim_state}")
        return sim_state

    def unlock_sim(self, pin: str) -> None:
        """
        Enter the SIM PIN if the SIM is asking for one.

        Args:
            pin: SIM unlock code

        Raises:
            SIMError: If the SIM is missing, PUK-locked or rejects the PIN
        """
        state = self.get_sim_state()
        if state == SIMState.READY:
            logger.info("SIM already unlocked")
            return

        if state != SIMState.SIM_PIN:
            raise SIMError(f"SIM not ready: {state.value}", command="AT+CPIN?")

        logger.info("Entering SIM PIN")
        try:
            self.modem.send_at(f'AT+CPIN="{pin}"')
        except ProtocolError as e:
            raise SIMError("SIM PIN rejected", command="AT+CPIN=<pin>", response=e.response) from e

    def get_sim_identity(self) -> str:
        """
        Get the SIM's IMSI.

        Returns:
            IMSI string

        Example:

        .. code-block:: python

            imsi = modem.device.get_sim_identity()
        """
        logger.info("Getting SIM identity")
        response = self.modem.send_at("AT+CIMI", strip_ok=True)
        imsi = self._simple_parser.parse(response)
        logger.debug(f"SIM identity: {imsi}")
        return imsi
