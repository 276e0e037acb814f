"""
SMS manager.

Handles text-mode SMS operations: mode setup, sending, reading stored
messages and status reports, and freeing storage.
"""

import logging
from typing import TYPE_CHECKING, Optional

from ..types import DeliveryReport, InboundMessage
from ..parsers.sms import SMSParser
from ..core.protocol import CTRL_Z, ESC
from ..exceptions import ATParseError, CommandTimeout, ProtocolError, SendFailure

if TYPE_CHECKING:
    from ..core import ModemCore

logger = logging.getLogger(__name__)

# New-message indications: store SMS and status reports, notify with
# +CMTI / +CDSI
NOTIFICATION_MODE = "2,1,0,2,0"

# SMS-SUBMIT with status report requested, relative validity 24h,
# default PID and DCS
SUBMIT_PARAMETERS = "49,167,0,0"


class SMSManager:
    """
    Manages SMS messaging operations.

    Features:
    - Text mode setup and new-message notifications
    - Two-step send (address, then body terminated by Ctrl+Z)
    - Read stored messages and delivery status reports
    - Delete messages once processed
    """

    def __init__(self, modem_core: "ModemCore", send_timeout: float = 30.0) -> None:
        """
        Initialize SMS manager.

        Args:
            modem_core: ModemCore instance for AT command execution
            send_timeout: Seconds to wait for the network to accept a body
        """
        self.modem = modem_core
        self.send_timeout = send_timeout
        self._sms_parser = SMSParser()

        logger.debug("Initialized SMSManager")

    def set_text_mode(self) -> None:
        """Switch the modem to text-mode SMS (AT+CMGF=1)."""
        logger.info("Setting message format to text mode")
        self.modem.send_at("AT+CMGF=1")

    def set_notification_mode(self) -> None:
        """Have the modem store new messages and report them as URCs."""
        logger.info("Setting new message indications")
        self.modem.send_at(f"AT+CNMI={NOTIFICATION_MODE}")

    def request_delivery_reports(self) -> None:
        """Ask the network for a status report on every sent message."""
        logger.info("Requesting delivery status reports")
        self.modem.send_at(f"AT+CSMP={SUBMIT_PARAMETERS}")

    def send_sms(self, number: str, message: str) -> Optional[int]:
        """
        Send a single-part text SMS.

        Both steps run while holding the command line, so no other command
        can slip in between the prompt and the body.

        Args:
            number: Recipient phone number
            message: Message text (at most 160 characters)

        Returns:
            Message reference assigned by the modem, or None if the modem
            accepted the message without reporting one

        Raises:
            SendFailure: If the modem rejects or never answers either step
            TransportError: If the serial link fails

        Example:

        .. code-block:: python

            ref = modem.sms.send_sms("+1234567890", "Hello!")
        """
        logger.info(f"Sending SMS to {number}")
        body = message.replace(CTRL_Z, "").replace(ESC, "")
        cmd = f'AT+CMGS="{number}"'

        with self.modem.protocol.exclusive():
            try:
                self.modem.send_at(cmd, expect_prompt=True)
            except (ProtocolError, CommandTimeout) as e:
                raise SendFailure(
                    f"Modem did not accept recipient: {e}",
                    command=cmd,
                    response=e.response
                ) from e

            try:
                response = self.modem.send_at(
                    body + CTRL_Z,
                    raw=True,
                    resp_prefix="+CMGS",
                    timeout=self.send_timeout
                )
            except CommandTimeout as e:
                self.modem.protocol.abort_prompt()
                raise SendFailure(
                    "Timed out waiting for the network to accept the message",
                    command=cmd,
                    response=e.response
                ) from e
            except ProtocolError as e:
                raise SendFailure(
                    f"SMS send failed: {e.response[-1] if e.response else 'ERROR'}",
                    command=cmd,
                    response=e.response
                ) from e

        try:
            ref = self._sms_parser.parse_cmgs(response)
        except ValueError as e:
            logger.warning(f"SMS sent but could not parse reference: {e}")
            return None

        logger.info(f"SMS sent successfully, reference: {ref}")
        return ref

    def _read_record(self, index: int, body_follows: bool = False) -> list[str]:
        cmd = f"AT+CMGR={index}"
        response = self.modem.send_at(cmd, strip_ok=True, body_follows=body_follows)
        if not response:
            raise ATParseError(f"No message at index {index}", command=cmd, response=response)
        return response

    def read_inbound(self, index: int) -> InboundMessage:
        """
        Read a received SMS by storage index.

        Args:
            index: Message index in storage

        Returns:
            InboundMessage

        Raises:
            ATParseError: If the record is missing or malformed
        """
        logger.info(f"Reading SMS at index {index}")
        response = self._read_record(index, body_follows=True)
        try:
            message = self._sms_parser.parse_cmgr_text(response, index)
        except ValueError as e:
            raise ATParseError(
                f"Failed to parse SMS: {e}",
                command=f"AT+CMGR={index}",
                response=response
            ) from e

        logger.info(f"Read SMS from {message.sender}")
        return message

    def read_status_report(self, index: int) -> DeliveryReport:
        """
        Read a delivery status report by storage index.

        Args:
            index: Report index in storage

        Returns:
            DeliveryReport

        Raises:
            ATParseError: If the record is missing or malformed
        """
        logger.info(f"Reading status report at index {index}")
        response = self._read_record(index)
        try:
            report = self._sms_parser.parse_status_report(response, index)
        except ValueError as e:
            raise ATParseError(
                f"Failed to parse status report: {e}",
                command=f"AT+CMGR={index}",
                response=response
            ) from e

        logger.debug(f"Status report: {report}")
        return report

    def delete_sms(self, index: int) -> None:
        """
        Delete a stored message or report.

        Args:
            index: Index in storage
        """
        logger.info(f"Deleting SMS at index {index}")
        self.modem.send_at(f"AT+CMGD={index}")
