"""
Network-specific response parsers.

Parses responses for signal, operator, and registration commands.
"""

import logging
import re

from .base import ResponseParser
from ..types import RegistrationStatus
from ..exceptions import ATParseError

logger = logging.getLogger(__name__)

UNKNOWN_OPERATOR = "Unknown"

_CSQ_PATTERN = re.compile(r"\+CSQ:\s*(\d+)\s*,")
_QUOTED_PATTERN = re.compile(r'"([^"]*)"')


class SignalStrengthParser(ResponseParser[int]):
    """
    Parser for AT+CSQ (signal quality) response.

    Yields RSSI on the 0..31 scale. Anything else, including the
    99 "not detectable" marker or an unrecognized reply, yields 0.
    """

    def parse(self, response: list[str]) -> int:
        """
        Parse AT+CSQ response.

        Expected format: "+CSQ: 24,99"
        """
        for line in response:
            match = _CSQ_PATTERN.search(line)
            if match:
                rssi = int(match.group(1))
                if 0 <= rssi <= 31:
                    return rssi
                logger.debug(f"Signal strength out of range: {rssi}")
                return 0
        return 0


class OperatorNameParser(ResponseParser[str]):
    """Parser for AT+COPS? (current operator) response."""

    def parse(self, response: list[str]) -> str:
        """
        Parse AT+COPS? response.

        Expected format: '+COPS: 0,0,"AT&T",7'
        Returns "Unknown" when no operator name is present.
        """
        for line in response:
            if not line.startswith("+COPS:"):
                continue
            match = _QUOTED_PATTERN.search(line)
            if match and match.group(1):
                return match.group(1)
        return UNKNOWN_OPERATOR


class RegistrationStatusParser(ResponseParser[RegistrationStatus]):
    """Parser for AT+CREG? (registration status) response."""

    def parse(self, response: list[str]) -> RegistrationStatus:
        """
        Parse AT+CREG? response, with the command prefix removed.

        Expected formats:
            "0,1"               (minimal)
            "2,1,\"1234\",\"5678\"" (with location)
        """
        if not response:
            raise ATParseError(
                "Empty registration status response",
                command="AT+CREG?",
                response=response
            )

        try:
            parts = response[0].split(",")

            n = int(parts[0])
            stat = int(parts[1])
            lac = parts[2].strip('"') if len(parts) > 2 else None
            ci = parts[3].strip('"') if len(parts) > 3 else None

            return RegistrationStatus(n=n, stat=stat, lac=lac, ci=ci)
        except (ValueError, IndexError) as e:
            raise ATParseError(
                f"Failed to parse registration status: {response[0]}",
                command="AT+CREG?",
                response=response
            ) from e
