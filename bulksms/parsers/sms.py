"""
SMS response parsers for AT commands.

Parses text-mode responses from SMS-related AT commands:
- AT+CMGS (Send message)
- AT+CMGR (Read message or status report)
- +CMTI / +CDSI URCs (New message / status report stored)
"""

import re

from ..types import DeliveryReport, InboundMessage

# Inbound replies that revoke consent. Whole words only, so "nonstop"
# or "removed" do not match; OPT OUT may be written "OPT-OUT" or "OPTOUT".
OPT_OUT_KEYWORDS = ("STOP", "UNSUBSCRIBE", "OPT OUT", "REMOVE")

_OPT_OUT_PATTERN = re.compile(
    r"\b(?:STOP|UNSUBSCRIBE|OPT[\s-]?OUT|REMOVE)\b",
    re.IGNORECASE
)

_STORED_PATTERN = re.compile(r'\+(CMTI|CDSI):\s*"([^"]+)",(\d+)')

# +CMGR: "REC UNREAD","+1234567890",,"23/01/15,10:30:45+00"
_DELIVER_PATTERN = re.compile(
    r'\+CMGR:\s*"([^"]+)","([^"]+)",(?:"[^"]*",|,)"([^"]+)"'
)

# +CMGR: "REC UNREAD",6,27,"+1234567890",145,"24/05/01,10:00:00+08","24/05/01,10:00:05+08",0
_STATUS_REPORT_PATTERN = re.compile(
    r'\+CMGR:\s*"[^"]*",(\d+),(\d+),"([^"]*)",\d*,"[^"]*","[^"]*",(\d+)'
)


def is_opt_out(body: str) -> bool:
    """
    Check whether an inbound message body asks to opt out.

    Example:

    .. code-block:: python

        is_opt_out("please STOP now")  # True
        is_opt_out("nonstop fun")      # False
    """
    return _OPT_OUT_PATTERN.search(body) is not None


class SMSParser:
    """Parser for SMS-related AT command responses."""

    @staticmethod
    def parse_stored_indication(urc: str) -> tuple[str, int]:
        """
        Parse a +CMTI or +CDSI URC.

        Expected format:
            +CMTI: "SM",5
            +CDSI: "SR",3

        Args:
            urc: URC line

        Returns:
            Tuple of (storage, index)

        Raises:
            ValueError: If URC format is invalid
        """
        match = _STORED_PATTERN.match(urc)
        if not match:
            raise ValueError(f"Could not parse stored-message URC: {urc}")

        return match.group(2), int(match.group(3))

    @staticmethod
    def parse_cmgr_text(response: list[str], index: int) -> InboundMessage:
        """
        Parse AT+CMGR response for a received message in text mode.

        Expected format:
            +CMGR: "REC READ","+1234567890",,"23/01/15,10:30:45+00"
            Message content here

        Args:
            response: Response lines from AT+CMGR, without OK
            index: Storage index the message was read from

        Returns:
            InboundMessage object

        Raises:
            ValueError: If response format is invalid
        """
        if len(response) < 2:
            raise ValueError(f"Invalid CMGR response: expected 2+ lines, got {len(response)}")

        header = response[0]
        match = _DELIVER_PATTERN.match(header)
        if not match:
            raise ValueError(f"Could not parse CMGR header: {header}")

        return InboundMessage(
            index=index,
            sender=match.group(2),
            body="\n".join(response[1:]),
            timestamp=match.group(3)
        )

    @staticmethod
    def parse_status_report(response: list[str], index: int) -> DeliveryReport:
        """
        Parse AT+CMGR response for an SMS-STATUS-REPORT in text mode.

        Expected format:
            +CMGR: <stat>,<fo>,<mr>,<ra>,<tora>,<scts>,<dt>,<st>

        Args:
            response: Response lines from AT+CMGR, without OK
            index: Storage index the report was read from

        Returns:
            DeliveryReport object

        Raises:
            ValueError: If response format is invalid
        """
        if not response:
            raise ValueError("Empty CMGR status report response")

        header = response[0]
        match = _STATUS_REPORT_PATTERN.match(header)
        if not match:
            raise ValueError(f"Could not parse CMGR status report: {header}")

        return DeliveryReport(
            index=index,
            reference=int(match.group(2)),
            recipient=match.group(3),
            status_code=int(match.group(4))
        )

    @staticmethod
    def parse_cmgs(response: list[str]) -> int:
        """
        Parse AT+CMGS response (send message).

        Expected format:
            +CMGS: 123

        Where 123 is the message reference number.

        Args:
            response: Response lines from the message body step

        Returns:
            Message reference number

        Raises:
            ValueError: If response format is invalid
        """
        for line in response:
            match = re.match(r'\+CMGS:\s*(\d+)', line)
            if match:
                return int(match.group(1))

        raise ValueError(f"No message reference in CMGS response: {response}")
