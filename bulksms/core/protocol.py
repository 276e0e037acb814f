"""
AT command protocol handler.

Turns the half-duplex command/response exchange into a blocking request and
separates solicited lines from unsolicited result codes.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from .transport import Transport
from ..exceptions import CommandTimeout, ProtocolError

logger = logging.getLogger(__name__)

CTRL_Z = "\x1a"
ESC = "\x1b"

# Unsolicited result codes that can arrive in the middle of any command
URC_PREFIXES = ("+CDSI:", "+CMTI:", "+CDS:", "+CMT:", "RING")

ERROR_PREFIXES = ("+CMS ERROR", "+CME ERROR")


def is_error_line(line: str) -> bool:
    """Check if a line is a failure terminal token."""
    return line == "ERROR" or line.startswith(ERROR_PREFIXES)


class _PendingCommand:
    """The single outstanding command and the lines collected for it."""

    def __init__(self, label: str, sent: str, resp_prefix: Optional[str], expect_prompt: bool,
                 body_follows: bool = False) -> None:
        self.label = label
        self.sent = sent
        self.resp_prefix = resp_prefix
        self.expect_prompt = expect_prompt
        self.body_follows = body_follows
        self.lines: list[str] = []
        self.terminal: Optional[str] = None
        self.echo_seen = False
        self.header_seen = False
        self.body_taken = False
        self.done = threading.Event()


class ATProtocol:
    """
    AT command protocol handler.

    Only one command is ever outstanding. It lives in a single pending slot
    guarded by a mutex; the reader thread fills it and sets its event when a
    terminal token arrives. A re-entrant lock serializes callers, so a
    multi-step exchange (such as sending an SMS) can hold the line for its
    whole duration.
    """

    def __init__(
        self,
        transport: Transport,
        default_timeout: float = 10.0
    ) -> None:
        """
        Initialize AT protocol handler.

        Args:
            transport: Transport instance for communication
            default_timeout: Default timeout for AT commands in seconds
        """
        self.transport = transport
        self.default_timeout = default_timeout

        # Serializes callers; re-entrant for multi-step exchanges
        self._at_lock = threading.RLock()

        # Guards the pending slot, shared with the reader thread
        self._slot_lock = threading.Lock()
        self._pending: Optional[_PendingCommand] = None

        logger.info("Initialized AT protocol handler")

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        """Hold the command line across several commands."""
        with self._at_lock:
            yield

    def send_command(
        self,
        cmd: str = "AT",
        strip_ok: bool = False,
        remove_cmd_prefix: bool = False,
        timeout: Optional[float] = None,
        raw: bool = False,
        expect_prompt: bool = False,
        resp_prefix: Optional[str] = None,
        body_follows: bool = False
    ) -> list[str]:
        """
        Send an AT command and wait for the solicited response.

        Args:
            cmd: AT command to send (e.g., "AT+CSQ" or "+CSQ")
            strip_ok: Remove "OK" from response lines
            remove_cmd_prefix: Remove command prefix from first response line
            timeout: Command timeout in seconds (uses default if None)
            raw: Write ``cmd`` as-is, without AT prefix or line terminator
            expect_prompt: Resolve on the ``>`` body prompt instead of OK
            resp_prefix: Information response prefix (e.g., "+CMGS");
                         derived from the command when omitted
            body_follows: A free-text line follows the information response
                          (e.g., an SMS body after "+CMGR:"); it is kept
                          verbatim even if it looks like OK or a URC

        Returns:
            List of response lines

        Raises:
            CommandTimeout: If no terminal response arrives in time
            ProtocolError: If the modem answers ERROR
            TransportError: If the write fails
        """
        with self._at_lock:
            if raw:
                wire = cmd
                label = cmd.replace(CTRL_Z, "<CTRL-Z>")
            else:
                wire = self._normalize_command(cmd)
                label = wire.strip()

            if resp_prefix is None and not raw:
                resp_prefix = self._response_prefix(wire)

            pending = _PendingCommand(
                label=label,
                sent=wire.strip().replace(CTRL_Z, ""),
                resp_prefix=resp_prefix,
                expect_prompt=expect_prompt,
                body_follows=body_follows
            )

            logger.debug(f"Sending AT command: {label}")

            with self._slot_lock:
                self._pending = pending
            try:
                self.transport.write(wire.encode("utf-8"))

                timeout_val = timeout if timeout is not None else self.default_timeout
                if not pending.done.wait(timeout_val):
                    logger.error(f"AT command timed out: {label}")
                    raise CommandTimeout(
                        f"AT command timed out after {timeout_val}s",
                        command=label,
                        response=list(pending.lines)
                    )
            finally:
                with self._slot_lock:
                    self._pending = None

            lines = list(pending.lines)
            logger.debug(f"Received response: {lines}")

            if pending.terminal is not None and is_error_line(pending.terminal):
                logger.error(f"AT command returned {pending.terminal}: {label}")
                raise ProtocolError(
                    f"AT command returned {pending.terminal}",
                    command=label,
                    response=lines
                )

            if strip_ok and lines and lines[-1] == "OK":
                lines = lines[:-1]

            if remove_cmd_prefix and lines and resp_prefix:
                lines[0] = self._remove_cmd_response(lines[0], resp_prefix)

            return lines

    def abort_prompt(self) -> None:
        """Leave a pending ``>`` prompt without sending (ESC)."""
        with self._at_lock:
            try:
                self.transport.write(ESC.encode("utf-8"))
            except Exception as e:
                logger.warning(f"Failed to abort SMS prompt: {e}")

    def _normalize_command(self, cmd: str) -> str:
        """
        Normalize AT command format.

        Ensures command starts with "AT" and ends with "\r\n".
        """
        if not cmd.upper().startswith("AT"):
            cmd = "AT" + cmd

        if not cmd.endswith("\r\n"):
            cmd += "\r\n"

        return cmd

    @staticmethod
    def _response_prefix(wire: str) -> Optional[str]:
        """
        Derive the information response prefix from a command.

        "AT+CREG?\r\n" -> "+CREG", "AT\r\n" -> None
        """
        raw = wire.strip()[2:]
        prefix = raw.replace("?", "").split("=")[0]
        return prefix or None

    @staticmethod
    def _remove_cmd_response(response: str, prefix: str) -> str:
        """
        Remove "+CMD:" prefix from a response line.

        Args:
            response: Response line (e.g., "+CREG: 0,1")

        Returns:
            Response with prefix removed (e.g., "0,1")
        """
        if response.startswith(prefix + ":"):
            return response[len(prefix) + 1:].strip()
        return response

    def is_urc(self, line: str) -> bool:
        """
        Determine if a line is an unsolicited result code.

        Known notifications are always unsolicited. Other ``+`` lines are
        solicited only when they carry the pending command's prefix. Once the
        header of a command with a free-text body has arrived, every line is
        solicited until the terminal token.
        """
        with self._slot_lock:
            pending = self._pending
            if pending is not None and pending.body_follows and pending.header_seen:
                return False

        if line.startswith(URC_PREFIXES):
            return True

        if is_error_line(line) or not line.startswith("+"):
            return False

        if pending is None:
            return True
        if pending.resp_prefix is None:
            return True
        return not line.startswith(pending.resp_prefix + ":")

    def append_response_line(self, line: str) -> bool:
        """
        Append a line to the pending command's response.

        Args:
            line: Response line to append

        Returns:
            True if this completes the response
        """
        with self._slot_lock:
            pending = self._pending
            if pending is None or pending.done.is_set():
                return False

            if not pending.echo_seen and not pending.lines and line == pending.sent:
                pending.echo_seen = True
                logger.debug(f"Stripping echo line: {line}")
                return False

            if pending.expect_prompt and line == ">":
                pending.terminal = line
                pending.done.set()
                return True

            # First line after the header is body text, never a terminal
            if pending.body_follows and pending.header_seen and not pending.body_taken:
                pending.body_taken = True
                pending.lines.append(line)
                return False

            pending.lines.append(line)

            if pending.resp_prefix and line.startswith(pending.resp_prefix + ":"):
                pending.header_seen = True

            if line == "OK" or is_error_line(line):
                pending.terminal = line
                pending.done.set()
                return True

        return False

    def is_response_pending(self) -> bool:
        """
        Check if we're currently waiting for a command response.

        Returns:
            True if response is pending
        """
        with self._slot_lock:
            return self._pending is not None and not self._pending.done.is_set()
