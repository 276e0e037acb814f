"""
Pytest configuration and fixtures.

Provides shared test fixtures for bulksms tests.
"""

import pytest
import logging
import threading
import time

from bulksms.core import MockTransport, ModemCore, PROMPT
from bulksms.core.protocol import CTRL_Z, ESC
from bulksms import SMSModem, SMSGateway, GatewayConfig, EventChannel, InMemoryStorage


# Enable logging for tests
logging.basicConfig(
    level=logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

IMSI = "310410123456789"


class ScriptedModem:
    """
    Responder for MockTransport that answers like a text-mode SMS modem.

    ``overrides`` maps a command prefix to the lines sent back instead of the
    normal answer; an empty list makes the modem stay silent. Stored records
    for AT+CMGR go in ``records``.
    """

    def __init__(self):
        self.sim_state = "READY"
        self.next_reference = 1
        self.records: dict[int, list[str]] = {}
        self.overrides: dict[str, list[str]] = {}
        self.bodies: list[str] = []
        self._lock = threading.Lock()
        self.responses = {
            "AT": ["OK"],
            "AT+CMGF=1": ["OK"],
            "AT+CNMI=2,1,0,2,0": ["OK"],
            "AT+CSMP=49,167,0,0": ["OK"],
            "AT+CSQ": ["+CSQ: 17,99", "OK"],
            "AT+CREG?": ["+CREG: 0,1", "OK"],
            "AT+CIMI": [IMSI, "OK"],
            "AT+COPS?": ['+COPS: 0,0,"AT&T",7', "OK"],
        }

    def __call__(self, command: str) -> list[str]:
        with self._lock:
            for prefix, lines in self.overrides.items():
                if command.startswith(prefix):
                    return list(lines)

            if command == ESC:
                return []
            if command.startswith("AT+CMGS="):
                return [PROMPT]
            if command.endswith(CTRL_Z):
                self.bodies.append(command[:-1])
                ref = self.next_reference
                self.next_reference += 1
                return [f"+CMGS: {ref}", "OK"]
            if command == "AT+CPIN?":
                return [f"+CPIN: {self.sim_state}", "OK"]
            if command.startswith("AT+CPIN="):
                self.sim_state = "READY"
                return ["OK"]
            if command.startswith("AT+CMGR="):
                index = int(command.split("=")[1])
                record = self.records.get(index)
                return record + ["OK"] if record else ["+CMS ERROR: 321"]
            if command.startswith("AT+CMGD="):
                self.records.pop(int(command.split("=")[1]), None)
                return ["OK"]
            return list(self.responses.get(command, ["ERROR"]))


def _wait_until(predicate, timeout=2.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def _wait_event(channel, kind, timeout=2.0):
    deadline = time.monotonic() + timeout
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return None
        event = channel.get(timeout=remaining)
        if event is not None and event.kind == kind:
            return event


@pytest.fixture
def wait_until():
    """
    Poll a predicate until it holds.

    Example:
        def test_something(wait_until):
            assert wait_until(lambda: len(sent) == 2, timeout=1.0)
    """
    return _wait_until


@pytest.fixture
def wait_event():
    """
    Take events from a channel until one of the given kind arrives.

    Returns None on timeout. Events of other kinds are discarded.
    """
    return _wait_event


@pytest.fixture
def mock_transport():
    """
    Create a MockTransport instance for testing.

    Example:
        def test_something(mock_transport):
            mock_transport.add_response(["OK"])
            # ... test code ...
    """
    transport = MockTransport()
    yield transport
    transport.close()


@pytest.fixture
def modem_core(mock_transport):
    """
    Create a ModemCore instance with MockTransport.

    Example:
        def test_at_command(modem_core, mock_transport):
            mock_transport.add_response(["+CSQ: 24,99", "OK"])
            response = modem_core.send_at("AT+CSQ")
            assert "+CSQ: 24,99" in response
    """
    core = ModemCore(transport=mock_transport, timeout=1.0, log_urcs=False)
    core.start()
    yield core
    core.close()


@pytest.fixture
def scripted_modem():
    """Scripted modem answering the gateway's command set."""
    return ScriptedModem()


@pytest.fixture
def scripted_transport(scripted_modem):
    """MockTransport driven by the scripted modem."""
    transport = MockTransport(responder=scripted_modem)
    yield transport
    transport.close()


@pytest.fixture
def events():
    return EventChannel()


@pytest.fixture
def sms_modem(scripted_transport, events):
    """
    Create a started SMSModem on the scripted modem.

    Example:
        def test_signal(sms_modem):
            assert sms_modem.network.get_signal_strength() == 17
    """
    modem_instance = SMSModem(
        transport=scripted_transport,
        events=events,
        timeout=1.0,
        send_timeout=0.5
    )
    modem_instance.start()
    yield modem_instance
    modem_instance.close()


@pytest.fixture
def gateway(scripted_transport):
    """Gateway on the scripted modem, not yet connected."""
    gateway_instance = SMSGateway(
        GatewayConfig(port="/dev/ttyTEST0"),
        transport=scripted_transport,
        rate_limit_delay=0.01,
        command_timeout=1.0,
        send_timeout=0.5
    )
    yield gateway_instance
    gateway_instance.disconnect()


@pytest.fixture
def storage():
    return InMemoryStorage()
