"""
Tests for configuration loading.
"""

import pytest
from bulksms import load_config, GatewayConfig, QueuedMessage
from bulksms.exceptions import ConfigurationError


def test_defaults():
    config = load_config(environ={})

    assert config == GatewayConfig(port="/dev/ttyUSB0", baudrate=115200, sim_pin=None)


def test_from_environment():
    config = load_config(environ={
        "SMS_GATEWAY_PORT": "/dev/ttyUSB2",
        "SMS_GATEWAY_BAUD": "9600",
        "SIM_PIN": "1234",
    })

    assert config.port == "/dev/ttyUSB2"
    assert config.baudrate == 9600
    assert config.sim_pin == "1234"


def test_explicit_values_win():
    config = load_config(
        environ={"SMS_GATEWAY_PORT": "/dev/ttyUSB2", "SMS_GATEWAY_BAUD": "9600"},
        port="/dev/ttyACM0",
        baudrate=57600
    )

    assert config.port == "/dev/ttyACM0"
    assert config.baudrate == 57600


def test_empty_pin_is_unset():
    assert load_config(environ={"SIM_PIN": ""}).sim_pin is None


def test_invalid_baudrate():
    with pytest.raises(ConfigurationError):
        load_config(environ={"SMS_GATEWAY_BAUD": "fast"})

    with pytest.raises(ConfigurationError):
        load_config(environ={}, baudrate=0)


def test_invalid_pin():
    with pytest.raises(ConfigurationError):
        load_config(environ={"SIM_PIN": "12a4"})


def test_config_is_immutable():
    config = load_config(environ={})

    with pytest.raises(AttributeError):
        config.port = "/dev/ttyUSB9"


class TestQueuedMessage:
    """Test message validation."""

    def test_valid(self):
        message = QueuedMessage("+15551234567", "x" * 160, "1")
        assert message.correlation_id == "1"

    def test_too_long(self):
        with pytest.raises(ValueError):
            QueuedMessage("+15551234567", "x" * 161)

    @pytest.mark.parametrize("phone", ["", "abc", "+1", "+1555-123-4567", "1" * 16])
    def test_invalid_phone(self, phone):
        with pytest.raises(ValueError):
            QueuedMessage(phone, "Hello")
