"""
Gateway configuration from the environment.

Resolved once at startup into an immutable GatewayConfig.
"""

import logging
import os
from typing import Mapping, Optional

from .types import GatewayConfig
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_PORT = "/dev/ttyUSB0"
DEFAULT_BAUDRATE = 115200

PORT_VAR = "SMS_GATEWAY_PORT"
BAUDRATE_VAR = "SMS_GATEWAY_BAUD"
SIM_PIN_VAR = "SIM_PIN"


def load_config(
    environ: Optional[Mapping[str, str]] = None,
    port: Optional[str] = None,
    baudrate: Optional[int] = None,
    sim_pin: Optional[str] = None
) -> GatewayConfig:
    """
    Build a GatewayConfig from explicit values, then the environment.

    Args:
        environ: Environment mapping (defaults to os.environ)
        port: Serial port; overrides SMS_GATEWAY_PORT
        baudrate: Baud rate; overrides SMS_GATEWAY_BAUD
        sim_pin: SIM PIN; overrides SIM_PIN

    Returns:
        GatewayConfig

    Raises:
        ConfigurationError: If a value is malformed

    Example:

    .. code-block:: python

        config = load_config()  # SMS_GATEWAY_PORT=/dev/ttyUSB2 SIM_PIN=1234
    """
    env = os.environ if environ is None else environ

    if port is None:
        port = env.get(PORT_VAR, DEFAULT_PORT)

    if baudrate is None:
        raw = env.get(BAUDRATE_VAR)
        if raw:
            try:
                baudrate = int(raw)
            except ValueError as e:
                raise ConfigurationError(f"{BAUDRATE_VAR} must be an integer, got {raw!r}") from e
        else:
            baudrate = DEFAULT_BAUDRATE

    if sim_pin is None:
        sim_pin = env.get(SIM_PIN_VAR) or None

    if sim_pin is not None and not sim_pin.isdigit():
        raise ConfigurationError(f"{SIM_PIN_VAR} must be digits only")

    config = GatewayConfig(port=port, baudrate=baudrate, sim_pin=sim_pin)
    logger.debug(f"Loaded configuration: port={config.port} baudrate={config.baudrate} "
                 f"sim_pin={'set' if config.sim_pin else 'unset'}")
    return config
