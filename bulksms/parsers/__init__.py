"""
Response parsers for AT command responses.

Provides type-safe parsing of modem responses into structured data.
"""

from .base import ResponseParser, SimpleValueParser
from .network import (
    SignalStrengthParser,
    OperatorNameParser,
    RegistrationStatusParser,
    UNKNOWN_OPERATOR,
)
from .sms import SMSParser, is_opt_out, OPT_OUT_KEYWORDS

__all__ = [
    "ResponseParser",
    "SimpleValueParser",
    "SignalStrengthParser",
    "OperatorNameParser",
    "RegistrationStatusParser",
    "UNKNOWN_OPERATOR",
    "SMSParser",
    "is_opt_out",
    "OPT_OUT_KEYWORDS",
]
