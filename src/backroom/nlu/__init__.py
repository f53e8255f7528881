"""Natural-language understanding: model client and intent parser."""

from .client import NluClient, NluConfig, NluError
from .intent import IntentParser, parse_simple

__all__ = ["IntentParser", "NluClient", "NluConfig", "NluError", "parse_simple"]
