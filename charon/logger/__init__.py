import logging
from decimal import Decimal
from enum import Enum

from .logger import CharonLogger

NETWORK = logging.DEBUG + 1
logging.addLevelName(NETWORK, "NETWORK")

DEBUG = logging.DEBUG
INFO = logging.INFO
WARNING = logging.WARNING
ERROR = logging.ERROR
CRITICAL = logging.CRITICAL


def log_encoder(obj):
    if isinstance(obj, Decimal):
        return str(obj)
    elif isinstance(obj, Enum):
        return str(obj.value)
    elif isinstance(obj, bytes):
        return obj.hex()
    raise TypeError(f"Object of type {obj.__class__.__name__} is not JSON serializable")


__all__ = [
    "CharonLogger",
    "NETWORK",
    "DEBUG",
    "INFO",
    "WARNING",
    "ERROR",
    "CRITICAL",
    "log_encoder",
]
