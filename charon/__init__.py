import logging

from charon.logger import CharonLogger

logging.setLoggerClass(CharonLogger)
