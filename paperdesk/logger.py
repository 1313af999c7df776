# paperdesk/logger.py
import logging
import sys

from paperdesk.config import config

LOG_FORMAT = "%(asctime)s.%(msecs)03dZ [%(levelname)s] [%(name)s] %(message)s"
# Third-party loggers that are too chatty at the application level
NOISY_LOGGERS = ('websockets', 'asyncio', 'urllib3')


def setup_logging(level: str = None):
    """
    Sends all records to stdout in one timestamped line format.

    `level` overrides LOG_LEVEL from the environment. Loggers in NOISY_LOGGERS
    are held at WARNING whatever the application level is.
    """
    logging.basicConfig(
        level=(level or config.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%dT%H:%M:%S",
        stream=sys.stdout,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
