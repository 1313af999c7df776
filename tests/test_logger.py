import logging

from paperdesk.logger import NOISY_LOGGERS, setup_logging


def test_third_party_loggers_are_held_at_warning():
    setup_logging('debug')
    for name in NOISY_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING
