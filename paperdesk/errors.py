# paperdesk/errors.py


class PaperDeskError(Exception):
    """Base class for all paperdesk errors."""


class ExchangeConnectionError(PaperDeskError):
    """The streaming socket could not be opened on the first attempt."""

    def __init__(self, exchange: str, reason: str):
        super().__init__(f"[{exchange}] connection failed: {reason}")
        self.exchange = exchange
        self.reason = reason


class ExchangeAPIError(PaperDeskError):
    """A REST call returned a non-success response."""

    def __init__(self, exchange: str, message: str, status=None):
        super().__init__(f"{exchange.capitalize()} API error: {message}")
        self.exchange = exchange
        self.status = status


class UnknownExchangeError(PaperDeskError, KeyError):
    def __init__(self, name: str):
        super().__init__(f"Exchange adapter not found: {name}")
        self.name = name

    def __str__(self):
        return self.args[0]


class InvalidArgumentError(PaperDeskError, ValueError):
    """Malformed input (non-finite or non-positive numbers, unknown enum values).

    Raised before any engine state changes.
    """
