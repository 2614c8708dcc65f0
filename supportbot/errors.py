"""SupportBot exception hierarchy.

Transient exchange failures, validation rejections, configuration problems
and position state violations are kept apart so the engine can decide which
ones abort a symbol, a step, or a whole cycle.
"""


class SupportBotError(Exception):
    """Base class for all errors raised by the trading core."""


class ConfigError(SupportBotError):
    """Trading configuration is missing, malformed, or violates an invariant."""


class ExchangeError(SupportBotError):
    """The exchange could not be reached or answered with an error.

    Treated as transient: the affected symbol or position is skipped for the
    current cycle and retried on the next one.
    """

    def __init__(self, message: str, ret_code: int | None = None) -> None:
        super().__init__(message)
        self.ret_code = ret_code


class OrderRejectedError(ExchangeError):
    """The exchange explicitly refused an order."""


class OrderValidationError(SupportBotError):
    """An order failed local sizing / precision / notional checks.

    Not a failure as such: ``reason`` is recorded on the signal or logged and
    nothing is sent to the exchange.
    """

    def __init__(self, reason: str, detail: str = "") -> None:
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.reason = reason
        self.detail = detail


class PositionStateError(SupportBotError):
    """An operation was requested on a position in the wrong state."""
