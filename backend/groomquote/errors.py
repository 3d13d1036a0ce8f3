class MarketError(ValueError):
    """Base class for user-visible marketplace errors."""


class MarketValidationError(MarketError):
    pass


class MarketNotFoundError(MarketError):
    pass


class MarketConflictError(MarketError):
    pass


class MarketPermissionError(MarketError):
    pass


class MarketStateError(MarketError):
    """Operation is not legal for the entity's current status."""


class PaymentAmountMismatchError(MarketError):
    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Payment amount mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class PaymentGatewayError(MarketError):
    """The payment provider rejected or failed the call."""
