class PaymentGatewayError(RuntimeError):
    pass


class MissingCredentialsError(PaymentGatewayError):
    """School has no gateway instance/key, or the API domain is not configured."""


class InvalidBasketError(PaymentGatewayError):
    """Basket input rejected before any outbound call (no total, no lines, negative charge)."""


class BasketMismatchError(PaymentGatewayError):
    def __init__(self, expected_minor: int, actual_minor: int):
        self.expected_minor = expected_minor
        self.actual_minor = actual_minor
        super().__init__(
            f"Basket total {actual_minor} does not match expected {expected_minor} "
            f"(drift {expected_minor - actual_minor})"
        )


class TransactionFetchError(PaymentGatewayError):
    pass


class ReconciliationTargetNotFoundError(PaymentGatewayError):
    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"No Booking or Voucher found with payrexx_reference: {reference!r}")


class RefundRejectedError(PaymentGatewayError):
    def __init__(self, status: str):
        self.status = status
        super().__init__(f"Gateway refused refund (status={status!r})")


class NoTransactionError(PaymentGatewayError):
    """Booking has no stored gateway transaction to refund against."""
