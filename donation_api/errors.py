"""Payment flow errors that map to a specific HTTP status.

Validation problems raise ValidationError (400). Anything else that escapes
a handler is reported as 500.
"""


class PaymentFlowError(Exception):
    """A handler step failed in a way the caller should see verbatim."""

    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFoundError(PaymentFlowError):
    """The referenced campaign does not exist or is inactive."""

    status_code = 404


class UpstreamResponseError(PaymentFlowError):
    """PayPal answered 2xx but the response lacks a field we need."""

    status_code = 502


class ValidationError(PaymentFlowError, ValueError):
    """The request itself is unusable (bad body, missing field or header)."""

    status_code = 400
