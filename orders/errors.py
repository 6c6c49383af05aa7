# orders/errors.py
class OrderServiceError(Exception):
    """Base order service error."""
    def __init__(self, msg: str = "", **ctx):
        super().__init__(msg)
        self.msg = msg
        self.ctx = ctx

    def __str__(self):
        base = self.msg or self.__class__.__name__
        if self.ctx:
            details = ", ".join(f"{k}={v}" for k, v in self.ctx.items())
            return f"{base} [{details}]"
        return base


class TransientIngestError(OrderServiceError):
    """Decode failure, store timeout or store connectivity failure. Never acked; redelivery retries it."""


class PermanentValidationError(OrderServiceError):
    """Message decodes but can never be processed (e.g. missing identifier). Acked and dropped."""


class OrderNotFound(OrderServiceError):
    """Point-get found no row for the identifier."""

    def __init__(self, identifier: str):
        super().__init__("order not found", identifier=identifier)
        self.identifier = identifier


class StartupFatalError(OrderServiceError):
    """Store or channel unusable at startup; the service has no degraded mode."""
