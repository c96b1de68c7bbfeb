class InvoiceCtlError(Exception):
    """Base class for invoicectl errors."""


class ExtractionError(InvoiceCtlError):
    """The extraction service could not turn a document into a record."""

    def __init__(self, message: str, rate_limited: bool = False):
        super().__init__(message)
        self.rate_limited = rate_limited


class RateLimitError(ExtractionError):
    """The service rejected the call because of throttling or quota."""

    def __init__(self, message: str = "Rate limit hit (429 RESOURCE_EXHAUSTED)"):
        super().__init__(message, rate_limited=True)


class ExtractionTimeout(ExtractionError):
    def __init__(self, timeout: float):
        super().__init__(f"Extraction timed out after {timeout:g}s")
        self.timeout = timeout


class StorageCapacityError(InvoiceCtlError):
    """The backing database refused a write because it is full."""


class InvalidTransition(InvoiceCtlError):
    pass


class SchedulerBusy(InvoiceCtlError):
    pass
