"""Custom exception hierarchy for the billing event engine."""


class BillingEventsError(Exception):
    """Base exception for all billing event engine errors."""


# --- Configuration ---
class ConfigError(BillingEventsError):
    """Invalid or missing configuration."""


# --- Storage / transport ---
class TransientStorageError(BillingEventsError):
    """Ledger, bus, scheduler or quarantine unavailable.

    Always propagated so the invoking transport's native retry applies.
    """


class ConditionalCheckFailed(BillingEventsError):
    """Conditional insert rejected because the key already exists."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Key already exists: {key}")


class ScheduleNotFound(BillingEventsError):
    """The requested cancellation schedule does not exist."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Schedule not found: {name}")


# --- Input ---
class MalformedInput(BillingEventsError):
    """Unparseable body or missing correlation fields. Permanent."""


# --- Publishing ---
class PartialBatchFailure(BillingEventsError):
    """Some entries of a batch failed after every attempt completed."""

    def __init__(self, failed_count: int, context: str = "entries"):
        self.failed_count = failed_count
        self.context = context
        super().__init__(f"Publish failed for {failed_count} {context}")
