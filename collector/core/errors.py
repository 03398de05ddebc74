"""
Collector error taxonomy.

Input errors are absorbed by the decoder (every optional field is defaulted),
resolution errors become an empty hostname, and state errors (a timer firing
for an evicted key) are no-ops. Only delivery has exceptions of its own.
"""


class CollectorError(Exception):
    """Base class for collector errors."""


class SinkError(CollectorError):
    """The notification sink could not be reached."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class SinkNotConfiguredError(SinkError):
    """No webhook URL was configured for the notification sink."""

    def __init__(self, message: str = "DISCORD_WEBHOOK_URL is not set"):
        super().__init__(message)
