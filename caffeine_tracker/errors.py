"""Error taxonomy shared by the store and the sync layer."""


class CaffeineTrackerError(Exception):
    """Base class for all caffeine_tracker errors."""

    retryable = False


class ConfigurationError(CaffeineTrackerError):
    """Missing credentials or an unusable server URL."""


class ConnectivityError(CaffeineTrackerError):
    """Network, DNS, TLS or timeout failure while talking to the remote."""

    retryable = True


class ProtocolError(CaffeineTrackerError):
    """The remote answered with an unexpected HTTP status."""

    retryable = True

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ParseError(CaffeineTrackerError):
    """Malformed JSON payload or binary image."""


class PersistenceError(CaffeineTrackerError):
    """Writing the durable image to the backend failed.

    The in-memory database still holds the change; callers retry the save.
    """

    retryable = True
