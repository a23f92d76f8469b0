class PreconfBidderError(Exception):
    """Base class for every error raised by the bidder."""


class ConfigurationError(PreconfBidderError):
    """Raised when a configuration value is missing or out of range."""


class ChainReadError(PreconfBidderError):
    """Raised when a nonce, header or chain ID read fails."""


class TransactionBuildError(PreconfBidderError):
    """Raised when a candidate transaction cannot be assembled."""


class SigningError(TransactionBuildError):
    """Raised when the signing identity rejects or fails to sign a transaction."""


class UnsupportedBidInputError(PreconfBidderError, TypeError):
    """Raised when a bid payload is neither a list of hashes nor a list of signed transactions."""

    def __init__(self, value, reason: str = None):
        self.value = value
        super().__init__(reason or f"Unsupported bid input type: {type(value).__name__}")


class BidTransportError(PreconfBidderError):
    """Raised when a bid cannot be sent to the bidder service."""


class RelayError(PreconfBidderError):
    """Raised when the relay rejects a bundle or cannot be reached."""


class SubscriptionError(PreconfBidderError):
    """Raised when the header subscription fails or its stream ends."""


class RetryExhaustedError(PreconfBidderError):
    """
    Raised by a backoff policy once every attempt has failed.

    :param description: What was being retried.
    :param attempts: Number of attempts made.
    :param last_error: The error raised by the final attempt.
    """

    def __init__(self, description: str, attempts: int, last_error: BaseException = None):
        self.description = description
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{description} failed after {attempts} attempts: {last_error}")


class StopRequestedError(PreconfBidderError):
    """Raised when a shutdown request interrupts a retry loop."""
