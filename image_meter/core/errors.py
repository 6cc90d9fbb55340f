"""
Error taxonomy for the generation pipeline.

Every failure the pipeline can surface carries an HTTP-like status code so
an outer presentation layer can map it without inspecting messages.
"""

from typing import Any, Optional


class ImageMeterError(Exception):
    """Base class for all pipeline failures."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ImageMeterError, ValueError):
    """Raised when request fields are malformed. Never reaches billing."""
    status_code = 400


class PaymentRequired(ImageMeterError):
    """Raised when the caller is unregistered or has no positive balance."""
    status_code = 402

    def __init__(self, message: str, payment_link: Optional[str] = None):
        super().__init__(message)
        self.payment_link = payment_link


class ChargeDeclined(ImageMeterError):
    """Raised when the billing gate refuses the charge."""
    status_code = 402


class ProviderFailure(ImageMeterError):
    """Raised when the upstream provider does not produce an artifact.

    Raised strictly after a committed charge; the charge is not reversed.
    """

    def __init__(self, status_code: int, details: Any):
        super().__init__(f"Image generation failed ({status_code}): {details}")
        self.status_code = status_code
        self.details = details


class PersistenceFailure(ImageMeterError):
    """A cache write-back failed. Logged only, never raised to callers."""

    def __init__(self, key: str, cause: Optional[BaseException] = None):
        reason = str(cause) if cause is not None else "store rejected the write"
        super().__init__(f"Failed to persist {key}: {reason}")
        self.key = key
        self.cause = cause


class InternalFailure(ImageMeterError):
    """Any unexpected fault, reported with a generic message."""
    status_code = 500
