"""
Exception types shared across the Rent Watch system.

Expected business-rule failures (invalid criteria, the one-active-search
limit, unknown searches) travel as result values; the exceptions here
cover validation inside the models and failures of external services.
"""


class CriteriaValidationError(ValueError):
    """Raised when search criteria break a validation rule."""


class FetchFailure(Exception):
    """The listing source could not be queried."""

    def __init__(self, message: str, cause: Exception = None):
        super().__init__(message)
        self.cause = cause


class DeliveryFailure(Exception):
    """A single listing could not be delivered to the user."""

    def __init__(self, external_id: str, message: str, attempts: int = 1):
        super().__init__(f"Delivery of listing {external_id} failed: {message}")
        self.external_id = external_id
        self.attempts = attempts
