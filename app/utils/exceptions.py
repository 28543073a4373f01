"""
Custom exceptions for pricing rule business logic.

These exceptions provide more specific error handling than generic Exception,
allowing for better error messages and appropriate HTTP status codes.
"""
from enum import Enum


class PricingError(Exception):
    """Base exception for all pricing rule business logic errors."""

    status_code = 400

    def __init__(self, message: str, code: str = "PRICING_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class NotFoundError(PricingError):
    """Resource not found."""

    status_code = 404

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with ID {identifier} not found"
        super().__init__(message, f"{resource.upper().replace(' ', '_')}_NOT_FOUND")


class RuleNotFoundError(NotFoundError):
    """Pricing rule not found."""

    def __init__(self, identifier=None):
        super().__init__("Pricing rule", identifier)


class ValidationError(PricingError):
    """Invalid input data, attributable to one field."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        code = f"INVALID_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(message, code)

    def to_dict(self):
        return {'field': self.field, 'message': self.message, 'code': self.code}


class RuleValidationError(PricingError):
    """One or more validation errors block saving a rule."""

    def __init__(self, errors: list):
        self.errors = list(errors)
        message = '; '.join(e.message for e in self.errors) or 'Invalid pricing rule'
        super().__init__(message, "VALIDATION_ERROR")


class InvalidStatusTransitionError(PricingError):
    """Invalid status transition for a resource."""

    status_code = 409

    def __init__(self, resource: str, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        message = f"Cannot change {resource} status from '{from_status}' to '{to_status}'"
        super().__init__(message, "INVALID_STATUS_TRANSITION")


class ExternalIdImmutableError(PricingError):
    """A rule's linked discount id cannot be changed once set."""

    status_code = 409

    def __init__(self, current_id: str, requested_id=None):
        self.current_id = current_id
        self.requested_id = requested_id
        message = (
            f"Rule is already linked to discount {current_id}; "
            "the linked discount cannot be changed"
        )
        super().__init__(message, "EXTERNAL_ID_IMMUTABLE")


class ShopifyError(PricingError):
    """Error communicating with Shopify API."""

    status_code = 502

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(message, "SHOPIFY_ERROR")


class ShopifyUnavailableError(ShopifyError):
    """Shopify could not be reached, timed out, or throttled the request."""

    status_code = 503

    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message, original_error)
        self.code = "SHOPIFY_UNAVAILABLE"


class ShopifyUserError(ShopifyError):
    """Shopify rejected a mutation with userErrors."""

    def __init__(self, user_errors: list, operation: str = None):
        self.user_errors = user_errors or []
        self.operation = operation
        details = ', '.join(e.get('message', str(e)) for e in self.user_errors)
        prefix = f"{operation} rejected" if operation else "Shopify rejected the request"
        super().__init__(f"{prefix}: {details}")
        self.code = "SHOPIFY_USER_ERROR"


class DiscountNotFoundError(ShopifyError):
    """The linked Shopify discount no longer exists."""

    status_code = 404

    def __init__(self, discount_id: str):
        self.discount_id = discount_id
        super().__init__(f"Discount {discount_id} does not exist in Shopify")
        self.code = "DISCOUNT_NOT_FOUND"


class CatalogUnavailable(PricingError):
    """Catalog lookups are unavailable; callers degrade to empty results."""

    status_code = 503

    def __init__(self, resource: str, original_error: Exception = None):
        self.resource = resource
        self.original_error = original_error
        super().__init__(f"Could not load {resource} from Shopify", "CATALOG_UNAVAILABLE")


class RemoteFailureReason(str, Enum):
    """Why a remote discount operation failed."""
    DISCOUNT_NOT_FOUND = 'discount_not_found'   # Stale link, needs re-linking
    REMOTE_REJECTED = 'remote_rejected'         # Shopify validation rejected the input
    REMOTE_UNAVAILABLE = 'remote_unavailable'   # Transport failure, safe to retry

    @classmethod
    def from_error(cls, error: Exception) -> 'RemoteFailureReason':
        if isinstance(error, DiscountNotFoundError):
            return cls.DISCOUNT_NOT_FOUND
        if isinstance(error, ShopifyUnavailableError):
            return cls.REMOTE_UNAVAILABLE
        return cls.REMOTE_REJECTED


class RemoteOperationFailure(PricingError):
    """Base for failures of remote discount operations."""

    status_code = 502
    default_code = "REMOTE_FAILURE"
    action = "Remote operation"
    # Save step that failed: 'mint', 'activate' or 'sync'; set by the caller
    step = None

    def __init__(self, reason: RemoteFailureReason, detail: str = None, original_error: Exception = None):
        self.reason = RemoteFailureReason(reason)
        self.detail = detail
        self.original_error = original_error
        message = f"{self.action} failed ({self.reason.value})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, self.default_code)

    @property
    def retryable(self) -> bool:
        return self.reason == RemoteFailureReason.REMOTE_UNAVAILABLE

    @classmethod
    def from_error(cls, error: Exception):
        return cls(RemoteFailureReason.from_error(error), getattr(error, 'message', str(error)), error)

    def to_dict(self):
        return {
            'code': self.code,
            'reason': self.reason.value,
            'message': self.message,
            'retryable': self.retryable,
            'step': self.step,
        }


class SyncFailure(RemoteOperationFailure):
    """Pushing targeting to the linked discount failed."""
    default_code = "SYNC_FAILED"
    action = "Discount sync"


class AssignmentFailure(RemoteOperationFailure):
    """Binding a customer segment to a discount failed."""
    default_code = "ASSIGNMENT_FAILED"
    action = "Segment assignment"


class RemovalFailure(RemoteOperationFailure):
    """Unbinding a customer segment from a discount failed."""
    default_code = "REMOVAL_FAILED"
    action = "Segment removal"


class AssignmentPrecondition(PricingError):
    """Segments can only be bound once the rule has a linked discount."""

    status_code = 409

    def __init__(self, message: str = "This rule has no linked discount yet. Save the rule first."):
        super().__init__(message, "SAVE_RULE_FIRST")


class ConfigurationError(PricingError):
    """Application configuration error."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message, "CONFIGURATION_ERROR")
