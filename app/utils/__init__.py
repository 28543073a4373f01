"""
Utility modules for the pricing rule service.
"""
from .logging_config import setup_logging
from .cancellation import CancellationToken, RequestSequencer
from .errors import (
    ErrorCode,
    error_response,
    pricing_error_response,
    bad_request
)
from .exceptions import (
    PricingError,
    NotFoundError,
    RuleNotFoundError,
    ValidationError,
    RuleValidationError,
    InvalidStatusTransitionError,
    ExternalIdImmutableError,
    ShopifyError,
    ShopifyUnavailableError,
    ShopifyUserError,
    DiscountNotFoundError,
    CatalogUnavailable,
    RemoteFailureReason,
    SyncFailure,
    AssignmentPrecondition,
    AssignmentFailure,
    RemovalFailure,
    ConfigurationError
)
