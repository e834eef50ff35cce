"""
Business error taxonomy.

Every error carries the HTTP status the API layer answers with and a stable
``code`` clients can switch on. Persistence failures are NOT wrapped here:
they propagate as-is and surface as a generic internal error.
"""

from __future__ import annotations


class ReplenishmentError(Exception):
    status_code = 400
    code = "replenishment_error"
    retryable = False

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or self.__class__.__doc__ or self.code


class UnknownBranchError(ReplenishmentError):
    """Branch not found."""
    status_code = 404
    code = "unknown_branch"


class AllocationContentionError(ReplenishmentError):
    """Sequence allocation kept conflicting; retry the whole create."""
    status_code = 503
    code = "allocation_contention"
    retryable = True


class StageAlreadySetError(ReplenishmentError):
    """Stage already recorded; pass the correction flag to override."""
    status_code = 409
    code = "stage_already_set"


class ItemClosedError(StageAlreadySetError):
    """Item already received; only corrections are accepted."""
    code = "item_closed"


class StaleVersionError(ReplenishmentError):
    """Item was modified concurrently; reload and retry."""
    status_code = 409
    code = "stale_version"
    retryable = True


class ForbiddenScopeError(ReplenishmentError):
    """You are not allowed to access reports for this branch."""
    status_code = 403
    code = "forbidden_scope"


class ProductNotFoundError(ReplenishmentError):
    """Product not found in catalog."""
    status_code = 404
    code = "product_not_found"


class OrderNotFoundError(ReplenishmentError):
    """Stock order or line item not found."""
    status_code = 404
    code = "order_not_found"


class DocumentNotFoundError(ReplenishmentError):
    """Document or line item not found."""
    status_code = 404
    code = "document_not_found"


class InvalidStatusTransitionError(ReplenishmentError):
    """Status change not allowed from the current status."""
    status_code = 409
    code = "invalid_status_transition"


class InvalidQuantityError(ReplenishmentError):
    """Quantities must be zero or positive."""
    status_code = 400
    code = "invalid_quantity"
