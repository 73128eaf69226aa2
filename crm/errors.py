"""
Error taxonomy for the pricing and commission engine.

Every error carries a machine readable ``code``, the HTTP status the route
layer should answer with, and a ``details`` dict that is safe to serialize.
"""


class CRMError(Exception):
    code = 'CRM_ERROR'
    status_code = 400

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self):
        return {
            'success': False,
            'error': self.message,
            'code': self.code,
            'details': self.details,
        }


class ValidationError(CRMError):
    """Malformed or out-of-range input. Always fixable by the caller."""
    code = 'VALIDATION_ERROR'
    status_code = 400

    def __init__(self, field, reason):
        super().__init__(f'{field}: {reason}', {'field': field, 'reason': reason})
        self.field = field
        self.reason = reason


class PricingConfigError(ValidationError):
    """Raised while loading a pricing table that does not pass validation"""
    code = 'PRICING_CONFIG_ERROR'
    status_code = 500


class InvalidTransitionError(CRMError):
    code = 'INVALID_TRANSITION'
    status_code = 409

    def __init__(self, current, attempted, reason=None):
        current = getattr(current, 'value', current)
        attempted = getattr(attempted, 'value', attempted)
        message = f"Cannot transition from '{current}' to '{attempted}'"
        if reason:
            message = f'{message}: {reason}'
        super().__init__(message, {'current_status': current, 'attempted_status': attempted})
        self.current = current
        self.attempted = attempted
        self.reason = reason


class AuthorizationError(InvalidTransitionError):
    """The acting user's role may not perform the requested transition"""
    code = 'AUTHORIZATION_ERROR'
    status_code = 403


class ConsistencyError(CRMError):
    code = 'CONSISTENCY_ERROR'
    status_code = 422


class NotFoundError(CRMError):
    code = 'NOT_FOUND'
    status_code = 404

    def __init__(self, resource, resource_id=None):
        if resource_id:
            message = f"{resource} with ID '{resource_id}' not found"
        else:
            message = f'{resource} not found'
        super().__init__(message, {'resource': resource, 'id': resource_id})
