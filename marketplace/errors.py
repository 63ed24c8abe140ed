"""Typed business errors raised by the transaction engine.

Services raise these; the app factory turns them into JSON responses.
"""


class MarketplaceError(Exception):
    status_code = 400
    code = 'error'

    def __init__(self, message=None, **extra):
        super().__init__(message or self.default_message())
        self.message = message or self.default_message()
        self.extra = extra

    def default_message(self):
        return 'Request failed'

    def to_dict(self):
        data = {'error': self.message, 'code': self.code}
        data.update(self.extra)
        return data


class NotFoundError(MarketplaceError):
    status_code = 404
    code = 'not_found'

    def __init__(self, entity, entity_id=None, message=None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            message or f'{entity} not found',
            entity=entity,
            id=entity_id)


class ForbiddenError(MarketplaceError):
    status_code = 403
    code = 'forbidden'

    def default_message(self):
        return 'Insufficient permissions'


class ValidationError(MarketplaceError):
    code = 'validation_error'

    def __init__(self, message, field=None):
        self.field = field
        extra = {'field': field} if field else {}
        super().__init__(message, **extra)


def _status_value(status):
    return getattr(status, 'value', status)


class InvalidTransitionError(MarketplaceError):
    status_code = 409
    code = 'invalid_transition'

    def __init__(self, message, current_status=None, allowed=()):
        self.current_status = _status_value(current_status)
        self.allowed = [_status_value(s) for s in allowed]
        super().__init__(
            message,
            current_status=self.current_status,
            allowed=self.allowed)


class ExpiredError(InvalidTransitionError):
    code = 'expired'


class RequirementNotMetError(MarketplaceError):
    status_code = 409
    code = 'requirement_not_met'

    def __init__(self, message, reasons=()):
        self.reasons = list(reasons)
        super().__init__(message, reasons=self.reasons)


class DesignRequiredError(RequirementNotMetError):
    code = 'design_required'

    def __init__(self, message=None):
        super().__init__(
            message or (
                'An approved design is required before a quote can be sent '
                'for this item'
            ),
            reasons=['design_missing'])


class IncompleteCheckoutSessionError(MarketplaceError):
    status_code = 409
    code = 'incomplete_checkout_session'

    def __init__(self, checkout_session_ids, message=None):
        self.checkout_session_ids = list(checkout_session_ids)
        super().__init__(
            message or (
                'Some orders from the same checkout session are not ready '
                'to ship'
            ),
            checkout_session_ids=self.checkout_session_ids)


class CrossSellerCopyError(MarketplaceError):
    status_code = 403
    code = 'cross_seller_copy'

    def default_message(self):
        return 'Design approvals can only be copied within the same seller'
