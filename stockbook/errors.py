"""
Typed exceptions for the stockbook application.

Every error carries a class-level ``code`` (machine readable, returned to
API clients) and ``http_status`` (used by the Flask error handler). Extra
structured fields are kept as attributes and copied into the JSON body by
``to_dict``, except for 5xx errors, whose body carries only the code and a
generic message.

    StockbookError
    +-- ValidationError
    |   +-- InvalidUnitCombination
    |   +-- ThresholdOrderingViolation
    +-- Unauthorized
    +-- NotFound
    +-- Conflict
    +-- InsufficientStock
    +-- ConcurrentModification
    +-- PersistenceError
        +-- CompensationFailure
"""


SERVER_ERROR_MESSAGE = 'Internal server error. The failure has been logged.'


class StockbookError(Exception):
    """Base class for all application errors."""

    code = 'STOCKBOOK_ERROR'
    http_status = 500

    def __init__(self, message=None):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)

    def to_dict(self):
        # Store failures stay in the server log; clients only see the code
        if self.http_status >= 500:
            return {'error': self.code, 'message': SERVER_ERROR_MESSAGE}
        payload = {'error': self.code, 'message': self.message}
        for key, value in vars(self).items():
            if key.startswith('_') or key in ('message', 'args'):
                continue
            payload[key] = value
        return payload


class ValidationError(StockbookError):
    """Input failed shape or range validation."""

    code = 'VALIDATION_ERROR'
    http_status = 400

    def __init__(self, message, field=None):
        self.field = field
        super().__init__(message)


class InvalidUnitCombination(ValidationError):
    code = 'INVALID_UNIT_COMBINATION'

    def __init__(self, unit_type, base_unit):
        self.unit_type = unit_type
        self.base_unit = base_unit
        super().__init__(
            f"base_unit '{base_unit}' is not valid for unit_type '{unit_type}'",
            field='base_unit',
        )


class ThresholdOrderingViolation(ValidationError):
    code = 'THRESHOLD_ORDERING_VIOLATION'

    def __init__(self, reorder_level, critical_level):
        self.reorder_level = reorder_level
        self.critical_level = critical_level
        super().__init__('critical_level must be <= reorder_level', field='critical_level')


class Unauthorized(StockbookError):
    """Authentication required."""

    code = 'UNAUTHORIZED'
    http_status = 401


class NotFound(StockbookError):
    """Referenced entity does not exist or is not owned by the caller."""

    code = 'NOT_FOUND'
    http_status = 404

    def __init__(self, entity, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f'{entity} not found: {entity_id}')


class Conflict(StockbookError):
    """Uniqueness violation."""

    code = 'CONFLICT'
    http_status = 409


class InsufficientStock(StockbookError):
    """A sale asked for more boxes than the batch has left."""

    code = 'INSUFFICIENT_STOCK'
    http_status = 400

    def __init__(self, batch_id, requested, available):
        self.batch_id = batch_id
        self.requested = requested
        self.available = available
        super().__init__(f'Insufficient stock. Available: {available}, Requested: {requested}')


class ConcurrentModification(StockbookError):
    """The batch changed between the stock check and the decrement."""

    code = 'CONCURRENT_MODIFICATION'
    http_status = 409

    def __init__(self, batch_id, expected_remaining):
        self.batch_id = batch_id
        self.expected_remaining = expected_remaining
        super().__init__(
            f'Batch {batch_id} was modified concurrently '
            f'(expected {expected_remaining} boxes remaining)'
        )


class PersistenceError(StockbookError):
    """The store rejected or failed a read or write."""

    code = 'PERSISTENCE_ERROR'
    http_status = 500


class CompensationFailure(PersistenceError):
    """A step failed and undoing the earlier step failed too.

    The record named by ``orphan_id`` needs manual repair. ``original`` is
    the step failure that triggered the undo, ``cause`` the undo's own error.
    """

    code = 'COMPENSATION_FAILURE'

    def __init__(self, step, orphan_id, cause, original=None):
        self.step = step
        self.orphan_id = orphan_id
        self.cause = str(cause)
        self.original = None if original is None else str(original)
        super().__init__(
            f'Manual intervention required: compensation of step {step!r} failed, '
            f'record {orphan_id} left behind ({cause}); undo was triggered by: {self.original}'
        )
