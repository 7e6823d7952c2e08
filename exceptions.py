"""
Error taxonomy for the analytics core.

Engines raise these; the Flask layer turns them into
{"error": {"code": ..., "message": ...}} responses.
"""


class PhishSimError(Exception):
    code = 'internal_error'
    status_code = 500

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self):
        error = {'code': self.code, 'message': self.message}
        if self.details:
            error['details'] = self.details
        return {'error': error}


class NotFoundError(PhishSimError):
    """Referenced user, training, badge or campaign does not exist."""
    code = 'not_found'
    status_code = 404


class ValidationError(PhishSimError):
    """Malformed input. Raised before any state is mutated."""
    code = 'validation_error'
    status_code = 400


class InternalError(PhishSimError):
    """Store unavailable or unexpected failure."""
    code = 'internal_error'
    status_code = 500
