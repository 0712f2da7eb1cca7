"""
Domain errors raised by the service layer.

Every error carries an HTTP-ish status code so the API layer can render it
without knowing which service raised it.
"""


class StokvelError(Exception):
    """Base exception for all stokvel operations"""
    status_code = 400

    def __init__(self, message, errors=None):
        super().__init__(message)
        self.message = message
        self.errors = list(errors) if errors else [message]

    def to_dict(self):
        return {
            'success': False,
            'message': self.message,
            'errors': self.errors
        }


class ValidationError(StokvelError):
    """Raised when input breaks one or more business rules.

    All violated rules are collected in ``errors``; the message joins them.
    """

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        super().__init__('; '.join(errors), errors)


class AuthorizationError(StokvelError):
    """Raised when the actor does not own the target resource"""
    status_code = 403


class NotFoundError(StokvelError):
    status_code = 404


class ConflictError(StokvelError):
    """Raised for duplicates, repeated terminal transitions and blocked deletes"""
    status_code = 409


class CapacityError(StokvelError):
    """Raised when a group already has maxMembers active memberships"""
    status_code = 409


class LedgerError(StokvelError):
    """Raised when the ledger store fails while applying a change"""
    status_code = 500
