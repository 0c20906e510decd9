"""Domain exceptions raised by the ledger and CRUD layers.

Route handlers never build error responses by hand: they let these
exceptions propagate and the handlers registered in ``main.py`` turn them
into the ``{"success": false, ...}`` envelope with the matching status code.
"""


class GradVillageError(Exception):
    """Base class for every error the API reports to clients."""

    status_code = 500
    code = "internal_server_error"

    def __init__(self, message: str, errors: list[dict] | None = None):
        super().__init__(message)
        self.message = message
        self.errors = errors


class ValidationError(GradVillageError):
    status_code = 400
    code = "validation_error"


class AmountInvalid(ValidationError):
    """Amount is zero, negative, or not acceptable for the target."""

    code = "amount_invalid"


class AmountExceeds(ValidationError):
    """Requested refund is larger than the original donation."""

    code = "amount_exceeds"


class AuthError(GradVillageError):
    status_code = 401
    code = "auth_error"


class AuthorizationError(GradVillageError):
    status_code = 403
    code = "forbidden"


class NotFoundError(GradVillageError):
    status_code = 404
    code = "not_found"


class ConflictError(GradVillageError):
    status_code = 409
    code = "conflict"


class InvalidState(ConflictError):
    """Record is not in the state the requested transition starts from."""

    status_code = 400
    code = "invalid_state"
