"""Exception taxonomy shared by every service.

Permission and validation errors are raised before any store call.
Store failures surface as TransientStoreError with a generic message.
"""


class CotaskError(Exception):
    """Base application error class."""

    status_code = 400
    default_message = "Request failed."

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ForbiddenError(CotaskError):
    """The permission resolver denies the action."""

    status_code = 403
    default_message = "You do not have permission to perform this action."


class NotFoundError(CotaskError):
    """Target user or resource is absent (or invisible to the caller)."""

    status_code = 404
    default_message = "Resource not found."


class AlreadyExistsError(CotaskError):
    """Duplicate relationship, grant or username."""

    status_code = 409
    default_message = "Resource already exists."


class SelfReferenceError(CotaskError):
    """Self-targeting connection request or share."""

    status_code = 400
    default_message = "You cannot target yourself."


class ValidationError(CotaskError):
    """Client input rejected before it reaches the store."""

    status_code = 422
    default_message = "Validation failed."


class AuthenticationError(CotaskError):
    status_code = 401
    default_message = "Invalid or expired token."


class TransientStoreError(CotaskError):
    """Network or backend failure. Re-issue the action to retry."""

    status_code = 503
    default_message = "The data store is unavailable. Please try again."
