class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class InsufficientStockError(ValidationError):
    pass


class CommitError(AppError):
    """An atomic write failed and was rolled back."""
