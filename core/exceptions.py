"""
core/exceptions.py
Application error hierarchy. Each error carries the HTTP status the API
layer answers with; rule violations are never raised, they are data.
"""


class AppError(Exception):
    """Base class for all operational errors raised by the services."""

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AppError):
    """Request rejected; `details` lists every individual reason."""

    status_code = 400

    def __init__(self, message: str, details: list[str] | None = None):
        super().__init__(message)
        self.details = details


class NotFoundError(AppError):
    status_code = 404

    def __init__(self, resource: str):
        super().__init__(f"{resource} not found")
        self.resource = resource


class ConflictError(AppError):
    status_code = 409
