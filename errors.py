"""
Error taxonomy shared by the services and the HTTP layer.

Each error carries the HTTP status the API answers with; main.py turns them
into the usual {"detail": ...} response.
"""


class RentalError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InputError(RentalError):
    """Input rejected before any network call was made."""
    status_code = 422


class AuthError(RentalError):
    status_code = 401


class VehicleUnavailableError(RentalError):
    status_code = 409

    def __init__(self, message: str = "This vehicle is no longer available"):
        super().__init__(message)


class DataError(RentalError):
    """A call to the database or storage failed."""

    def __init__(self, action: str, cause: object = None, status_code: int = 500):
        message = f"Failed to {action}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(RentalError):
    status_code = 404


class PermissionDeniedError(RentalError):
    status_code = 403
