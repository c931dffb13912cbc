"""
Error taxonomy shared by the service layer and the HTTP layer.

Services raise these; main.py turns them into `{"error": message}` responses
with the matching status code.
"""


class PortalError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(PortalError):
    """Missing or malformed input."""
    status_code = 400


class AuthenticationError(PortalError):
    """Missing, invalid or expired token."""
    status_code = 401


class AuthorizationError(PortalError):
    """Role or ownership mismatch."""
    status_code = 403


class NotFoundError(PortalError):
    status_code = 404


class ServerError(PortalError):
    status_code = 500
