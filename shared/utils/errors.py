"""
shared/utils/errors.py
Error taxonomy shared by the policy modules and the routers.
main.py renders every DomainError as {"success": false, "error": message}.
"""


class DomainError(Exception):
    status_code: int = 500
    default_message: str = "Internal server error"
    headers: dict | None = None

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthenticationRequired(DomainError):
    status_code = 401
    default_message = "Authentication required"
    headers = {"WWW-Authenticate": "Bearer"}


class Forbidden(DomainError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(DomainError):
    status_code = 404
    default_message = "Not found"


class ValidationFailed(DomainError):
    status_code = 400
    default_message = "Invalid request data"


class Conflict(DomainError):
    status_code = 409
    default_message = "The resource was modified by another request"


class InternalError(DomainError):
    status_code = 500
    default_message = "Internal server error"
