"""Dispatch error taxonomy.

Services raise these; ``medidispatch.main`` maps them to HTTP responses with a
``{"error": message}`` body.
"""


class DispatchError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(DispatchError):
    status_code = 400


class AuthenticationError(DispatchError):
    status_code = 401


class AuthorizationError(DispatchError):
    status_code = 403


class NotFoundError(DispatchError):
    status_code = 404


class ConflictError(DispatchError):
    status_code = 409


class InternalError(DispatchError):
    status_code = 500

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(message)
