class FitstakeError(Exception):
    """Base error for rejections surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(FitstakeError):
    status_code = 400


class AuthenticationError(FitstakeError):
    status_code = 401


class NotFoundError(FitstakeError):
    status_code = 404


class ConflictError(FitstakeError):
    status_code = 409


class SettlementError(Exception):
    """A settlement-layer call failed or was not confirmed."""
