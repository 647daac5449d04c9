"""Exception types shared by the forwarder and the HTTP layer."""


class AppError(Exception):
    """Application error carrying an HTTP status code.

    ``is_operational`` marks expected failures (bad input, missing resources)
    as opposed to programming errors.
    """

    def __init__(self, message: str, status_code: int = 500, is_operational: bool = True):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.is_operational = is_operational


class CLSTransportError(Exception):
    """Raised when a batch could not be delivered to CLS."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
