from typing import Optional


class StudioError(RuntimeError):
    status_code = 500


class ValidationError(StudioError):
    """Bad or missing user input. Never sent upstream."""

    status_code = 400


class AuthError(StudioError):
    status_code = 401


class UpstreamError(StudioError):
    """Adapter or network failure, including failed generations and malformed responses."""

    status_code = 502

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.upstream_status = status_code
        if status_code is not None and 400 <= status_code < 500:
            self.status_code = status_code


class GenerationTimeoutError(StudioError, TimeoutError):
    status_code = 504
