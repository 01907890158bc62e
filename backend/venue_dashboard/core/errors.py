"""Error codes and exceptions shared by the dashboard services."""

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    """Dashboard error codes."""

    NETWORK_ERROR = "NETWORK_ERROR"
    API_ERROR = "API_ERROR"
    MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    TIMING_NOT_CONFIGURED = "TIMING_NOT_CONFIGURED"


class DashboardError(Exception):
    """Base error with code and user-safe message."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class DataApiError(DashboardError):
    """Raised when the data API cannot be reached or answers with an error."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Any = None,
        code: ErrorCode = ErrorCode.API_ERROR,
    ) -> None:
        super().__init__(code=code, message=message)
        self.status_code = status_code
        self.body = body

    @classmethod
    def network(cls, message: str) -> "DataApiError":
        return cls(message, code=ErrorCode.NETWORK_ERROR)

    @classmethod
    def malformed(cls, message: str) -> "DataApiError":
        return cls(message, code=ErrorCode.MALFORMED_RESPONSE)


class FormValidationError(DashboardError):
    """Raised when submitted data is missing required fields."""

    def __init__(self, errors: dict[str, str]) -> None:
        fields = ", ".join(sorted(errors))
        super().__init__(
            code=ErrorCode.VALIDATION_ERROR,
            message=f"Invalid or missing fields: {fields}",
        )
        self.errors = errors
