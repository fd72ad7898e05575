from enum import Enum
from typing import Optional, Dict, Any
from datetime import datetime, timezone


class ErrorCode(str, Enum):
    UNKNOWN = "E0000"

    BUILD_STEP_FAILED = "E1000"
    BUILD_CONFIGURATION_ERROR = "E1001"
    BUILD_CANCELLED = "E1006"
    BUILD_PROVISIONING_ERROR = "E1009"
    BUILD_EXPORT_INCONSISTENT = "E1010"

    INVALID_DEFINITION = "E7001"

    EXTERNAL_SERVICE_ERROR = "E8000"


class ReproBuildError(Exception):
    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def __str__(self) -> str:
        return f"[{self.error_code.value}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code}, "
            f"details={self.details})"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code.value,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__,
        }


class RetryableException(ReproBuildError):
    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        max_retries: int = 3,
    ):
        super().__init__(message, error_code, details, cause)
        self.max_retries = max_retries
        self.retry_count = 0

    def should_retry(self) -> bool:
        return self.retry_count < self.max_retries

    def increment_retry(self) -> None:
        self.retry_count += 1


class NonRetryableException(ReproBuildError):
    pass


class DefinitionError(NonRetryableException):
    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        errors: Optional[list] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        details = details or {}
        if source:
            details["source"] = source
        if errors:
            details["errors"] = errors[:20]
        super().__init__(
            message=message,
            error_code=ErrorCode.INVALID_DEFINITION,
            details=details,
            cause=cause,
        )
        self.source = source
        self.errors = errors or []


class ComponentFetchError(RetryableException):
    def __init__(
        self,
        url: str,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        details = details or {}
        details["url"] = url
        if status_code:
            details["status_code"] = status_code
        # 4xx answers will not change on a second attempt
        retryable = status_code is None or status_code >= 500
        super().__init__(
            message=f"{url}: {message}",
            error_code=ErrorCode.EXTERNAL_SERVICE_ERROR,
            details=details,
            cause=cause,
            max_retries=3 if retryable else 0,
        )
        self.url = url
        self.status_code = status_code
