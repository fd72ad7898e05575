from typing import Optional, Dict, Any, List

from reprobuild.common.exceptions.base_exceptions import (
    NonRetryableException,
    ErrorCode,
)


class BuildException(NonRetryableException):
    stage_name: str = "build"

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.BUILD_STEP_FAILED,
        run_id: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        details = details or {}
        stage = stage or self.stage_name
        if run_id:
            details["run_id"] = run_id
        details["stage"] = stage
        super().__init__(message, error_code, details, cause)
        self.run_id = run_id
        self.stage = stage


class ProvisioningError(BuildException):
    stage_name = "provision"

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        version: Optional[str] = None,
        run_id: Optional[str] = None,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        details = details or {}
        if component:
            details["component"] = component
        if version:
            details["version"] = version
        if reason:
            details["reason"] = reason
        super().__init__(
            message=message,
            error_code=ErrorCode.BUILD_PROVISIONING_ERROR,
            run_id=run_id,
            details=details,
            cause=cause,
        )
        self.component = component
        self.version = version
        self.reason = reason


class ConfigurationError(BuildException):
    stage_name = "configure"

    def __init__(
        self,
        message: str,
        run_id: Optional[str] = None,
        path: Optional[str] = None,
        missing_variables: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        details = details or {}
        if path:
            details["path"] = path
        if missing_variables:
            details["missing_variables"] = missing_variables
        super().__init__(
            message=message,
            error_code=ErrorCode.BUILD_CONFIGURATION_ERROR,
            run_id=run_id,
            details=details,
            cause=cause,
        )
        self.path = path
        self.missing_variables = missing_variables or []


class BuildStepError(BuildException):
    stage_name = "execute"

    def __init__(
        self,
        message: str,
        step_index: int,
        step_name: str,
        command: Optional[List[str]] = None,
        exit_code: Optional[int] = None,
        log_excerpt: Optional[str] = None,
        log_path: Optional[str] = None,
        run_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        details = details or {}
        details["step_index"] = step_index
        details["step_name"] = step_name
        if command:
            details["command"] = " ".join(command)
        if exit_code is not None:
            details["exit_code"] = exit_code
        if log_path:
            details["log_path"] = log_path
        if log_excerpt:
            details["log_excerpt"] = log_excerpt[-1000:]
        super().__init__(
            message=message,
            error_code=ErrorCode.BUILD_STEP_FAILED,
            run_id=run_id,
            details=details,
            cause=cause,
        )
        self.step_index = step_index
        self.step_name = step_name
        self.command = command or []
        self.exit_code = exit_code
        self.log_excerpt = log_excerpt
        self.log_path = log_path


class ExportConsistencyError(BuildException):
    stage_name = "export"

    def __init__(
        self,
        message: str,
        expected_path: str,
        run_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["expected_path"] = expected_path
        super().__init__(
            message=message,
            error_code=ErrorCode.BUILD_EXPORT_INCONSISTENT,
            run_id=run_id,
            details=details,
        )
        self.expected_path = expected_path


class BuildCancelledException(NonRetryableException):
    def __init__(
        self,
        message: str = "Build was cancelled",
        run_id: Optional[str] = None,
        stage: Optional[str] = None,
        next_step: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if run_id:
            details["run_id"] = run_id
        if stage:
            details["stage"] = stage
        if next_step:
            details["next_step"] = next_step
        super().__init__(
            message=message,
            error_code=ErrorCode.BUILD_CANCELLED,
            details=details,
        )
        self.run_id = run_id
        self.stage = stage
        self.next_step = next_step
