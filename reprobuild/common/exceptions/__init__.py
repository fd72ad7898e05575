from reprobuild.common.exceptions.base_exceptions import (
    ReproBuildError,
    ErrorCode,
    RetryableException,
    NonRetryableException,
    DefinitionError,
    ComponentFetchError,
)
from reprobuild.common.exceptions.build_exceptions import (
    BuildException,
    ProvisioningError,
    ConfigurationError,
    BuildStepError,
    ExportConsistencyError,
    BuildCancelledException,
)

__all__ = [
    "ReproBuildError",
    "ErrorCode",
    "RetryableException",
    "NonRetryableException",
    "DefinitionError",
    "ComponentFetchError",
    "BuildException",
    "ProvisioningError",
    "ConfigurationError",
    "BuildStepError",
    "ExportConsistencyError",
    "BuildCancelledException",
]
