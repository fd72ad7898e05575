from reprobuild.common.dto.base import BaseDTO, FrozenModel
from reprobuild.common.dto.toolchain import (
    DownloadExtract,
    PackageManagerInstall,
    InstallMethod,
    ToolchainComponent,
    InstalledComponent,
    validate_exact_pin,
)
from reprobuild.common.dto.build import (
    BuildConfiguration,
    BuildStep,
    PipelineDefinition,
    ArtifactFile,
    ArtifactPackage,
    PipelineResult,
)
from reprobuild.common.dto.environment import (
    BuildEnvironment,
    EnvironmentSnapshot,
)

__all__ = [
    "BaseDTO",
    "FrozenModel",
    "DownloadExtract",
    "PackageManagerInstall",
    "InstallMethod",
    "ToolchainComponent",
    "InstalledComponent",
    "validate_exact_pin",
    "BuildConfiguration",
    "BuildStep",
    "PipelineDefinition",
    "ArtifactFile",
    "ArtifactPackage",
    "PipelineResult",
    "BuildEnvironment",
    "EnvironmentSnapshot",
]
