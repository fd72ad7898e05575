from reprobuild.builder.command_runner import CommandRunner, CommandResult
from reprobuild.builder.toolchain_provisioner import (
    ToolchainProvisioner,
    ComponentInstaller,
    DownloadExtractInstaller,
    PackageManagerInstaller,
)
from reprobuild.builder.environment_manager import EnvironmentConfigurator
from reprobuild.builder.build_executor import BuildExecutor, StepResult
from reprobuild.builder.artifact_collector import ArtifactExporter, build_manifest

__all__ = [
    "CommandRunner",
    "CommandResult",
    "ToolchainProvisioner",
    "ComponentInstaller",
    "DownloadExtractInstaller",
    "PackageManagerInstaller",
    "EnvironmentConfigurator",
    "BuildExecutor",
    "StepResult",
    "ArtifactExporter",
    "build_manifest",
]
