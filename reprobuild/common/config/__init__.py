from reprobuild.common.config.settings import Settings, get_settings
from reprobuild.common.config.logging_config import setup_logging, get_logger, get_build_logger
from reprobuild.common.config.constants import (
    BuildStatus,
    PipelineStage,
    InstallKind,
    PackageManager,
    DependencySource,
)

__all__ = [
    "Settings",
    "get_settings",
    "setup_logging",
    "get_logger",
    "get_build_logger",
    "BuildStatus",
    "PipelineStage",
    "InstallKind",
    "PackageManager",
    "DependencySource",
]
