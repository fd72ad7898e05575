from typing import Optional
from pathlib import Path
from uuid import uuid4
import asyncio
import platform
import shutil

from reprobuild.common.dto.build import PipelineDefinition
from reprobuild.common.dto.environment import BuildEnvironment, EnvironmentSnapshot
from reprobuild.common.config.constants import PipelineStage
from reprobuild.common.config.settings import Settings, get_settings
from reprobuild.common.config.logging_config import get_logger, get_build_logger
from reprobuild.common.exceptions.build_exceptions import ConfigurationError
from reprobuild.common.utils.file_utils import ensure_directory, cleanup_directory, copy_tree


logger = get_logger(__name__)


class EnvironmentConfigurator:
    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings or get_settings()
        self._work_root = Path(self._settings.work_root)

    def create_environment(
        self,
        definition: PipelineDefinition,
        run_id: Optional[str] = None,
    ) -> BuildEnvironment:
        run_id = run_id or uuid4().hex[:12]
        root_dir = self._work_root / run_id

        if root_dir.exists():
            raise ConfigurationError(
                f"Environment directory already exists: {root_dir}",
                run_id=run_id,
                path=str(root_dir),
            )

        try:
            ensure_directory(root_dir)
            environment = BuildEnvironment(
                run_id=run_id,
                base_image=definition.base_image,
                root_dir=root_dir,
                tools_dir=ensure_directory(root_dir / "tools"),
                downloads_dir=ensure_directory(root_dir / "downloads"),
                logs_dir=ensure_directory(root_dir / "logs"),
                workspace_dir=ensure_directory(root_dir / "workspace"),
            )
            ensure_directory(environment.bin_dir)
        except OSError as e:
            raise ConfigurationError(
                f"Cannot create environment directory {root_dir}: {e}",
                run_id=run_id,
                path=str(root_dir),
                cause=e,
            ) from e

        logger.info(f"Created environment {run_id} at {root_dir} (base image {definition.base_image})")
        return environment

    async def configure(
        self,
        environment: BuildEnvironment,
        source_dir: Path,
        definition: PipelineDefinition,
    ) -> BuildEnvironment:
        build_logger = get_build_logger(environment.run_id, stage=PipelineStage.CONFIGURE.value)
        source_dir = Path(source_dir)

        if not source_dir.is_dir():
            raise ConfigurationError(
                f"Source directory does not exist: {source_dir}",
                run_id=environment.run_id,
                path=str(source_dir),
            )

        if environment.root_dir.resolve().is_relative_to(source_dir.resolve()):
            raise ConfigurationError(
                f"Environment {environment.root_dir} lies inside the source tree {source_dir}",
                run_id=environment.run_id,
                path=str(source_dir),
            )

        destination = environment.workspace_dir / definition.source_name
        build_logger.info(f"Staging source {source_dir} into {destination}")

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None,
                copy_tree,
                source_dir,
                destination,
                definition.source_excludes,
            )
        except (OSError, shutil.Error) as e:
            raise ConfigurationError(
                f"Failed to stage source tree: {e}",
                run_id=environment.run_id,
                path=str(destination),
                cause=e,
            ) from e

        working_dir = destination
        if definition.working_subdir:
            working_dir = destination / definition.working_subdir
        if not working_dir.is_dir():
            raise ConfigurationError(
                f"Working directory '{definition.working_subdir}' not found in source tree",
                run_id=environment.run_id,
                path=str(working_dir),
            )

        variables = definition.configuration.to_environment()
        environment.variables = variables
        environment.working_dir = working_dir

        for name, value in sorted(variables.items()):
            build_logger.info(f"Build variable {name}={value}")
        build_logger.info(f"Working directory set to {working_dir}")
        return environment

    def capture_snapshot(self, environment: BuildEnvironment) -> EnvironmentSnapshot:
        return EnvironmentSnapshot(
            run_id=environment.run_id,
            base_image=environment.base_image,
            os_name=platform.system(),
            os_release=platform.release(),
            machine=platform.machine(),
            python_version=platform.python_version(),
            components=list(environment.installed_components),
            variables=dict(environment.variables),
            working_dir=str(environment.working_dir) if environment.working_dir else None,
        )

    def discard(self, environment: BuildEnvironment) -> bool:
        removed = cleanup_directory(environment.root_dir)
        if removed:
            logger.info(f"Discarded environment {environment.run_id}")
        return removed
