from typing import Optional, List
from pathlib import Path
import asyncio

from reprobuild.common.dto.build import PipelineDefinition, PipelineResult, ArtifactPackage
from reprobuild.common.dto.environment import BuildEnvironment
from reprobuild.common.config.constants import PipelineStage
from reprobuild.common.config.settings import Settings, get_settings
from reprobuild.common.config.logging_config import get_logger, get_build_logger
from reprobuild.common.exceptions.base_exceptions import ReproBuildError
from reprobuild.common.exceptions.build_exceptions import BuildCancelledException
from reprobuild.builder.command_runner import CommandRunner
from reprobuild.builder.toolchain_provisioner import ToolchainProvisioner
from reprobuild.builder.environment_manager import EnvironmentConfigurator
from reprobuild.builder.build_executor import BuildExecutor
from reprobuild.builder.artifact_collector import ArtifactExporter


logger = get_logger(__name__)


class BuildPipeline:
    def __init__(
        self,
        definition: PipelineDefinition,
        settings: Optional[Settings] = None,
        runner: Optional[CommandRunner] = None,
        provisioner: Optional[ToolchainProvisioner] = None,
        configurator: Optional[EnvironmentConfigurator] = None,
        executor: Optional[BuildExecutor] = None,
        exporter: Optional[ArtifactExporter] = None,
    ):
        self._definition = definition
        self._settings = settings or get_settings()
        runner = runner or CommandRunner()
        self._provisioner = provisioner or ToolchainProvisioner(self._settings, runner)
        self._configurator = configurator or EnvironmentConfigurator(self._settings)
        self._executor = executor or BuildExecutor(self._settings, runner)
        self._exporter = exporter or ArtifactExporter(self._settings)
        self.last_result: Optional[PipelineResult] = None

    @property
    def definition(self) -> PipelineDefinition:
        return self._definition

    def _check_cancelled(
        self,
        environment: BuildEnvironment,
        stage: PipelineStage,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise BuildCancelledException(
                run_id=environment.run_id,
                stage=stage.value,
            )

    async def run(
        self,
        source_dir: Path,
        export_to: Optional[Path] = None,
        tarball: Optional[Path] = None,
        build_info: Optional[Path] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PipelineResult:
        definition = self._definition
        export_to = Path(export_to) if export_to is not None else None
        tarball = Path(tarball) if tarball is not None else None
        environment = self._configurator.create_environment(definition)
        build_logger = get_build_logger(environment.run_id)

        result = PipelineResult(
            run_id=environment.run_id,
            definition_name=definition.name,
            pins=definition.pins(),
        )
        self.last_result = result
        result.start()

        build_logger.info(
            f"Starting pipeline '{definition.name}' with pins "
            f"{', '.join(c.pin for c in definition.components) or 'none'}"
        )

        try:
            self._check_cancelled(environment, PipelineStage.PROVISION, cancel_event)
            await self._provisioner.provision(environment, definition.components, cancel_event)

            self._check_cancelled(environment, PipelineStage.CONFIGURE, cancel_event)
            await self._configurator.configure(environment, source_dir, definition)

            self._check_cancelled(environment, PipelineStage.EXECUTE, cancel_event)
            await self._executor.execute(
                environment,
                definition.steps,
                definition.configuration,
                cancel_event,
            )

            self._check_cancelled(environment, PipelineStage.EXPORT, cancel_event)
            package = await self._exporter.export(environment, definition)

            retain = self._settings.keep_environment or (export_to is None and tarball is None)
            await self._deliver(environment, package, result, export_to, tarball, build_info, retain)
            result.complete(package)

            build_logger.info(
                f"Pipeline '{definition.name}' succeeded in {result.duration_seconds:.1f}s: "
                f"{package.file_count} files, content {package.content_digest[:12]}"
            )
            return result

        except BuildCancelledException as e:
            result.cancel(e)
            build_logger.warning(f"Pipeline '{definition.name}' cancelled: {e}")
            raise
        except ReproBuildError as e:
            result.fail(e)
            build_logger.error(f"Pipeline '{definition.name}' failed: {e}")
            raise
        except Exception as e:
            result.fail(e)
            build_logger.exception(f"Pipeline '{definition.name}' failed unexpectedly: {e}")
            raise
        finally:
            if self._settings.keep_environment or result.retained_at:
                result.retained_at = str(environment.root_dir)
                build_logger.info(f"Keeping environment at {environment.root_dir}")
            else:
                self._configurator.discard(environment)

    async def _deliver(
        self,
        environment: BuildEnvironment,
        package: ArtifactPackage,
        result: PipelineResult,
        export_to: Optional[Path],
        tarball: Optional[Path],
        build_info: Optional[Path],
        retain: bool,
    ) -> None:
        if export_to is not None:
            self._exporter.check_destination(export_to)
        export_existed = export_to is not None and export_to.exists()
        written: List[Path] = []

        try:
            if export_to is not None:
                written.append(export_to)
                result.exported_to = str(await self._exporter.copy_out(package, export_to))

            if tarball is not None:
                written.append(tarball)
                result.tarball_path = str(await self._exporter.create_tarball(package, tarball))

            if build_info is not None:
                written.append(build_info)
            snapshot = self._configurator.capture_snapshot(environment)
            info_path = await self._exporter.write_build_info(
                environment,
                self._definition,
                package,
                snapshot,
                output_path=build_info,
            )
        except Exception:
            self._retract(written, export_to, export_existed)
            result.exported_to = None
            result.tarball_path = None
            raise

        if retain:
            result.retained_at = str(environment.root_dir)
        if build_info is not None or retain:
            result.build_info_path = str(info_path)

    def _retract(
        self,
        written: List[Path],
        export_to: Optional[Path],
        export_existed: bool,
    ) -> None:
        for path in written:
            if path == export_to:
                self._exporter.remove_copy(path, keep_directory=export_existed)
            elif path.is_file():
                path.unlink()
                logger.info(f"Removed {path}")
