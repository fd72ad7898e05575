from typing import Optional, Dict, List, Callable, Type
from abc import ABC, abstractmethod
from fnmatch import fnmatch
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse
import asyncio
import shutil
import tarfile

import aiohttp

from reprobuild.common.dto.toolchain import (
    DownloadExtract,
    PackageManagerInstall,
    ToolchainComponent,
    InstalledComponent,
)
from reprobuild.common.dto.environment import BuildEnvironment
from reprobuild.common.config.constants import ArchiveFormat, PackageManager, InstallKind, PipelineStage
from reprobuild.common.config.settings import Settings, get_settings
from reprobuild.common.config.logging_config import get_logger, get_build_logger
from reprobuild.common.exceptions.base_exceptions import ComponentFetchError
from reprobuild.common.exceptions.build_exceptions import (
    ProvisioningError,
    BuildCancelledException,
)
from reprobuild.common.utils.retry import RetryConfig, async_with_retry
from reprobuild.common.utils.hash_utils import hash_file
from reprobuild.common.utils.file_utils import ensure_directory, make_executable, is_safe_relative_path
from reprobuild.builder.command_runner import CommandRunner


logger = get_logger(__name__)


class ComponentInstaller(ABC):
    @abstractmethod
    async def install(
        self,
        component: ToolchainComponent,
        environment: BuildEnvironment,
    ) -> InstalledComponent:
        pass


class DownloadExtractInstaller(ComponentInstaller):
    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings or get_settings()
        self._unpackers: Dict[ArchiveFormat, Callable] = {
            ArchiveFormat.TAR: self._extract,
            ArchiveFormat.BINARY: self._place_binary,
        }

    async def install(
        self,
        component: ToolchainComponent,
        environment: BuildEnvironment,
    ) -> InstalledComponent:
        method: DownloadExtract = component.install
        url = method.render_url(component.version)

        archive_name = PurePosixPath(urlparse(url).path).name or f"{component.name}.archive"
        archive_path = ensure_directory(environment.downloads_dir) / archive_name

        retry_config = RetryConfig(
            max_retries=self._settings.download_retries,
            initial_delay=self._settings.download_retry_delay_seconds,
            retryable_exceptions=(ComponentFetchError,),
        )

        try:
            await async_with_retry(self._download, retry_config, url, archive_path)
        except ComponentFetchError as e:
            raise ProvisioningError(
                f"Failed to fetch {component.pin}: {e.message}",
                component=component.name,
                version=component.version,
                run_id=environment.run_id,
                reason="fetch_failed",
                details=dict(e.details),
                cause=e,
            ) from e

        loop = asyncio.get_running_loop()
        extracted = await loop.run_in_executor(
            None,
            self._unpackers[method.archive_format],
            component,
            archive_path,
            ensure_directory(environment.bin_dir),
        )

        if not any(path.name == method.executable for path in extracted):
            raise ProvisioningError(
                f"Archive for {component.pin} did not contain executable '{method.executable}'",
                component=component.name,
                version=component.version,
                run_id=environment.run_id,
                reason="executable_missing",
                details={"extracted": [str(p) for p in extracted]},
            )

        return InstalledComponent(
            name=component.name,
            version=component.version,
            method=InstallKind.DOWNLOAD_EXTRACT.value,
            installed_paths=[str(p) for p in extracted],
            path_entries=[str(environment.bin_dir)],
            source_url=url,
            archive_sha256=hash_file(archive_path),
        )

    async def _download(self, url: str, destination: Path) -> Path:
        timeout = aiohttp.ClientTimeout(total=self._settings.download_timeout_seconds)
        logger.info(f"Downloading {url}")

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        raise ComponentFetchError(
                            url,
                            f"HTTP {response.status}",
                            status_code=response.status,
                        )
                    with open(destination, "wb") as f:
                        async for chunk in response.content.iter_chunked(
                            self._settings.download_chunk_size
                        ):
                            f.write(chunk)
        except aiohttp.ClientError as e:
            raise ComponentFetchError(url, f"Request failed: {e}", cause=e) from e
        except asyncio.TimeoutError as e:
            raise ComponentFetchError(url, "Request timed out", cause=e) from e

        logger.debug(f"Downloaded {url} to {destination}")
        return destination

    def _place_binary(
        self,
        component: ToolchainComponent,
        archive_path: Path,
        bin_dir: Path,
    ) -> List[Path]:
        destination = bin_dir / component.install.executable
        shutil.copyfile(archive_path, destination)
        make_executable(destination)
        return [destination]

    def _extract(
        self,
        component: ToolchainComponent,
        archive_path: Path,
        bin_dir: Path,
    ) -> List[Path]:
        method: DownloadExtract = component.install
        pattern = method.render_pattern(component.version)
        strip_components = method.strip_components
        extracted: List[Path] = []

        try:
            with tarfile.open(archive_path, "r:*") as tar:
                for member in tar.getmembers():
                    if not member.isfile() or not fnmatch(member.name, pattern):
                        continue

                    parts = PurePosixPath(member.name).parts[strip_components:]
                    if not parts:
                        continue

                    relative = "/".join(parts)
                    if not is_safe_relative_path(relative):
                        raise ProvisioningError(
                            f"Archive member escapes the tool directory: {member.name}",
                            component=component.name,
                            version=component.version,
                            reason="unsafe_member",
                        )

                    destination = bin_dir / relative
                    destination.parent.mkdir(parents=True, exist_ok=True)
                    source = tar.extractfile(member)
                    if source is None:
                        continue
                    with source, open(destination, "wb") as out:
                        shutil.copyfileobj(source, out)
                    make_executable(destination)
                    extracted.append(destination)
        except tarfile.TarError as e:
            raise ProvisioningError(
                f"Cannot read archive for {component.pin}: {e}",
                component=component.name,
                version=component.version,
                reason="bad_archive",
                cause=e,
            ) from e

        if not extracted:
            raise ProvisioningError(
                f"No archive members of {component.pin} matched '{pattern}'",
                component=component.name,
                version=component.version,
                reason="no_matching_members",
            )

        return extracted


class PackageManagerInstaller(ComponentInstaller):
    def __init__(
        self,
        settings: Optional[Settings] = None,
        runner: Optional[CommandRunner] = None,
    ):
        self._settings = settings or get_settings()
        self._runner = runner or CommandRunner()
        self._command_builders: Dict[PackageManager, Callable] = {
            PackageManager.CARGO: self._cargo_command,
            PackageManager.NPM: self._npm_command,
            PackageManager.RUSTUP: self._rustup_command,
        }

    def build_command(
        self,
        component: ToolchainComponent,
        environment: BuildEnvironment,
    ) -> List[str]:
        method: PackageManagerInstall = component.install
        return self._command_builders[method.manager](component, method, environment)

    def _cargo_command(
        self,
        component: ToolchainComponent,
        method: PackageManagerInstall,
        environment: BuildEnvironment,
    ) -> List[str]:
        return [
            "cargo", "install", method.package or component.name,
            "--version", component.version,
            "--root", str(environment.tools_dir),
            *method.extra_args,
        ]

    def _npm_command(
        self,
        component: ToolchainComponent,
        method: PackageManagerInstall,
        environment: BuildEnvironment,
    ) -> List[str]:
        return [
            "npm", "install", "--global",
            "--prefix", str(environment.tools_dir),
            f"{method.package or component.name}@{component.version}",
            *method.extra_args,
        ]

    def _rustup_command(
        self,
        component: ToolchainComponent,
        method: PackageManagerInstall,
        environment: BuildEnvironment,
    ) -> List[str]:
        return [
            "rustup-init", "-y", "--no-modify-path",
            "--default-toolchain", component.version,
            *method.extra_args,
        ]

    def _contributed_variables(
        self,
        component: ToolchainComponent,
        method: PackageManagerInstall,
        environment: BuildEnvironment,
    ) -> Dict[str, str]:
        cargo_home = str(environment.tools_dir / "cargo")
        variables: Dict[str, str] = {}
        if method.manager == PackageManager.CARGO:
            variables["CARGO_HOME"] = cargo_home
        elif method.manager == PackageManager.RUSTUP:
            variables.update(
                CARGO_HOME=cargo_home,
                RUSTUP_HOME=str(environment.tools_dir / "rustup"),
                RUSTUP_TOOLCHAIN=component.version,
            )
        variables.update(method.environment)
        return variables

    async def install(
        self,
        component: ToolchainComponent,
        environment: BuildEnvironment,
    ) -> InstalledComponent:
        method: PackageManagerInstall = component.install
        argv = self.build_command(component, environment)

        variables = self._contributed_variables(component, method, environment)
        env = environment.process_env(self._settings.passthrough_env_vars)
        env.update(variables)

        log_path = environment.logs_dir / f"provision-{component.name}.log"
        result = await self._runner.run(argv, environment.root_dir, env, log_path)

        if not result.succeeded:
            raise ProvisioningError(
                f"Installing {component.pin} with {method.manager.value} "
                f"exited with code {result.exit_code}",
                component=component.name,
                version=component.version,
                run_id=environment.run_id,
                reason="install_command_failed",
                details={
                    "command": " ".join(argv),
                    "exit_code": result.exit_code,
                    "log_path": str(log_path),
                    "log_excerpt": result.output_tail[-1000:],
                },
            )

        if method.manager == PackageManager.RUSTUP:
            path_entries = [str(environment.tools_dir / "cargo" / "bin")]
        else:
            path_entries = [str(environment.bin_dir)]

        return InstalledComponent(
            name=component.name,
            version=component.version,
            method=f"{InstallKind.PACKAGE_MANAGER.value}:{method.manager.value}",
            path_entries=path_entries,
            variables=variables,
        )


class ToolchainProvisioner:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        runner: Optional[CommandRunner] = None,
        installers: Optional[Dict[Type, ComponentInstaller]] = None,
    ):
        self._settings = settings or get_settings()
        self._installers: Dict[Type, ComponentInstaller] = installers or {
            DownloadExtract: DownloadExtractInstaller(self._settings),
            PackageManagerInstall: PackageManagerInstaller(self._settings, runner),
        }

    async def provision(
        self,
        environment: BuildEnvironment,
        components: List[ToolchainComponent],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[InstalledComponent]:
        installed: List[InstalledComponent] = []

        for component in components:
            build_logger = get_build_logger(
                environment.run_id,
                stage=PipelineStage.PROVISION.value,
                component=component.name,
            )

            if cancel_event is not None and cancel_event.is_set():
                raise BuildCancelledException(
                    run_id=environment.run_id,
                    stage=PipelineStage.PROVISION.value,
                    next_step=component.name,
                )

            if environment.is_installed(component.name):
                raise ProvisioningError(
                    f"Component {component.name} is already installed in this environment",
                    component=component.name,
                    version=component.version,
                    run_id=environment.run_id,
                    reason="duplicate_component",
                )

            missing = [r for r in component.requires if not environment.is_installed(r)]
            if missing:
                raise ProvisioningError(
                    f"Component {component.name} requires {missing}, which are not installed",
                    component=component.name,
                    version=component.version,
                    run_id=environment.run_id,
                    reason="missing_prerequisite",
                )

            installer = self._installers.get(type(component.install))
            if installer is None:
                raise ProvisioningError(
                    f"No installer for method '{component.install.kind}'",
                    component=component.name,
                    version=component.version,
                    run_id=environment.run_id,
                    reason="unsupported_method",
                )

            build_logger.info(f"Provisioning {component.pin} via {component.install.kind}")

            try:
                record = await installer.install(component, environment)
            except ProvisioningError as e:
                if e.run_id is None:
                    e.run_id = environment.run_id
                    e.details["run_id"] = environment.run_id
                raise
            except OSError as e:
                raise ProvisioningError(
                    f"Installing {component.pin} failed: {e}",
                    component=component.name,
                    version=component.version,
                    run_id=environment.run_id,
                    reason="os_error",
                    cause=e,
                ) from e

            environment.record_installation(record)
            installed.append(record)
            build_logger.info(f"Provisioned {component.pin}")

        return installed
