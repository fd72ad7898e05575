from typing import Optional, List, Tuple, Dict, Any
from pathlib import Path
import asyncio
import gzip
import json
import os
import shutil
import stat
import tarfile

from reprobuild.common.dto.build import ArtifactFile, ArtifactPackage, PipelineDefinition
from reprobuild.common.dto.environment import BuildEnvironment, EnvironmentSnapshot
from reprobuild.common.config.constants import PipelineStage
from reprobuild.common.config.settings import Settings, get_settings
from reprobuild.common.config.logging_config import get_logger, get_build_logger
from reprobuild.common.exceptions.build_exceptions import ExportConsistencyError
from reprobuild.common.utils.hash_utils import (
    compute_hash,
    compute_structure_hash,
    hash_file,
    list_tree,
)
from reprobuild.common.utils.file_utils import ensure_directory, cleanup_directory
from reprobuild.common.utils.time_utils import utc_now


logger = get_logger(__name__)


def build_manifest(directory: Path) -> Tuple[List[ArtifactFile], List[str], str, str]:
    entries = list_tree(directory)
    directories = [relative for relative, _ in entries if relative.endswith("/")]
    files = [
        ArtifactFile(
            path=relative_path,
            size_bytes=file_path.stat().st_size,
            sha256=hash_file(file_path),
        )
        for relative_path, file_path in entries
        if not relative_path.endswith("/")
    ]
    structure_digest = compute_structure_hash([relative for relative, _ in entries])
    content_digest = compute_hash("\n".join(f"{f.path}:{f.sha256}" for f in files))
    return files, directories, structure_digest, content_digest


class ArtifactExporter:
    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings or get_settings()

    def resolve_output(
        self,
        environment: BuildEnvironment,
        definition: PipelineDefinition,
    ) -> Path:
        return environment.working_dir / definition.output_path

    async def export(
        self,
        environment: BuildEnvironment,
        definition: PipelineDefinition,
    ) -> ArtifactPackage:
        build_logger = get_build_logger(environment.run_id, stage=PipelineStage.EXPORT.value)

        if environment.working_dir is None:
            raise ExportConsistencyError(
                "Environment has no working directory to export from",
                expected_path=definition.output_path,
                run_id=environment.run_id,
            )

        output_dir = self.resolve_output(environment, definition)

        if not output_dir.exists():
            raise ExportConsistencyError(
                f"Build finished but output path '{definition.output_path}' does not exist",
                expected_path=str(output_dir),
                run_id=environment.run_id,
            )
        if not output_dir.is_dir():
            raise ExportConsistencyError(
                f"Output path '{definition.output_path}' is not a directory",
                expected_path=str(output_dir),
                run_id=environment.run_id,
            )

        loop = asyncio.get_running_loop()
        files, directories, structure_digest, content_digest = await loop.run_in_executor(
            None, build_manifest, output_dir
        )

        package = ArtifactPackage(
            export_name=definition.export_name,
            source_path=str(output_dir),
            files=files,
            directories=directories,
            structure_digest=structure_digest,
            content_digest=content_digest,
        )

        if package.is_empty:
            build_logger.warning(f"Output directory {output_dir} exists but contains no files")

        build_logger.info(
            f"Exported '{package.export_name}': {package.file_count} files, "
            f"{package.total_size_bytes} bytes, structure {structure_digest[:12]}"
        )
        return package

    def check_destination(self, destination: Path) -> None:
        destination = Path(destination)
        if destination.exists() and (not destination.is_dir() or any(destination.iterdir())):
            raise FileExistsError(f"Export destination is not an empty directory: {destination}")

    def remove_copy(self, destination: Path, keep_directory: bool = False) -> None:
        destination = Path(destination)
        if not destination.is_dir():
            return
        if keep_directory:
            for child in destination.iterdir():
                if child.is_dir() and not child.is_symlink():
                    cleanup_directory(child)
                else:
                    child.unlink()
        else:
            cleanup_directory(destination)
        logger.info(f"Removed artifact copy at {destination}")

    async def copy_out(self, package: ArtifactPackage, destination: Path) -> Path:
        destination = Path(destination)
        self.check_destination(destination)

        source = Path(package.source_path)

        def _copy() -> str:
            shutil.copytree(source, destination, dirs_exist_ok=True)
            return build_manifest(destination)[2]

        copied_structure = await asyncio.get_running_loop().run_in_executor(None, _copy)

        if copied_structure != package.structure_digest:
            raise ExportConsistencyError(
                f"Copied artifact at {destination} does not match the exported manifest",
                expected_path=str(destination),
                details={
                    "expected_structure_digest": package.structure_digest,
                    "actual_structure_digest": copied_structure,
                },
            )

        logger.info(f"Copied artifact '{package.export_name}' to {destination}")
        return destination

    async def create_tarball(self, package: ArtifactPackage, output_path: Path) -> Path:
        output_path = Path(output_path)
        ensure_directory(output_path.parent)
        source = Path(package.source_path)
        prefix = package.export_name
        sizes = {entry.path: entry.size_bytes for entry in package.files}
        entries = sorted([*package.directories, *sizes])

        def _create_tar() -> None:
            with open(output_path, "wb") as raw:
                with gzip.GzipFile(filename="", mode="wb", fileobj=raw, mtime=0) as gz:
                    with tarfile.open(fileobj=gz, mode="w", format=tarfile.PAX_FORMAT) as tar:
                        for relative in entries:
                            info = tarfile.TarInfo(name=f"{prefix}/{relative.rstrip('/')}")
                            info.mtime = 0
                            info.uid = info.gid = 0
                            info.uname = info.gname = ""
                            if relative in sizes:
                                file_path = source / relative
                                info.size = sizes[relative]
                                executable = os.stat(file_path).st_mode & stat.S_IXUSR
                                info.mode = 0o755 if executable else 0o644
                                with open(file_path, "rb") as f:
                                    tar.addfile(info, f)
                            else:
                                info.type = tarfile.DIRTYPE
                                info.mode = 0o755
                                tar.addfile(info)

        await asyncio.get_running_loop().run_in_executor(None, _create_tar)
        logger.info(f"Wrote tarball {output_path}")
        return output_path

    def build_info(
        self,
        definition: PipelineDefinition,
        package: ArtifactPackage,
        snapshot: EnvironmentSnapshot,
    ) -> Dict[str, Any]:
        return {
            "run_id": snapshot.run_id,
            "definition": definition.name,
            "base_image": definition.base_image,
            "pins": definition.pins(),
            "configuration": definition.configuration.to_environment(),
            "environment": snapshot.model_dump(mode="json"),
            "artifact": {
                "export_name": package.export_name,
                "file_count": package.file_count,
                "total_size_bytes": package.total_size_bytes,
                "structure_digest": package.structure_digest,
                "content_digest": package.content_digest,
                "files": [f.model_dump() for f in package.files],
                "directories": package.directories,
            },
            "generated_at": utc_now().isoformat(),
        }

    async def write_build_info(
        self,
        environment: BuildEnvironment,
        definition: PipelineDefinition,
        package: ArtifactPackage,
        snapshot: EnvironmentSnapshot,
        output_path: Optional[Path] = None,
    ) -> Path:
        output_path = Path(output_path) if output_path else environment.logs_dir / "build-info.json"
        ensure_directory(output_path.parent)
        info = self.build_info(definition, package, snapshot)

        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(info, f, indent=2, sort_keys=True)

        logger.info(f"Wrote build info {output_path}")
        return output_path
