"""End-to-end tests for the build pipeline."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp import test_utils, web

from reprobuild.builder.command_runner import CommandResult
from reprobuild.builder.toolchain_provisioner import (
    DownloadExtractInstaller,
    PackageManagerInstaller,
    ToolchainProvisioner,
)
from reprobuild.common.config.constants import BuildStatus, PackageManager
from reprobuild.common.dto.build import PipelineDefinition
from reprobuild.common.dto.toolchain import DownloadExtract, PackageManagerInstall, ToolchainComponent
from reprobuild.common.exceptions.build_exceptions import (
    BuildCancelledException,
    BuildStepError,
    ExportConsistencyError,
    ProvisioningError,
)
from reprobuild.orchestrator.pipeline import BuildPipeline

from tests.helpers import make_tar_gz, python_step


OPTIMIZER_ARCHIVE = "binaryen-version_123.tar.gz"


def archive_app(archive: bytes) -> web.Application:
    async def handle(request):
        if request.match_info["filename"] != OPTIMIZER_ARCHIVE:
            return web.Response(status=404)
        return web.Response(body=archive)

    app = web.Application()
    app.router.add_get("/{filename}", handle)
    return app


def package_manager_runner():
    runner = MagicMock()

    async def run(argv, cwd, env, log_path):
        return CommandResult(argv=argv, exit_code=0, output_tail="", log_path=log_path, duration_seconds=0.0)

    runner.run = AsyncMock(side_effect=run)
    return runner


def scenario_definition(base, server, optimizer_version="123", marker=None) -> PipelineDefinition:
    """The three-component scenario on top of the packaging steps."""
    components = [
        ToolchainComponent(
            name="compiler-toolchain",
            version="1.2.3",
            install=PackageManagerInstall(manager=PackageManager.RUSTUP),
        ),
        ToolchainComponent(
            name="optimizer",
            version=optimizer_version,
            install=DownloadExtract(
                url=f"http://{server.host}:{server.port}/binaryen-version_{{version}}.tar.gz",
                executable="wasm-opt",
                strip_components=2,
            ),
        ),
        ToolchainComponent(
            name="codegen-cli",
            version="0.2.100",
            install=PackageManagerInstall(manager=PackageManager.CARGO),
            requires=["compiler-toolchain"],
        ),
    ]
    steps = list(base.steps)
    if marker is not None:
        steps.insert(0, python_step("marker", f"open({str(marker)!r}, 'w').write('ran')"))
    return base.model_copy(update={"components": components, "steps": steps})


def make_pipeline(definition, settings):
    provisioner = ToolchainProvisioner(
        settings,
        installers={
            DownloadExtract: DownloadExtractInstaller(settings),
            PackageManagerInstall: PackageManagerInstaller(settings, package_manager_runner()),
        },
    )
    return BuildPipeline(definition, settings=settings, provisioner=provisioner)


@pytest.fixture
def archive(tmp_path):
    path = make_tar_gz(
        tmp_path / OPTIMIZER_ARCHIVE,
        {"binaryen-version_123/bin/wasm-opt": b"#!/bin/sh\n"},
    )
    return path.read_bytes()


class TestSuccessfulRun:
    """Tests for a complete run."""

    @pytest.mark.asyncio
    async def test_scenario_produces_artifact(self, settings, source_tree, packaging_definition, archive, tmp_path):
        """Test the pinned scenario exports a non-empty artifact and discards the environment."""
        async with test_utils.TestServer(archive_app(archive)) as server:
            definition = scenario_definition(packaging_definition, server)
            pipeline = make_pipeline(definition, settings)
            result = await pipeline.run(source_tree, export_to=tmp_path / "out")

        assert result.status == BuildStatus.SUCCESS
        assert result.pins == {"compiler-toolchain": "1.2.3", "optimizer": "123", "codegen-cli": "0.2.100"}
        assert result.artifact.file_count == 2
        assert (tmp_path / "out" / "core" / "features.txt").read_text() == "featureX"
        assert (tmp_path / "out" / "source.txt").read_text() == "existing"
        assert not (settings.work_root / result.run_id).exists()

    @pytest.mark.asyncio
    async def test_identical_inputs_give_identical_digests(self, settings, source_tree, packaging_definition, archive):
        """Test that two runs with the same pins and source produce the same artifact."""
        async with test_utils.TestServer(archive_app(archive)) as server:
            definition = scenario_definition(packaging_definition, server)
            first = await make_pipeline(definition, settings).run(source_tree)
            second = await make_pipeline(definition, settings).run(source_tree)

        assert first.run_id != second.run_id
        assert first.artifact.structure_digest == second.artifact.structure_digest
        assert first.artifact.content_digest == second.artifact.content_digest

    @pytest.mark.asyncio
    async def test_keep_environment_and_build_info(self, settings, source_tree, packaging_definition, tmp_path):
        """Test that a kept environment retains logs and build info."""
        settings.keep_environment = True
        pipeline = BuildPipeline(packaging_definition, settings=settings)

        result = await pipeline.run(source_tree, tarball=tmp_path / "sample.tar.gz")

        root = settings.work_root / result.run_id
        assert root.is_dir()
        assert (root / "logs" / "step-02-package.log").exists()
        info = json.loads((root / "logs" / "build-info.json").read_text())
        assert info["artifact"]["content_digest"] == result.artifact.content_digest
        assert result.tarball_path == str(tmp_path / "sample.tar.gz")

    @pytest.mark.asyncio
    async def test_source_tree_not_modified(self, settings, source_tree, packaging_definition):
        """Test that building never writes into the caller's source tree."""
        before = sorted(p.relative_to(source_tree) for p in source_tree.rglob("*"))

        await BuildPipeline(packaging_definition, settings=settings).run(source_tree)

        assert sorted(p.relative_to(source_tree) for p in source_tree.rglob("*")) == before

    @pytest.mark.asyncio
    async def test_without_destination_keeps_artifact(self, settings, source_tree, packaging_definition):
        """Test that a run with nowhere to deliver leaves the artifact in place."""
        result = await BuildPipeline(packaging_definition, settings=settings).run(source_tree)

        root = settings.work_root / result.run_id
        assert result.retained_at == str(root)
        assert (root / "logs" / "build-info.json").exists()
        artifact_dir = root / "workspace" / "source" / "web" / "packages"
        assert str(artifact_dir) == result.artifact.source_path
        assert (artifact_dir / "source.txt").read_text() == "existing"


class TestFailedRun:
    """Tests for fail-fast behavior across stages."""

    @pytest.mark.asyncio
    async def test_mutated_pin_stops_before_steps(self, settings, source_tree, packaging_definition, archive, tmp_path):
        """Test that an unavailable optimizer version fails provisioning and runs no step."""
        marker = tmp_path / "ran.txt"
        async with test_utils.TestServer(archive_app(archive)) as server:
            definition = scenario_definition(packaging_definition, server, optimizer_version="999", marker=marker)
            pipeline = make_pipeline(definition, settings)
            with pytest.raises(ProvisioningError) as exc_info:
                await pipeline.run(source_tree)

        assert exc_info.value.component == "optimizer"
        assert not marker.exists()
        assert pipeline.last_result.status == BuildStatus.FAILURE
        assert pipeline.last_result.artifact is None
        assert not (settings.work_root / pipeline.last_result.run_id).exists()

    @pytest.mark.asyncio
    async def test_missing_output_is_export_error(self, settings, source_tree, packaging_definition):
        """Test that successful steps without the output path fail the export."""
        definition = packaging_definition.model_copy(update={"output_path": "dist"})
        pipeline = BuildPipeline(definition, settings=settings)

        with pytest.raises(ExportConsistencyError):
            await pipeline.run(source_tree)

        assert pipeline.last_result.status == BuildStatus.FAILURE
        assert pipeline.last_result.error_code == "E1010"

    @pytest.mark.asyncio
    async def test_step_failure_recorded(self, settings, source_tree, packaging_definition):
        """Test that a failing step fails the run with its details."""
        steps = [python_step("explode", "import sys; sys.exit(2)")]
        definition = packaging_definition.model_copy(update={"steps": steps})
        pipeline = BuildPipeline(definition, settings=settings)

        with pytest.raises(BuildStepError):
            await pipeline.run(source_tree)

        assert pipeline.last_result.error_code == "E1000"
        assert pipeline.last_result.error_details["step_name"] == "explode"

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, settings, source_tree, packaging_definition, tmp_path):
        """Test that a set cancel event stops the run before any stage."""
        marker = tmp_path / "ran.txt"
        steps = [python_step("marker", f"open({str(marker)!r}, 'w').write('ran')")]
        definition = packaging_definition.model_copy(update={"steps": steps})
        pipeline = BuildPipeline(definition, settings=settings)
        cancel_event = asyncio.Event()
        cancel_event.set()

        with pytest.raises(BuildCancelledException):
            await pipeline.run(source_tree, cancel_event=cancel_event)

        assert pipeline.last_result.status == BuildStatus.CANCELLED
        assert not marker.exists()



class TestFailedDelivery:
    """Tests for removing partial deliveries."""

    @pytest.mark.asyncio
    async def test_tarball_failure_removes_copy(self, settings, source_tree, packaging_definition, tmp_path):
        """Test that a failed tarball write removes the exported tree."""
        out = tmp_path / "out"
        blocked = tmp_path / "blocked.tar.gz"
        blocked.mkdir()
        pipeline = BuildPipeline(packaging_definition, settings=settings)

        with pytest.raises(OSError):
            await pipeline.run(source_tree, export_to=out, tarball=blocked)

        assert not out.exists()
        assert blocked.is_dir()
        assert pipeline.last_result.status == BuildStatus.FAILURE
        assert pipeline.last_result.exported_to is None
        assert pipeline.last_result.retained_at is None
        assert not (settings.work_root / pipeline.last_result.run_id).exists()

    @pytest.mark.asyncio
    async def test_build_info_failure_removes_copy_and_tarball(self, settings, source_tree, packaging_definition, tmp_path):
        """Test that a failed build info write empties an existing destination and removes the tarball."""
        out = tmp_path / "out"
        out.mkdir()
        tarball = tmp_path / "sample.tar.gz"
        blocked = tmp_path / "build-info.json"
        blocked.mkdir()
        pipeline = BuildPipeline(packaging_definition, settings=settings)

        with pytest.raises(OSError):
            await pipeline.run(source_tree, export_to=out, tarball=tarball, build_info=blocked)

        assert out.is_dir()
        assert list(out.iterdir()) == []
        assert not tarball.exists()
        assert blocked.is_dir()
        assert pipeline.last_result.tarball_path is None

    @pytest.mark.asyncio
    async def test_non_empty_destination_is_untouched(self, settings, source_tree, packaging_definition, tmp_path):
        """Test that a refused destination keeps its existing content."""
        out = tmp_path / "out"
        out.mkdir()
        (out / "keep.txt").write_text("mine")
        pipeline = BuildPipeline(packaging_definition, settings=settings)

        with pytest.raises(FileExistsError):
            await pipeline.run(source_tree, export_to=out)

        assert [p.name for p in out.iterdir()] == ["keep.txt"]
