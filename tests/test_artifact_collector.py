"""Tests for artifact export, copy-out, tarballs and build info."""

import json
import os
import tarfile

import pytest
import pytest_asyncio

from reprobuild.builder.artifact_collector import ArtifactExporter, build_manifest
from reprobuild.builder.environment_manager import EnvironmentConfigurator
from reprobuild.common.exceptions.base_exceptions import ErrorCode
from reprobuild.common.exceptions.build_exceptions import ExportConsistencyError


@pytest_asyncio.fixture
async def built(settings, source_tree, packaging_definition):
    """A configured environment whose output directory holds two files and an empty directory."""
    configurator = EnvironmentConfigurator(settings)
    environment = configurator.create_environment(packaging_definition)
    await configurator.configure(environment, source_tree, packaging_definition)
    output = environment.working_dir / "packages"
    (output / "core").mkdir(parents=True)
    (output / "core" / "ruffle.js").write_text("console.log('ruffle')\n")
    (output / "manifest.json").write_text("{}\n")
    (output / "empty").mkdir()
    return environment


class TestBuildManifest:
    """Tests for the deterministic manifest."""

    def test_manifest_sorted_with_digests(self, tmp_path):
        """Test that entries are sorted and carry sizes and hashes."""
        (tmp_path / "b.txt").write_text("bb")
        (tmp_path / "a").mkdir()
        (tmp_path / "a" / "z.txt").write_text("z")

        files, directories, structure, content = build_manifest(tmp_path)

        assert [f.path for f in files] == ["a/z.txt", "b.txt"]
        assert directories == ["a/"]
        assert [f.size_bytes for f in files] == [1, 2]
        assert len(structure) == 64
        assert structure != content

    def test_structure_digest_ignores_contents(self, tmp_path):
        """Test that equal layouts with different bytes share a structure digest."""
        left, right = tmp_path / "left", tmp_path / "right"
        for root, text in ((left, "one"), (right, "two")):
            root.mkdir()
            (root / "file.txt").write_text(text)

        _, _, left_structure, left_content = build_manifest(left)
        _, _, right_structure, right_content = build_manifest(right)

        assert left_structure == right_structure
        assert left_content != right_content

    def test_digests_ignore_timestamps(self, tmp_path):
        """Test that touching a file leaves both digests unchanged."""
        (tmp_path / "file.txt").write_text("same")
        _, _, structure, content = build_manifest(tmp_path)

        os.utime(tmp_path / "file.txt", (0, 0))

        assert build_manifest(tmp_path)[2:] == (structure, content)

    def test_empty_directory_changes_structure(self, tmp_path):
        """Test that trees differing only by an empty directory have different structure digests."""
        left, right = tmp_path / "left", tmp_path / "right"
        for root in (left, right):
            root.mkdir()
            (root / "file.txt").write_text("same")
        (right / "empty").mkdir()

        left_manifest = build_manifest(left)
        right_manifest = build_manifest(right)

        assert right_manifest[1] == ["empty/"]
        assert left_manifest[2] != right_manifest[2]
        assert left_manifest[3] == right_manifest[3]


class TestExport:
    """Tests for export consistency checks."""

    @pytest.mark.asyncio
    async def test_export_package(self, settings, built, packaging_definition):
        """Test that an existing output directory becomes a package."""
        package = await ArtifactExporter(settings).export(built, packaging_definition)

        assert package.export_name == "sample"
        assert package.file_count == 2
        assert package.source_path == str(built.working_dir / "packages")
        assert [f.path for f in package.files] == ["core/ruffle.js", "manifest.json"]
        assert package.directories == ["core/", "empty/"]

    @pytest.mark.asyncio
    async def test_missing_output_is_consistency_error(self, settings, built, packaging_definition):
        """Test that a missing output path is distinct from a step failure."""
        definition = packaging_definition.model_copy(update={"output_path": "dist"})

        with pytest.raises(ExportConsistencyError) as exc_info:
            await ArtifactExporter(settings).export(built, definition)

        assert exc_info.value.error_code == ErrorCode.BUILD_EXPORT_INCONSISTENT
        assert exc_info.value.expected_path.endswith("dist")

    @pytest.mark.asyncio
    async def test_output_file_is_consistency_error(self, settings, built, packaging_definition):
        """Test that an output path naming a file is rejected."""
        definition = packaging_definition.model_copy(update={"output_path": "packages/manifest.json"})

        with pytest.raises(ExportConsistencyError, match="not a directory"):
            await ArtifactExporter(settings).export(built, definition)

    @pytest.mark.asyncio
    async def test_empty_output_is_exported(self, settings, built, packaging_definition):
        """Test that an existing empty directory exports as an empty package."""
        (built.working_dir / "empty").mkdir()
        definition = packaging_definition.model_copy(update={"output_path": "empty"})

        package = await ArtifactExporter(settings).export(built, definition)

        assert package.is_empty

    @pytest.mark.asyncio
    async def test_export_does_not_modify_tree(self, settings, built, packaging_definition):
        """Test that exporting leaves the artifact tree untouched."""
        output = built.working_dir / "packages"
        before = {p: p.stat().st_mtime_ns for p in output.rglob("*")}

        await ArtifactExporter(settings).export(built, packaging_definition)

        assert {p: p.stat().st_mtime_ns for p in output.rglob("*")} == before


class TestDelivery:
    """Tests for copy-out, tarball and build info."""

    @pytest.mark.asyncio
    async def test_copy_out(self, settings, built, packaging_definition, tmp_path):
        """Test that the copied tree matches the package."""
        exporter = ArtifactExporter(settings)
        package = await exporter.export(built, packaging_definition)

        destination = await exporter.copy_out(package, tmp_path / "out")

        assert (destination / "core" / "ruffle.js").read_text() == "console.log('ruffle')\n"
        assert (destination / "empty").is_dir()
        assert build_manifest(destination)[2:] == (package.structure_digest, package.content_digest)

    @pytest.mark.asyncio
    async def test_remove_copy_keeps_existing_directory(self, settings, built, packaging_definition, tmp_path):
        """Test that removing a copy can empty a destination without deleting it."""
        exporter = ArtifactExporter(settings)
        package = await exporter.export(built, packaging_definition)
        destination = tmp_path / "out"
        destination.mkdir()
        await exporter.copy_out(package, destination)

        exporter.remove_copy(destination, keep_directory=True)

        assert destination.is_dir()
        assert list(destination.iterdir()) == []

    @pytest.mark.asyncio
    async def test_remove_copy(self, settings, built, packaging_definition, tmp_path):
        """Test that removing a created copy deletes the destination."""
        exporter = ArtifactExporter(settings)
        package = await exporter.export(built, packaging_definition)
        destination = await exporter.copy_out(package, tmp_path / "out")

        exporter.remove_copy(destination)

        assert not destination.exists()

    @pytest.mark.asyncio
    async def test_copy_out_refuses_non_empty_destination(self, settings, built, packaging_definition, tmp_path):
        """Test that existing content is never overwritten."""
        exporter = ArtifactExporter(settings)
        package = await exporter.export(built, packaging_definition)
        destination = tmp_path / "out"
        destination.mkdir()
        (destination / "keep.txt").write_text("mine")

        with pytest.raises(FileExistsError):
            await exporter.copy_out(package, destination)

        assert (destination / "keep.txt").read_text() == "mine"

    @pytest.mark.asyncio
    async def test_tarball_is_byte_identical(self, settings, built, packaging_definition, tmp_path):
        """Test that two tarballs of the same package have identical bytes."""
        exporter = ArtifactExporter(settings)
        package = await exporter.export(built, packaging_definition)

        first = await exporter.create_tarball(package, tmp_path / "first.tar.gz")
        os.utime(built.working_dir / "packages" / "manifest.json", (12345, 12345))
        second = await exporter.create_tarball(package, tmp_path / "second.tar.gz")

        assert first.read_bytes() == second.read_bytes()
        with tarfile.open(first, "r:gz") as tar:
            members = tar.getmembers()
        assert [m.name for m in members] == [
            "sample/core",
            "sample/core/ruffle.js",
            "sample/empty",
            "sample/manifest.json",
        ]
        assert members[2].isdir()
        assert all(m.mtime == 0 and m.uid == 0 for m in members)

    @pytest.mark.asyncio
    async def test_build_info(self, settings, built, packaging_definition):
        """Test that build info lands in the logs directory with digests and variables."""
        exporter = ArtifactExporter(settings)
        package = await exporter.export(built, packaging_definition)
        snapshot = EnvironmentConfigurator(settings).capture_snapshot(built)

        path = await exporter.write_build_info(built, packaging_definition, package, snapshot)

        info = json.loads(path.read_text())
        assert path == built.logs_dir / "build-info.json"
        assert info["base_image"] == "node:22"
        assert info["configuration"] == {"CARGO_FEATURES": "featureX", "WASM_SOURCE": "existing"}
        assert info["artifact"]["structure_digest"] == package.structure_digest
        assert info["artifact"]["file_count"] == 2
