"""Pytest fixtures for reprobuild tests."""

import pytest

from reprobuild.common.config.settings import Settings
from reprobuild.common.dto.build import BuildConfiguration, PipelineDefinition

from tests.helpers import python_step


@pytest.fixture
def settings(tmp_path):
    """Settings isolated to a temporary work root."""
    return Settings(
        work_root=tmp_path / "work",
        passthrough_env_vars=["PATH", "HOME", "LANG"],
        download_retry_delay_seconds=0.0,
    )


@pytest.fixture
def source_tree(tmp_path):
    """A small project with a web/ working directory and a .git directory."""
    root = tmp_path / "project"
    (root / "web").mkdir(parents=True)
    (root / ".git").mkdir()
    (root / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
    (root / "README.md").write_text("project\n")
    (root / "web" / "input.txt").write_text("hello\n")
    return root


@pytest.fixture
def packaging_definition():
    """Definition whose steps write a two-file output directory from the configured variables."""
    write_outputs = (
        "import os, pathlib\n"
        "out = pathlib.Path('packages')\n"
        "(out / 'core').mkdir(parents=True, exist_ok=True)\n"
        "(out / 'core' / 'features.txt').write_text(os.environ.get('CARGO_FEATURES', ''))\n"
        "(out / 'source.txt').write_text(os.environ['WASM_SOURCE'])\n"
    )
    return PipelineDefinition(
        name="sample",
        configuration=BuildConfiguration(feature="featureX"),
        working_subdir="web",
        steps=[
            python_step("check-input", "import pathlib; assert pathlib.Path('input.txt').exists()"),
            python_step("package", write_outputs),
        ],
        output_path="packages",
        export_name="sample",
    )
