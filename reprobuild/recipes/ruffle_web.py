from reprobuild.common.dto.build import BuildConfiguration, BuildStep, PipelineDefinition
from reprobuild.common.dto.toolchain import (
    DownloadExtract,
    PackageManagerInstall,
    ToolchainComponent,
)
from reprobuild.common.config.constants import (
    ArchiveFormat,
    PackageManager,
    DependencySource,
    BASE_IMAGE,
    BINARYEN_VERSION,
    BINARYEN_URL_TEMPLATE,
    RUSTUP_VERSION,
    RUSTUP_INIT_URL_TEMPLATE,
    RUST_TOOLCHAIN_VERSION,
    RUST_TARGET,
    WASM_BINDGEN_VERSION,
)


NAME = "ruffle-web"


def build_definition() -> PipelineDefinition:
    return PipelineDefinition(
        name=NAME,
        base_image=BASE_IMAGE,
        components=[
            ToolchainComponent(
                name="wasm-opt",
                version=BINARYEN_VERSION,
                install=DownloadExtract(
                    url=BINARYEN_URL_TEMPLATE,
                    executable="wasm-opt",
                    member_pattern="*wasm-opt",
                    strip_components=2,
                ),
            ),
            ToolchainComponent(
                name="rustup",
                version=RUSTUP_VERSION,
                install=DownloadExtract(
                    url=RUSTUP_INIT_URL_TEMPLATE,
                    executable="rustup-init",
                    archive_format=ArchiveFormat.BINARY,
                ),
            ),
            ToolchainComponent(
                name="rust",
                version=RUST_TOOLCHAIN_VERSION,
                install=PackageManagerInstall(
                    manager=PackageManager.RUSTUP,
                    extra_args=[
                        "--profile", "minimal",
                        "--target", RUST_TARGET,
                        "--component", "rust-src",
                    ],
                ),
                requires=["rustup"],
            ),
            ToolchainComponent(
                name="wasm-bindgen-cli",
                version=WASM_BINDGEN_VERSION,
                install=PackageManagerInstall(manager=PackageManager.CARGO),
                requires=["rust"],
            ),
        ],
        configuration=BuildConfiguration(
            feature="jpegxr",
            dependency_source=DependencySource.EXISTING,
        ),
        source_name="ruffle",
        working_subdir="web",
        steps=[
            BuildStep(name="install-dependencies", command="npm", args=["ci"]),
            BuildStep(name="build", command="npm", args=["run", "build:repro"]),
        ],
        output_path="packages",
        export_name=NAME,
    )
