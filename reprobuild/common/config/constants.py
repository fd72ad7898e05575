from enum import Enum
from typing import Final


class BuildStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"


class PipelineStage(str, Enum):
    PROVISION = "provision"
    CONFIGURE = "configure"
    EXECUTE = "execute"
    EXPORT = "export"


class InstallKind(str, Enum):
    DOWNLOAD_EXTRACT = "download_extract"
    PACKAGE_MANAGER = "package_manager"


class ArchiveFormat(str, Enum):
    TAR = "tar"
    BINARY = "binary"


class PackageManager(str, Enum):
    CARGO = "cargo"
    NPM = "npm"
    RUSTUP = "rustup"


class DependencySource(str, Enum):
    EXISTING = "existing"
    FETCH = "fetch"


# Keep these in sync with the CI workflows and Cargo.toml of the built project.
BASE_IMAGE: Final[str] = "node:22"
BINARYEN_VERSION: Final[str] = "123"
RUSTUP_VERSION: Final[str] = "1.28.1"
RUST_TOOLCHAIN_VERSION: Final[str] = "1.86.0"
WASM_BINDGEN_VERSION: Final[str] = "0.2.100"

RUST_TARGET: Final[str] = "wasm32-unknown-unknown"
BINARYEN_URL_TEMPLATE: Final[str] = (
    "https://github.com/WebAssembly/binaryen/releases/download/"
    "version_{version}/binaryen-version_{version}-x86_64-linux.tar.gz"
)
RUSTUP_INIT_URL_TEMPLATE: Final[str] = (
    "https://static.rust-lang.org/rustup/archive/"
    "{version}/x86_64-unknown-linux-gnu/rustup-init"
)

FEATURE_VARIABLE: Final[str] = "CARGO_FEATURES"
SOURCE_VARIABLE: Final[str] = "WASM_SOURCE"

FLOATING_VERSION_TAGS: Final[frozenset] = frozenset(
    {"latest", "stable", "beta", "nightly", "current", "lts", "head", "master", "main"}
)
VERSION_RANGE_CHARACTERS: Final[str] = "^~<>=,|* \t"

DEFAULT_SOURCE_EXCLUDES: Final[tuple] = (".git",)
LOG_EXCERPT_CHARS: Final[int] = 4000

EXIT_SUCCESS: Final[int] = 0
EXIT_UNEXPECTED: Final[int] = 1
EXIT_DEFINITION_INVALID: Final[int] = 2
EXIT_PROVISIONING_FAILED: Final[int] = 10
EXIT_CONFIGURATION_FAILED: Final[int] = 11
EXIT_BUILD_STEP_FAILED: Final[int] = 12
EXIT_EXPORT_INCONSISTENT: Final[int] = 13
EXIT_CANCELLED: Final[int] = 14
EXIT_INTERRUPTED: Final[int] = 130
