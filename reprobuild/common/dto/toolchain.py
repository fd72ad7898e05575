import re
from typing import Optional, List, Dict, Literal, Union, Annotated

from pydantic import Field, field_validator

from reprobuild.common.dto.base import FrozenModel
from reprobuild.common.config.constants import (
    ArchiveFormat,
    PackageManager,
    FLOATING_VERSION_TAGS,
    VERSION_RANGE_CHARACTERS,
)


COMPONENT_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+-]*$")
ENV_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_exact_pin(version: str) -> str:
    if not version:
        raise ValueError("Version pin must not be empty")
    if version.lower() in FLOATING_VERSION_TAGS:
        raise ValueError(f"Version pin {version!r} is a floating tag, not an exact version")
    bad = sorted({c for c in version if c in VERSION_RANGE_CHARACTERS})
    if bad:
        raise ValueError(f"Version pin {version!r} contains range characters {bad}")
    if any(part.lower() == "x" for part in version.split(".")):
        raise ValueError(f"Version pin {version!r} contains a wildcard segment")
    return version


class DownloadExtract(FrozenModel):
    kind: Literal["download_extract"] = "download_extract"
    url: str = Field(description="Archive URL; may contain {version}")
    executable: str = Field(description="Name of the executable that must be extracted")
    member_pattern: Optional[str] = Field(
        default=None,
        description="fnmatch pattern for archive members; defaults to '*<executable>'",
    )
    strip_components: int = Field(default=0, ge=0)
    archive_format: ArchiveFormat = Field(
        default=ArchiveFormat.TAR,
        description="binary installs the downloaded file itself as the executable",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Download URL must be http(s): {v}")
        return v

    @field_validator("executable")
    @classmethod
    def validate_executable(cls, v: str) -> str:
        if not v or "/" in v or "\\" in v:
            raise ValueError(f"Executable must be a bare file name: {v!r}")
        return v

    def render_url(self, version: str) -> str:
        return self.url.replace("{version}", version)

    def render_pattern(self, version: str) -> str:
        pattern = self.member_pattern or f"*{self.executable}"
        return pattern.replace("{version}", version)


class PackageManagerInstall(FrozenModel):
    kind: Literal["package_manager"] = "package_manager"
    manager: PackageManager
    package: Optional[str] = Field(default=None, description="Defaults to the component name")
    extra_args: List[str] = Field(default_factory=list)
    environment: Dict[str, str] = Field(default_factory=dict)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: Dict[str, str]) -> Dict[str, str]:
        for name in v:
            if not ENV_NAME_PATTERN.match(name):
                raise ValueError(f"Invalid environment variable name: {name!r}")
        return v


InstallMethod = Annotated[
    Union[DownloadExtract, PackageManagerInstall],
    Field(discriminator="kind"),
]


class ToolchainComponent(FrozenModel):
    name: str
    version: str
    install: InstallMethod
    requires: List[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not COMPONENT_NAME_PATTERN.match(v):
            raise ValueError(f"Invalid component name: {v!r}")
        return v

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        return validate_exact_pin(v)

    @property
    def pin(self) -> str:
        return f"{self.name}@{self.version}"


class InstalledComponent(FrozenModel):
    name: str
    version: str
    method: str
    installed_paths: List[str] = Field(default_factory=list)
    path_entries: List[str] = Field(default_factory=list)
    variables: Dict[str, str] = Field(default_factory=dict)
    source_url: Optional[str] = None
    archive_sha256: Optional[str] = None
