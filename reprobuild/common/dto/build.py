import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, List, Dict, Any, Union

from pydantic import Field, ValidationError, field_validator, model_validator

from reprobuild.common.dto.base import BaseDTO, FrozenModel
from reprobuild.common.dto.toolchain import ToolchainComponent, ENV_NAME_PATTERN
from reprobuild.common.config.constants import (
    BuildStatus,
    DependencySource,
    BASE_IMAGE,
    FEATURE_VARIABLE,
    SOURCE_VARIABLE,
    DEFAULT_SOURCE_EXCLUDES,
)
from reprobuild.common.exceptions.base_exceptions import DefinitionError, ReproBuildError
from reprobuild.common.utils.file_utils import is_safe_relative_path


class BuildConfiguration(FrozenModel):
    feature: Optional[str] = Field(
        default=None,
        description="Single comma-free token naming the optional capability to compile in",
    )
    dependency_source: DependencySource = Field(default=DependencySource.EXISTING)
    feature_variable: str = Field(default=FEATURE_VARIABLE)
    source_variable: str = Field(default=SOURCE_VARIABLE)
    extra_variables: Dict[str, str] = Field(default_factory=dict)

    @field_validator("feature")
    @classmethod
    def validate_feature(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if not v:
            raise ValueError("Feature token must not be empty")
        if "," in v or any(c.isspace() for c in v):
            raise ValueError(f"Feature token must be a single comma-free token: {v!r}")
        return v

    @field_validator("feature_variable", "source_variable")
    @classmethod
    def validate_variable_name(cls, v: str) -> str:
        if not ENV_NAME_PATTERN.match(v):
            raise ValueError(f"Invalid environment variable name: {v!r}")
        return v

    @field_validator("extra_variables")
    @classmethod
    def validate_extra_variables(cls, v: Dict[str, str]) -> Dict[str, str]:
        for name in v:
            if not ENV_NAME_PATTERN.match(name):
                raise ValueError(f"Invalid environment variable name: {name!r}")
        return v

    @model_validator(mode="after")
    def validate_distinct_variables(self) -> "BuildConfiguration":
        if self.feature_variable == self.source_variable:
            raise ValueError("Feature and source variables must differ")
        reserved = {self.feature_variable, self.source_variable, "PATH"}
        clashes = sorted(reserved & set(self.extra_variables))
        if clashes:
            raise ValueError(f"Extra variables override reserved names: {clashes}")
        return self

    def to_environment(self) -> Dict[str, str]:
        env = dict(self.extra_variables)
        if self.feature is not None:
            env[self.feature_variable] = self.feature
        env[self.source_variable] = self.dependency_source.value
        return env

    def with_overrides(
        self,
        feature: Optional[str] = None,
        dependency_source: Optional[DependencySource] = None,
    ) -> "BuildConfiguration":
        data = self.model_dump()
        if feature is not None:
            data["feature"] = feature
        if dependency_source is not None:
            data["dependency_source"] = dependency_source
        return BuildConfiguration.model_validate(data)


class BuildStep(FrozenModel):
    name: str
    command: str
    args: List[str] = Field(default_factory=list)
    cwd: Optional[str] = Field(
        default=None,
        description="Directory relative to the environment working directory",
    )

    @field_validator("name", "command")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("Must not be empty")
        return v

    @field_validator("cwd")
    @classmethod
    def validate_cwd(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not is_safe_relative_path(v):
            raise ValueError(f"Step cwd must be a relative path inside the working directory: {v!r}")
        return v

    @property
    def argv(self) -> List[str]:
        return [self.command, *self.args]

    def describe(self) -> str:
        return " ".join(self.argv)


class PipelineDefinition(FrozenModel):
    name: str
    base_image: str = Field(default=BASE_IMAGE)
    components: List[ToolchainComponent] = Field(default_factory=list)
    configuration: BuildConfiguration = Field(default_factory=BuildConfiguration)
    source_name: str = Field(default="source")
    working_subdir: Optional[str] = None
    source_excludes: List[str] = Field(default_factory=lambda: list(DEFAULT_SOURCE_EXCLUDES))
    steps: List[BuildStep] = Field(min_length=1)
    output_path: str
    export_name: str

    @field_validator("source_name")
    @classmethod
    def validate_source_name(cls, v: str) -> str:
        if not is_safe_relative_path(v) or "/" in v or "\\" in v:
            raise ValueError(f"Source name must be a single directory name: {v!r}")
        return v

    @field_validator("working_subdir", "output_path")
    @classmethod
    def validate_relative(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not is_safe_relative_path(v):
            raise ValueError(f"Path must be relative and stay inside the source tree: {v!r}")
        return v

    @model_validator(mode="after")
    def validate_ordering(self) -> "PipelineDefinition":
        seen: List[str] = []
        for component in self.components:
            if component.name in seen:
                raise ValueError(f"Duplicate component name: {component.name}")
            for required in component.requires:
                if required not in seen:
                    raise ValueError(
                        f"Component '{component.name}' requires '{required}', "
                        f"which must be declared before it"
                    )
            seen.append(component.name)

        step_names = [step.name for step in self.steps]
        duplicates = sorted({n for n in step_names if step_names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate step names: {duplicates}")
        return self

    def pins(self) -> Dict[str, str]:
        return {component.name: component.version for component in self.components}

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "PipelineDefinition":
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise DefinitionError(
                f"Cannot read pipeline definition: {e}",
                source=str(path),
                cause=e,
            ) from e

        try:
            return cls.model_validate_json(text)
        except ValidationError as e:
            raise DefinitionError(
                f"Invalid pipeline definition in {path.name}",
                source=str(path),
                errors=[
                    f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}"
                    for err in e.errors()
                ],
                cause=e,
            ) from e

    def to_json(self) -> str:
        return json.dumps(self.model_dump(mode="json"), indent=2)


class ArtifactFile(FrozenModel):
    path: str
    size_bytes: int = Field(ge=0)
    sha256: str


class ArtifactPackage(FrozenModel):
    export_name: str
    source_path: str
    files: List[ArtifactFile] = Field(default_factory=list)
    directories: List[str] = Field(default_factory=list)
    structure_digest: str
    content_digest: str
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def file_count(self) -> int:
        return len(self.files)

    @property
    def total_size_bytes(self) -> int:
        return sum(f.size_bytes for f in self.files)

    @property
    def is_empty(self) -> bool:
        return not self.files


class PipelineResult(BaseDTO):
    run_id: str
    definition_name: str
    status: BuildStatus = Field(default=BuildStatus.PENDING)
    pins: Dict[str, str] = Field(default_factory=dict)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_seconds: float = Field(default=0.0)
    artifact: Optional[ArtifactPackage] = None
    exported_to: Optional[str] = None
    tarball_path: Optional[str] = None
    build_info_path: Optional[str] = None
    retained_at: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    error_details: Dict[str, Any] = Field(default_factory=dict)

    def start(self) -> None:
        self.status = BuildStatus.RUNNING
        self.started_at = datetime.now(timezone.utc)

    def complete(self, artifact: ArtifactPackage) -> None:
        self.artifact = artifact
        self.status = BuildStatus.SUCCESS
        self._finish()

    def fail(self, error: Exception) -> None:
        self.status = BuildStatus.FAILURE
        self._record_error(error)
        self._finish()

    def cancel(self, error: Exception) -> None:
        self.status = BuildStatus.CANCELLED
        self._record_error(error)
        self._finish()

    def _record_error(self, error: Exception) -> None:
        self.error_message = str(error)
        if isinstance(error, ReproBuildError):
            payload = error.to_dict()
            self.error_code = payload["error_code"]
            self.error_details = dict(payload["details"])

    def _finish(self) -> None:
        self.finished_at = datetime.now(timezone.utc)
        if self.started_at:
            self.duration_seconds = (self.finished_at - self.started_at).total_seconds()
