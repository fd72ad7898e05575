import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, List, Dict, Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field

from reprobuild.common.dto.toolchain import InstalledComponent


class BuildEnvironment(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    run_id: str
    base_image: str
    root_dir: Path
    tools_dir: Path
    downloads_dir: Path
    logs_dir: Path
    workspace_dir: Path
    working_dir: Optional[Path] = None
    variables: Dict[str, str] = Field(default_factory=dict)
    tool_variables: Dict[str, str] = Field(default_factory=dict)
    path_entries: List[Path] = Field(default_factory=list)
    installed_components: List[InstalledComponent] = Field(default_factory=list)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def bin_dir(self) -> Path:
        return self.tools_dir / "bin"

    @property
    def is_configured(self) -> bool:
        return self.working_dir is not None

    def is_installed(self, name: str) -> bool:
        return any(c.name == name for c in self.installed_components)

    def record_installation(self, installed: InstalledComponent) -> None:
        self.installed_components = [*self.installed_components, installed]
        for entry in installed.path_entries:
            path = Path(entry)
            if path not in self.path_entries:
                self.path_entries = [*self.path_entries, path]
        if installed.variables:
            self.tool_variables = {**self.tool_variables, **installed.variables}

    def process_env(
        self,
        passthrough: Iterable[str] = (),
        host_env: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, str]:
        host_env = os.environ if host_env is None else host_env
        passthrough = list(passthrough)

        env: Dict[str, str] = {
            name: host_env[name]
            for name in passthrough
            if name != "PATH" and name in host_env
        }

        path_parts = [str(self.bin_dir)]
        path_parts.extend(str(p) for p in self.path_entries if str(p) not in path_parts)
        # host PATH, when passed through, comes after the tool directories
        if "PATH" in passthrough and host_env.get("PATH"):
            path_parts.extend(host_env["PATH"].split(os.pathsep))
        env["PATH"] = os.pathsep.join(path_parts)

        env.update(self.tool_variables)
        env.update(self.variables)
        return env


class EnvironmentSnapshot(BaseModel):
    run_id: str
    base_image: str
    os_name: str
    os_release: str
    machine: str
    python_version: str
    components: List[InstalledComponent] = Field(default_factory=list)
    variables: Dict[str, str] = Field(default_factory=dict)
    working_dir: Optional[str] = None
    captured_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def get_component_versions(self) -> Dict[str, str]:
        return {c.name: c.version for c in self.components}
