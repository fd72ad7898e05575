from typing import Optional, List
from dataclasses import dataclass
from pathlib import Path
import asyncio
import re

from reprobuild.common.dto.build import BuildStep, BuildConfiguration
from reprobuild.common.dto.environment import BuildEnvironment
from reprobuild.common.config.constants import PipelineStage
from reprobuild.common.config.settings import Settings, get_settings
from reprobuild.common.config.logging_config import get_logger, get_build_logger
from reprobuild.common.exceptions.build_exceptions import (
    BuildStepError,
    BuildCancelledException,
    ConfigurationError,
)
from reprobuild.builder.command_runner import CommandRunner


logger = get_logger(__name__)

_UNSAFE_LOG_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass
class StepResult:
    index: int
    name: str
    exit_code: int
    duration_seconds: float
    log_path: Path


def step_log_name(index: int, name: str) -> str:
    slug = _UNSAFE_LOG_CHARS.sub("-", name).strip("-") or "step"
    return f"step-{index:02d}-{slug}.log"


class BuildExecutor:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        runner: Optional[CommandRunner] = None,
    ):
        self._settings = settings or get_settings()
        self._runner = runner or CommandRunner()

    async def execute(
        self,
        environment: BuildEnvironment,
        steps: List[BuildStep],
        configuration: BuildConfiguration,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[StepResult]:
        if not environment.is_configured:
            raise ConfigurationError(
                "Environment has no working directory; configure it before executing steps",
                run_id=environment.run_id,
            )

        build_variables = configuration.to_environment()
        missing = sorted(
            name for name, value in build_variables.items()
            if environment.variables.get(name) != value
        )
        if missing:
            raise ConfigurationError(
                "Build configuration was not applied to the environment",
                run_id=environment.run_id,
                missing_variables=missing,
            )

        results: List[StepResult] = []

        for index, step in enumerate(steps, start=1):
            build_logger = get_build_logger(
                environment.run_id,
                stage=PipelineStage.EXECUTE.value,
                step=step.name,
            )

            if cancel_event is not None and cancel_event.is_set():
                raise BuildCancelledException(
                    run_id=environment.run_id,
                    stage=PipelineStage.EXECUTE.value,
                    next_step=step.name,
                )

            cwd = environment.working_dir / step.cwd if step.cwd else environment.working_dir
            log_path = environment.logs_dir / step_log_name(index, step.name)

            if not cwd.is_dir():
                raise BuildStepError(
                    f"Step {index} '{step.name}': directory {cwd} does not exist",
                    step_index=index,
                    step_name=step.name,
                    command=step.argv,
                    run_id=environment.run_id,
                )

            env = environment.process_env(self._settings.passthrough_env_vars)
            env.update(build_variables)

            build_logger.info(f"Step {index}/{len(steps)}: {step.describe()}")
            result = await self._runner.run(step.argv, cwd, env, log_path)

            if not result.succeeded:
                build_logger.error(
                    f"Step {index} '{step.name}' exited with code {result.exit_code}, see {log_path}"
                )
                raise BuildStepError(
                    f"Step {index} '{step.name}' failed with exit code {result.exit_code}",
                    step_index=index,
                    step_name=step.name,
                    command=step.argv,
                    exit_code=result.exit_code,
                    log_excerpt=result.output_tail,
                    log_path=str(log_path),
                    run_id=environment.run_id,
                )

            build_logger.info(f"Step {index} '{step.name}' finished in {result.duration_seconds:.1f}s")
            results.append(
                StepResult(
                    index=index,
                    name=step.name,
                    exit_code=result.exit_code,
                    duration_seconds=result.duration_seconds,
                    log_path=log_path,
                )
            )

        return results
