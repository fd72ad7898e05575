import asyncio
import signal
import sys
import traceback
from pathlib import Path
from typing import Optional

import click

from reprobuild.common.dto.build import PipelineDefinition, PipelineResult
from reprobuild.common.config.settings import Settings, get_settings
from reprobuild.common.config.logging_config import setup_logging, get_logger
from reprobuild.common.config.constants import (
    DependencySource,
    EXIT_SUCCESS,
    EXIT_UNEXPECTED,
    EXIT_DEFINITION_INVALID,
    EXIT_PROVISIONING_FAILED,
    EXIT_CONFIGURATION_FAILED,
    EXIT_BUILD_STEP_FAILED,
    EXIT_EXPORT_INCONSISTENT,
    EXIT_CANCELLED,
    EXIT_INTERRUPTED,
)
from reprobuild.common.exceptions.base_exceptions import DefinitionError, ReproBuildError
from reprobuild.common.exceptions.build_exceptions import (
    ProvisioningError,
    ConfigurationError,
    BuildStepError,
    ExportConsistencyError,
    BuildCancelledException,
)
from reprobuild.common.utils.time_utils import format_duration
from reprobuild.orchestrator.pipeline import BuildPipeline
from reprobuild.recipes import available_recipes, get_recipe


logger = get_logger(__name__)

EXIT_CODES = (
    (DefinitionError, EXIT_DEFINITION_INVALID),
    (ProvisioningError, EXIT_PROVISIONING_FAILED),
    (ConfigurationError, EXIT_CONFIGURATION_FAILED),
    (BuildStepError, EXIT_BUILD_STEP_FAILED),
    (ExportConsistencyError, EXIT_EXPORT_INCONSISTENT),
    (BuildCancelledException, EXIT_CANCELLED),
)


def exit_code_for(error: BaseException) -> int:
    if isinstance(error, KeyboardInterrupt):
        return EXIT_INTERRUPTED
    for error_type, code in EXIT_CODES:
        if isinstance(error, error_type):
            return code
    return EXIT_UNEXPECTED


def load_definition(definition_file: Optional[str], recipe: Optional[str], settings: Settings) -> PipelineDefinition:
    if definition_file and recipe:
        raise click.UsageError("--definition and --recipe are mutually exclusive")
    if definition_file:
        return PipelineDefinition.from_file(definition_file)
    return get_recipe(recipe or settings.default_recipe)


def report_error(error: BaseException, debug: bool) -> None:
    click.echo(f"Error: {error}", err=True)
    if isinstance(error, ReproBuildError):
        for key, value in error.details.items():
            if key == "log_excerpt":
                continue
            click.echo(f"  {key}: {value}", err=True)
        excerpt = error.details.get("log_excerpt")
        if excerpt:
            click.echo("  last output:", err=True)
            for line in str(excerpt).splitlines()[-20:]:
                click.echo(f"    {line}", err=True)
    if debug:
        traceback.print_exception(type(error), error, error.__traceback__)


def print_result(result: PipelineResult) -> None:
    click.echo(f"run_id:            {result.run_id}")
    click.echo(f"definition:        {result.definition_name}")
    click.echo(f"status:            {result.status.value}")
    click.echo(f"duration:          {format_duration(result.duration_seconds)}")
    if result.artifact is not None:
        click.echo(f"artifact:          {result.artifact.export_name}")
        click.echo(f"files:             {result.artifact.file_count}")
        click.echo(f"structure_digest:  {result.artifact.structure_digest}")
        click.echo(f"content_digest:    {result.artifact.content_digest}")
    if result.exported_to:
        click.echo(f"exported_to:       {result.exported_to}")
    if result.tarball_path:
        click.echo(f"tarball:           {result.tarball_path}")
    if result.build_info_path:
        click.echo(f"build_info:        {result.build_info_path}")
    if result.retained_at:
        click.echo(f"environment:       {result.retained_at}")
        if result.artifact is not None:
            click.echo(f"artifact_path:     {result.artifact.source_path}")


async def run_pipeline(
    pipeline: BuildPipeline,
    source_dir: Path,
    export_to: Optional[Path],
    tarball: Optional[Path],
    build_info: Optional[Path],
) -> PipelineResult:
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.warning("Received shutdown signal, cancelling before the next step")
        cancel_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except (NotImplementedError, RuntimeError):
            logger.debug(f"Signal handler for {sig.name} not available")

    return await pipeline.run(
        source_dir,
        export_to=export_to,
        tarball=tarball,
        build_info=build_info,
        cancel_event=cancel_event,
    )


@click.group()
@click.option("--debug", is_flag=True, default=False, help="Show stack traces and debug logging")
@click.option("--log-level", default=None, help="Logging level (defaults to REPROBUILD_LOG_LEVEL)")
@click.option("--json-logs/--text-logs", default=None, help="Emit log records as JSON")
@click.pass_context
def cli(ctx, debug, log_level, json_logs):
    """Hermetic, pinned, reproducible build pipelines."""
    settings = get_settings()
    level = "DEBUG" if debug else (log_level or settings.log_level).upper()
    setup_logging(
        log_level=level,
        json_format=settings.json_logs if json_logs is None else json_logs,
        log_dir=settings.log_dir,
    )
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["settings"] = settings


@cli.command()
@click.argument(
    "source_dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
)
@click.option("--definition", "definition_file", default=None, help="Pipeline definition JSON file")
@click.option("--recipe", default=None, help=f"Built-in recipe ({', '.join(available_recipes())})")
@click.option("--feature", default=None, help="Override the feature token passed to the build")
@click.option(
    "--dependency-source",
    type=click.Choice([s.value for s in DependencySource]),
    default=None,
    help="Override how the build obtains its prebuilt dependencies",
)
@click.option(
    "--export-to",
    type=click.Path(path_type=Path),
    default=None,
    help="Copy the artifact tree to this empty or missing directory",
)
@click.option("--tarball", type=click.Path(dir_okay=False, path_type=Path), default=None, help="Also write a deterministic tar.gz")
@click.option("--build-info", type=click.Path(dir_okay=False, path_type=Path), default=None, help="Write build-info.json here")
@click.option("--keep-environment", is_flag=True, default=False, help="Keep the run directory afterwards")
@click.pass_context
def run(ctx, source_dir, definition_file, recipe, feature, dependency_source, export_to, tarball, build_info, keep_environment):
    """Build SOURCE_DIR with a pipeline definition or built-in recipe."""
    debug = ctx.obj.get("debug", False)
    settings: Settings = ctx.obj["settings"]
    if keep_environment:
        settings = settings.model_copy(update={"keep_environment": True})

    if export_to is not None and export_to.exists():
        if not export_to.is_dir() or any(export_to.iterdir()):
            raise click.BadParameter(
                f"{export_to} is not an empty directory",
                param_hint="--export-to",
            )

    try:
        definition = load_definition(definition_file, recipe, settings)
        if feature is not None or dependency_source is not None:
            configuration = definition.configuration.with_overrides(
                feature=feature,
                dependency_source=DependencySource(dependency_source) if dependency_source else None,
            )
            definition = definition.model_copy(update={"configuration": configuration})
    except DefinitionError as e:
        report_error(e, debug)
        sys.exit(EXIT_DEFINITION_INVALID)
    except ValueError as e:
        report_error(DefinitionError(f"Invalid override: {e}", cause=e), debug)
        sys.exit(EXIT_DEFINITION_INVALID)

    pipeline = BuildPipeline(definition, settings=settings)

    try:
        result = asyncio.run(run_pipeline(pipeline, source_dir, export_to, tarball, build_info))
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(EXIT_INTERRUPTED)
    except Exception as e:
        report_error(e, debug)
        if pipeline.last_result is not None:
            click.echo(f"run_id: {pipeline.last_result.run_id}", err=True)
            if pipeline.last_result.retained_at:
                click.echo(f"environment: {pipeline.last_result.retained_at}", err=True)
        sys.exit(exit_code_for(e))

    print_result(result)
    sys.exit(EXIT_SUCCESS)


@cli.command()
@click.option("--definition", "definition_file", default=None, help="Pipeline definition JSON file")
@click.option("--recipe", default=None, help="Built-in recipe name")
@click.pass_context
def pins(ctx, definition_file, recipe):
    """Print the base image and exact component pins."""
    try:
        definition = load_definition(definition_file, recipe, ctx.obj["settings"])
    except DefinitionError as e:
        report_error(e, ctx.obj.get("debug", False))
        sys.exit(EXIT_DEFINITION_INVALID)

    click.echo(f"base-image {definition.base_image}")
    for name, version in definition.pins().items():
        click.echo(f"{name} {version}")


@cli.command("show-definition")
@click.option("--definition", "definition_file", default=None, help="Pipeline definition JSON file")
@click.option("--recipe", default=None, help="Built-in recipe name")
@click.pass_context
def show_definition(ctx, definition_file, recipe):
    """Print the resolved pipeline definition as JSON."""
    try:
        definition = load_definition(definition_file, recipe, ctx.obj["settings"])
    except DefinitionError as e:
        report_error(e, ctx.obj.get("debug", False))
        sys.exit(EXIT_DEFINITION_INVALID)

    click.echo(definition.to_json())


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
