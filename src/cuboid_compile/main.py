"""CLI entrypoint for cuboid-compile."""

import logging
from pathlib import Path

import rich_click as click

from cuboid_compile import __version__
from cuboid_compile.compile.controllers import (
    CompileCliController,
    CompileEventsCommand,
    CompileListCommand,
    CompileSettingsCommand,
    CompileShowCommand,
    CompileSubmitCommand,
)
from cuboid_compile.compile.models import CompileJobStatus
from cuboid_compile.compile.queue import (
    CompileQueueClosedError,
    CompileQueueFullError,
    InvalidCompileRequestError,
)
from cuboid_compile.store.user_settings import SettingsValidationError

click.rich_click.USE_MARKDOWN = True
COMPILE_CONTROLLER = CompileCliController()

HOME_OPTION_HELP = "Data directory (projects, builds, settings, job DB). Defaults to CUBOID_HOME."


@click.group()
@click.version_option(version=__version__, prog_name="cuboid-compile")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging level for queue and worker diagnostics.",
)
def cuboid_compile(log_level: str) -> None:
    """LaTeX compile queue CLI."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cuboid_compile.command("submit")
@click.option("--project-id", required=True, help="Project to compile.")
@click.option("--main-file", default=None, help="Entry file relative to the project root.")
@click.option(
    "--timeout-ms",
    type=click.IntRange(min=1),
    default=None,
    help="Worker timeout. Defaults to compileTimeoutMs from settings.",
)
@click.option(
    "--content-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Local file whose text replaces the main file before compiling.",
)
@click.option("--home", "home_dir", type=click.Path(path_type=Path), default=None, help=HOME_OPTION_HELP)
def submit(
    project_id: str,
    main_file: str | None,
    timeout_ms: int | None,
    content_file: Path | None,
    home_dir: Path | None,
) -> None:
    """Submit a compile job and wait for it to finish.

    Ctrl-C while waiting cancels the job.
    """

    try:
        result = COMPILE_CONTROLLER.submit(
            CompileSubmitCommand(
                home_dir=home_dir,
                project_id=project_id,
                main_file=main_file,
                timeout_ms=timeout_ms,
                content_file=content_file,
            ),
        )
    except (
        InvalidCompileRequestError,
        CompileQueueFullError,
        CompileQueueClosedError,
    ) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Compile job did not succeed.")


@cuboid_compile.command("show")
@click.argument("job_id")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the client JSON view.")
@click.option("--log", "show_log", is_flag=True, default=False, help="Include the combined log.")
@click.option(
    "--pdf-out",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the compiled PDF here when the job succeeded.",
)
@click.option("--home", "home_dir", type=click.Path(path_type=Path), default=None, help=HOME_OPTION_HELP)
def show(
    job_id: str,
    as_json: bool,
    show_log: bool,
    pdf_out: Path | None,
    home_dir: Path | None,
) -> None:
    """Show one compile job from persisted state."""

    result = COMPILE_CONTROLLER.show(
        CompileShowCommand(
            home_dir=home_dir,
            job_id=job_id,
            as_json=as_json,
            show_log=show_log,
            pdf_out=pdf_out,
        ),
    )
    _emit_lines(result.lines)


@cuboid_compile.command("events")
@click.argument("job_id")
@click.option("--home", "home_dir", type=click.Path(path_type=Path), default=None, help=HOME_OPTION_HELP)
def events(job_id: str, home_dir: Path | None) -> None:
    """Print the event log of one compile job."""

    _emit_lines(COMPILE_CONTROLLER.events(CompileEventsCommand(home_dir=home_dir, job_id=job_id)))


@cuboid_compile.command("list")
@click.option("--project-id", default=None, help="Only jobs of this project.")
@click.option(
    "--status",
    type=click.Choice([status.value for status in CompileJobStatus], case_sensitive=False),
    default=None,
    help="Only jobs in this status.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=20,
    show_default=True,
    help="Max number of jobs to print.",
)
@click.option("--home", "home_dir", type=click.Path(path_type=Path), default=None, help=HOME_OPTION_HELP)
def list_jobs(
    project_id: str | None,
    status: str | None,
    limit: int,
    home_dir: Path | None,
) -> None:
    """List recent compile jobs, newest first."""

    _emit_lines(
        COMPILE_CONTROLLER.list_jobs(
            CompileListCommand(
                home_dir=home_dir,
                project_id=project_id,
                status=status,
                limit=limit,
            ),
        ),
    )


@cuboid_compile.group()
def settings() -> None:
    """User compile settings."""


@settings.command("show")
@click.option("--home", "home_dir", type=click.Path(path_type=Path), default=None, help=HOME_OPTION_HELP)
def settings_show(home_dir: Path | None) -> None:
    """Print the effective compile settings."""

    _emit_lines(COMPILE_CONTROLLER.show_settings(CompileSettingsCommand(home_dir=home_dir)))


@settings.command("set")
@click.option("--worker-path", default=None, help="Compile worker executable.")
@click.option("--timeout-ms", type=int, default=None, help="Default worker timeout (1000..600000).")
@click.option("--home", "home_dir", type=click.Path(path_type=Path), default=None, help=HOME_OPTION_HELP)
def settings_set(worker_path: str | None, timeout_ms: int | None, home_dir: Path | None) -> None:
    """Update compile settings; omitted values are kept."""

    try:
        lines = COMPILE_CONTROLLER.update_settings(
            CompileSettingsCommand(
                home_dir=home_dir,
                worker_path=worker_path,
                timeout_ms=timeout_ms,
            ),
        )
    except SettingsValidationError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    cuboid_compile()
