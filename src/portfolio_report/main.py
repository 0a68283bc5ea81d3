"""CLI entrypoint for portfolio-report."""

import logging
from pathlib import Path

import rich_click as click

from portfolio_report import __version__
from portfolio_report.controllers import (
    BatchCommand,
    GenerateCommand,
    ReportCliController,
    UsageCommand,
)

click.rich_click.USE_MARKDOWN = True
REPORT_CONTROLLER = ReportCliController()
REPORT_TYPES = ("basic", "intermediate", "advanced")


@click.group()
@click.version_option(version=__version__, prog_name="portfolio-report")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity.",
)
def portfolio_report(log_level: str) -> None:
    """Investment report CLI."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@portfolio_report.command("generate")
@click.option(
    "--input",
    "input_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="JSON file with investment data (bare profile or request envelope).",
)
@click.option(
    "--report-type",
    type=click.Choice(REPORT_TYPES, case_sensitive=False),
    default=None,
    help="Override the report type from the input file.",
)
@click.option("--premium", is_flag=True, default=False, help="Submit with premium priority.")
@click.option("--user-id", default=None, help="User id recorded with usage events.")
@click.option(
    "--echo",
    "use_echo",
    is_flag=True,
    default=False,
    help="Use the offline echo client instead of the OpenAI API.",
)
@click.option(
    "--usage-db",
    "usage_db_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="SQLite DB for usage events. Defaults to PORTFOLIO_REPORT_USAGE_DB_PATH.",
)
def generate(  # noqa: PLR0913
    input_path: Path,
    report_type: str | None,
    premium: bool,
    user_id: str | None,
    use_echo: bool,
    usage_db_path: Path | None,
) -> None:
    """Generate one investment report."""

    try:
        result = REPORT_CONTROLLER.generate(
            GenerateCommand(
                input_path=input_path,
                report_type=report_type.lower() if report_type else None,
                premium=premium,
                use_echo=use_echo,
                usage_db_path=usage_db_path,
                user_id=user_id,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        raise SystemExit(1)


@portfolio_report.command("batch")
@click.option(
    "--input",
    "input_paths",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    multiple=True,
    required=True,
    help="JSON request file. Can be repeated.",
)
@click.option(
    "--report-type",
    type=click.Choice(REPORT_TYPES, case_sensitive=False),
    default=None,
    help="Override the report type for every request.",
)
@click.option(
    "--max-concurrent",
    type=click.IntRange(min=1),
    default=None,
    help="Concurrency cap. Defaults to PORTFOLIO_REPORT_MAX_CONCURRENT.",
)
@click.option(
    "--echo",
    "use_echo",
    is_flag=True,
    default=False,
    help="Use the offline echo client instead of the OpenAI API.",
)
@click.option(
    "--usage-db",
    "usage_db_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="SQLite DB for usage events.",
)
def batch(
    input_paths: tuple[Path, ...],
    report_type: str | None,
    max_concurrent: int | None,
    use_echo: bool,
    usage_db_path: Path | None,
) -> None:
    """Submit several requests through one scheduler and print outcomes."""

    try:
        result = REPORT_CONTROLLER.batch(
            BatchCommand(
                input_paths=input_paths,
                report_type=report_type.lower() if report_type else None,
                use_echo=use_echo,
                usage_db_path=usage_db_path,
                max_concurrent=max_concurrent,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        raise SystemExit(1)


@portfolio_report.command("usage")
@click.option(
    "--usage-db",
    "usage_db_path",
    type=click.Path(dir_okay=False, path_type=Path),
    required=True,
    help="SQLite DB with usage events.",
)
@click.option("--user-id", default=None, help="Restrict totals to one user.")
def usage(usage_db_path: Path, user_id: str | None) -> None:
    """Print persisted usage totals."""

    _emit_lines(REPORT_CONTROLLER.usage(UsageCommand(usage_db_path=usage_db_path, user_id=user_id)))


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    portfolio_report()
