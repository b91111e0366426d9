"""
CLI interface for chunkrun.

Provides commands to run jobs described by YAML config files and to
inspect their recorded executions.
"""


import json
import signal
from pathlib import Path

import click
from rich.table import Table

from chunkrun import __version__
from chunkrun.errors import ConfigError, DuplicateRunError


SAMPLE_CSV = """Jill,Doe
Joe,Doe
Justin,Doe
Jane,Doe
John,Doe
"""

SAMPLE_SCHEMA = """CREATE TABLE IF NOT EXISTS people (
    person_id INTEGER PRIMARY KEY AUTOINCREMENT,
    first_name VARCHAR(20),
    last_name VARCHAR(20)
);
"""

SAMPLE_CONFIG = {
    "job": {
        "name": "import_people",
        "description": "Load people from CSV, uppercasing first names",
        "incrementer": "run_id",
    },
    "steps": [
        {
            "name": "load_people",
            "chunk_size": 10,
            "source": {
                "type": "csv",
                "path": "sample-data.csv",
                "fields": ["first_name", "last_name"],
                "delimiter": ",",
            },
            "transform": {"type": "uppercase", "fields": ["first_name"]},
            "sink": {
                "type": "sqlite",
                "database": "people.db",
                "init_sql_file": "schema.sql",
                "sql": "INSERT INTO people (first_name, last_name) VALUES (:first_name, :last_name)",
                "timeout_s": 5,
            },
            "skip_policy": {"skip_malformed": False},
        }
    ],
    "logging": {"level": "INFO", "format": "pretty", "output": "logs/chunkrun-{date}.log"},
    "store": {"path": ".chunkrun/runs"},
}


def _parse_params(values: tuple[str, ...]) -> dict[str, str]:
    """Parse repeated key=value options into a parameter dict."""
    parameters: dict[str, str] = {}
    for value in values:
        key, sep, raw = value.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"expected key=value, got {value!r}", param_hint="--param")
        parameters[key.strip()] = raw
    return parameters


def _load(config_path: Path):
    from chunkrun.config import load_config

    try:
        return load_config(config_path)
    except ConfigError as e:
        click.echo(f"✗ Invalid config {config_path}: {e}", err=True)
        raise SystemExit(2)


def _summary_table(execution) -> Table:
    table = Table(title=f"{execution.job_name} [{execution.status.value}]")
    for column in ("step", "status", "read", "written", "skipped", "filtered", "commits", "rollbacks"):
        table.add_column(column, justify="left" if column in ("step", "status") else "right")
    for state in execution.steps:
        table.add_row(
            state.name,
            state.status.value,
            str(state.read_count),
            str(state.write_count),
            str(state.skip_count),
            str(state.filter_count),
            str(state.commit_count),
            str(state.rollback_count),
        )
    return table


@click.group()
@click.version_option(version=__version__, prog_name="chunkrun")
def main():
    """
    chunkrun - Chunked batch ETL engine.

    Run jobs described by YAML config files.
    """


@main.command("run")
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--param", "-p", "params", multiple=True, help="Run parameter as key=value (repeatable)")
def run(config_path: Path, params: tuple[str, ...]):
    """
    Run the job described by CONFIG_PATH.

    Examples:

        chunkrun run jobs/import_people.yaml

        chunkrun run jobs/import_people.yaml -p input.date=2026-10-18
    """
    from chunkrun.job_runner import run_job
    from chunkrun.orchestrator import StopSignal
    from chunkrun.utils import console, format_duration, setup_logging

    config = _load(config_path)
    parameters = _parse_params(params)

    setup_logging(
        log_file=config.get_log_file_path(),
        log_level=config.get_log_level(),
        log_format=config.get_log_format(),
        console_output=config.should_log_to_console(),
    )

    # First Ctrl-C stops the job between chunks
    stop_signal = StopSignal()
    previous_handler = signal.getsignal(signal.SIGINT)

    def _request_stop(signum, frame):
        click.echo("Stop requested; finishing current chunk...", err=True)
        stop_signal.request_stop()
        signal.signal(signal.SIGINT, previous_handler)

    signal.signal(signal.SIGINT, _request_stop)
    try:
        execution = run_job(config, parameters, stop_signal=stop_signal)
    except DuplicateRunError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)
    except ConfigError as e:
        click.echo(f"✗ Invalid config {config_path}: {e}", err=True)
        raise SystemExit(2)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    console.print(_summary_table(execution))
    click.echo(
        f"read={execution.read_count} written={execution.write_count} skipped={execution.skip_count}"
    )
    if execution.exit_code == 0:
        duration = format_duration((execution.duration_ms or 0) / 1000)
        click.echo(f"✓ {execution.job_name} completed in {duration} ({execution.execution_id})")
    else:
        click.echo(f"✗ {execution.job_name} {execution.status.value} ({execution.execution_id})", err=True)
        for error in execution.errors:
            click.echo(f"  {error}", err=True)
    raise SystemExit(execution.exit_code)


@main.group("runs")
def runs_group():
    """Inspect recorded executions."""
    pass


@runs_group.command("list")
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def list_runs(config_path: Path):
    """List executions of the job in CONFIG_PATH, oldest first."""
    from chunkrun.run_store import FileRunStore

    config = _load(config_path)
    executions = FileRunStore(config.get_store_path()).list_executions(config.name)
    if not executions:
        click.echo(f"No executions recorded for {config.name}.")
        return

    for execution in executions:
        click.echo(
            f"{execution.execution_id}  {execution.status.value:<9}  "
            f"{execution.started_at.strftime('%Y-%m-%d %H:%M:%S')}  "
            f"read={execution.read_count} written={execution.write_count} "
            f"skipped={execution.skip_count}  {json.dumps(execution.parameters, sort_keys=True)}"
        )


@runs_group.command("show")
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("execution_id")
def show_run(config_path: Path, execution_id: str):
    """Show one execution as JSON."""
    from chunkrun.run_store import FileRunStore

    config = _load(config_path)
    execution = FileRunStore(config.get_store_path()).get_execution(execution_id)
    if execution is None:
        click.echo(f"✗ Unknown execution: {execution_id}", err=True)
        raise SystemExit(1)
    click.echo(json.dumps(execution.to_dict(), indent=2))


@runs_group.command("abandon")
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("execution_id")
@click.option("--reason", default="Abandoned by operator", help="Message recorded on the execution")
def abandon_run(config_path: Path, execution_id: str, reason: str):
    """
    Mark an unfinished execution as failed so its job can be restarted.

    Use this only when the process that ran it is gone.
    """
    from chunkrun.job_runner import JobRunner
    from chunkrun.run_store import FileRunStore

    config = _load(config_path)
    runner = JobRunner(store=FileRunStore(config.get_store_path()))
    try:
        execution = runner.abandon(execution_id, reason)
    except KeyError:
        click.echo(f"✗ Unknown execution: {execution_id}", err=True)
        raise SystemExit(1)
    except ValueError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)
    click.echo(f"✓ Execution {execution.execution_id} marked {execution.status.value}")


@main.command("init")
@click.argument("directory", type=click.Path(file_okay=False, path_type=Path))
@click.option("--force", is_flag=True, help="Overwrite existing files")
def init(directory: Path, force: bool):
    """Create a sample job (config, CSV input and table schema) in DIRECTORY."""
    import yaml

    directory.mkdir(parents=True, exist_ok=True)
    files = {
        directory / "job.yaml": yaml.safe_dump(SAMPLE_CONFIG, sort_keys=False),
        directory / "sample-data.csv": SAMPLE_CSV,
        directory / "schema.sql": SAMPLE_SCHEMA,
    }

    existing = [p for p in files if p.exists()]
    if existing and not force:
        click.echo(f"Files already exist: {', '.join(str(p) for p in existing)}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    for path, content in files.items():
        path.write_text(content)

    click.echo(f"Initialized sample job at {directory / 'job.yaml'}")
    click.echo(f"Run it with: chunkrun run {directory / 'job.yaml'}")
