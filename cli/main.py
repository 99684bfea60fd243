"""
queuectl — command line surface for the job queue.

    queuectl enqueue '{"command": "echo hi", "priority": 5}'
    queuectl enqueue --command "sleep 2" --run-at 2026-01-01T09:00:00Z
    echo '{"command": "make build"}' | queuectl enqueue -
    queuectl worker start --count 3
    queuectl status
    queuectl dlq list
    queuectl dlq retry <job-id>
    queuectl config set max-retries 5

Everything goes through QueueService against the shared store, so the CLI
can run on any machine that can reach the database. Output is JSON.
"""

import json
import logging
import sys

import click
import uvicorn

from api.schemas.job import JobLogResponse, JobResponse
from api.schemas.worker import WorkerResponse
from config.runtime import ConfigStore
from config.settings import settings
from models.base import SyncSessionLocal, sync_engine
from models.enums import JobState
from models.schema import init_db
from repository.errors import QueueError
from repository.service import QueueService
from worker.manager import start_workers

logger = logging.getLogger(__name__)


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _job_dict(job) -> dict:
    return JobResponse.model_validate(job).model_dump(mode="json")


def _format_log(entry) -> str:
    log = JobLogResponse.model_validate(entry)
    return f"[{log.created_at.isoformat()}] ({log.type}) {log.content.strip()}"


def _default_context() -> dict:
    with sync_engine.begin() as conn:
        init_db(conn)
    return {
        "service": QueueService.from_session_factory(SyncSessionLocal),
        "config": ConfigStore(SyncSessionLocal),
    }


@click.group()
@click.version_option("1.0.0", prog_name="queuectl")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """CLI-based background job queue backed by a shared database."""
    ctx.ensure_object(dict)
    if "service" not in ctx.obj:
        ctx.obj.update(_default_context())


# ── Jobs ────────────────────────────────────────────────────────


@cli.command()
@click.argument("payload", required=False)
@click.option("--id", "job_id", help="Job id (optional, otherwise auto-generated)")
@click.option("--command", "command", help="Shell command to execute")
@click.option("--priority", type=int, help="Job priority (higher runs first)")
@click.option("--run-at", help="ISO-8601 timestamp to schedule execution")
@click.option("--max-retries", type=int, help="Override max retries for this job")
@click.pass_obj
def enqueue(obj, payload, job_id, command, priority, run_at, max_retries) -> None:
    """Add a new job. PAYLOAD is JSON, or "-" to read JSON from stdin."""
    data = {}
    if payload:
        raw = click.get_text_stream("stdin").read() if payload == "-" else payload
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            raise click.ClickException("Invalid JSON payload")
        if not isinstance(data, dict):
            raise click.ClickException("Invalid JSON payload: expected an object")

    overrides = {
        "id": job_id,
        "command": command,
        "priority": priority,
        "run_at": run_at,
        "max_retries": max_retries,
    }
    data.update({key: value for key, value in overrides.items() if value is not None})
    if "runAt" in data and "run_at" not in data:
        data["run_at"] = data.pop("runAt")
    if "maxRetries" in data and "max_retries" not in data:
        data["max_retries"] = data.pop("maxRetries")

    try:
        new_id = obj["service"].enqueue(data)
    except QueueError as e:
        raise click.ClickException(f"Failed to enqueue job: {e}")
    click.echo(f"Enqueued job: {new_id}")


@cli.command(name="list")
@click.option(
    "--state",
    type=click.Choice([s.value for s in JobState]),
    help="Only jobs in this state",
)
@click.pass_obj
def list_jobs(obj, state) -> None:
    """List jobs, newest first."""
    _echo_json([_job_dict(job) for job in obj["service"].list_jobs(state)])


@cli.command()
@click.pass_obj
def status(obj) -> None:
    """Show job counts per state and the number of active workers."""
    _echo_json(obj["service"].get_status())


@cli.command()
@click.argument("job_id")
@click.pass_obj
def job(obj, job_id) -> None:
    """Show job details and logs."""
    service = obj["service"]
    found = service.get_job(job_id)
    if found is None:
        raise click.ClickException(f"Job not found: {job_id}")

    click.echo(f"Job: {found.id}")
    click.echo(f"Command: {found.command}")
    click.echo(f"State: {found.state}")
    click.echo(f"Priority: {found.priority}")
    click.echo(f"Attempts: {found.attempts}/{found.max_retries}")
    click.echo(f"Run at: {found.run_at.isoformat()}")
    click.echo(f"Created: {found.created_at.isoformat()}")
    click.echo(f"Updated: {found.updated_at.isoformat()}")
    if found.last_error:
        click.echo(f"Last error: {found.last_error}")

    click.echo("\nLogs:")
    entries = service.get_logs(job_id)
    if not entries:
        click.echo("(No logs found)")
    for entry in entries:
        click.echo(_format_log(entry))


@cli.command()
@click.argument("job_id")
@click.pass_obj
def logs(obj, job_id) -> None:
    """Show captured output for a job."""
    entries = obj["service"].get_logs(job_id)
    if not entries:
        click.echo(f"No logs found for job: {job_id}")
        return
    for entry in entries:
        click.echo(_format_log(entry))


# ── Dead-letter queue ───────────────────────────────────────────


@cli.group()
def dlq() -> None:
    """Dead letter queue operations."""


@dlq.command(name="list")
@click.pass_obj
def dlq_list(obj) -> None:
    """List jobs in the dead letter queue."""
    _echo_json([_job_dict(job) for job in obj["service"].dlq_list()])


@dlq.command(name="retry")
@click.argument("job_id")
@click.pass_obj
def dlq_retry(obj, job_id) -> None:
    """Move a dead job back to pending with attempts reset."""
    try:
        obj["service"].dlq_requeue(job_id)
    except QueueError as e:
        raise click.ClickException(f"Failed to retry job: {e}")
    click.echo(f"Job requeued: {job_id}")


# ── Workers ─────────────────────────────────────────────────────


@cli.group()
def worker() -> None:
    """Manage worker processes."""


@worker.command(name="start")
@click.option("--count", type=click.IntRange(min=1), default=1, show_default=True,
              help="Number of workers to start")
@click.option("--foreground", is_flag=True, help="Run worker(s) in the foreground and stream logs")
def worker_start(count, foreground) -> None:
    """Start one or more worker processes."""
    pids = start_workers(count, foreground=foreground)
    if not foreground:
        click.echo(f"Started background workers: {', '.join(str(p) for p in pids)}")


@worker.command(name="stop")
@click.pass_obj
def worker_stop(obj) -> None:
    """Gracefully stop all running workers after their current jobs."""
    count = obj["service"].request_stop_all_workers()
    click.echo(f"Stop requested for {count} worker(s).")


@worker.command(name="list")
@click.pass_obj
def worker_list(obj) -> None:
    """List registered workers."""
    workers = obj["service"].list_workers()
    _echo_json([WorkerResponse.model_validate(w).model_dump(mode="json") for w in workers])


# ── Config ──────────────────────────────────────────────────────


@cli.group(name="config")
def config_group() -> None:
    """Manage runtime configuration (max-retries, backoff-base, timeout-ms)."""


@config_group.command(name="set")
@click.argument("key")
@click.argument("value")
@click.pass_obj
def config_set(obj, key, value) -> None:
    """Set a configuration value."""
    try:
        obj["config"].set(key, value)
    except ValueError as e:
        raise click.ClickException(f"Failed to set config: {e}")
    click.echo("Config updated")


@config_group.command(name="get")
@click.argument("key", required=False)
@click.pass_obj
def config_get(obj, key) -> None:
    """Get one configuration value, or all of them."""
    store = obj["config"]
    _echo_json(store.get(key) if key else store.all())


# ── Dashboard ───────────────────────────────────────────────────


@cli.command()
@click.option("--host", default=settings.API_HOST, show_default=True)
@click.option("--port", type=int, default=settings.API_PORT, show_default=True)
def dashboard(host, port) -> None:
    """Serve the HTTP API / dashboard."""
    uvicorn.run("api.main:app", host=host, port=port)


def main() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    cli(obj={})


if __name__ == "__main__":
    main()
