"""Click CLI entry point for Skuld."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click
from pydantic import ValidationError

from skuld.config import Settings
from skuld.errors import SkuldError
from skuld.lifecycle.history import recent_events
from skuld.logging import configure_logging
from skuld.wiring import build_controller, open_database

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from skuld.lifecycle import LifecycleController
    from skuld.models import LifecycleState


def _run(settings: Settings, action: Callable[[LifecycleController], Awaitable[Any]]) -> Any:
    """Build a controller, run one async action against it and tear it down.

    Lifecycle errors are printed and turn into exit code 1.
    """

    async def _main() -> Any:
        db = open_database(settings)
        controller = build_controller(settings, db)
        try:
            return await action(controller)
        finally:
            await controller.close()
            db.close()

    try:
        return asyncio.run(_main())
    except (SkuldError, ValidationError, ValueError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


def _print_state(state: LifecycleState) -> None:
    click.echo(f"Experiment {state.experiment_id}")
    click.echo(f"  Status:   {state.status.value}")
    click.echo(f"  Health:   {state.health.value}")
    if state.total_steps:
        click.echo(f"  Rollout:  step {state.current_step}/{state.total_steps}")
    if state.rollout_percentage is not None:
        click.echo(f"  Traffic:  {state.rollout_percentage:g}%")
    if state.scheduled_start:
        click.echo(f"  Starts:   {state.scheduled_start.isoformat()}")
    if state.next_check:
        click.echo(f"  Next check: {state.next_check.isoformat()}")
    open_alerts = [a for a in state.alerts if not a.acknowledged]
    if open_alerts:
        click.echo(f"  Open alerts ({len(open_alerts)}):")
        for alert in open_alerts:
            click.echo(f"    [{alert.id}] {alert.severity.value}: {alert.message}")


def _load_body(body_file: Path | None, body_json: str | None) -> dict[str, Any]:
    if body_file is not None and body_json is not None:
        raise click.UsageError("use either --file or --json, not both")
    if body_file is not None:
        raw = body_file.read_text(encoding="utf-8")
    elif body_json is not None:
        raw = body_json
    else:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f"invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise click.BadParameter("config body must be a JSON object")
    return data


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Skuld: automated experiment lifecycle controller."""
    ctx.ensure_object(dict)
    settings = Settings()
    log_level = "DEBUG" if verbose else settings.log_level
    configure_logging(log_level=log_level, log_format=settings.log_format)
    ctx.obj["settings"] = settings
    ctx.obj["verbose"] = verbose


# --- Configs ---


@cli.group()
def config() -> None:
    """Manage lifecycle configs."""


@config.command("create")
@click.argument("experiment_id")
@click.option(
    "--file",
    "body_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="JSON file with the config body",
)
@click.option("--json", "body_json", type=str, default=None, help="Inline JSON config body")
@click.option("--actor", default="cli", help="Actor recorded in the audit log")
@click.pass_context
def config_create(
    ctx: click.Context,
    experiment_id: str,
    body_file: Path | None,
    body_json: str | None,
    actor: str,
) -> None:
    """Register a lifecycle config for an experiment."""
    body = _load_body(body_file, body_json)
    created = _run(
        ctx.obj["settings"], lambda c: c.create_config(experiment_id, body, actor=actor)
    )
    click.echo(f"Created lifecycle config {created.id} for experiment {experiment_id}")


@config.command("update")
@click.argument("config_id")
@click.option("--json", "body_json", type=str, required=True, help="JSON patch")
@click.option("--actor", default="cli", help="Actor recorded in the audit log")
@click.pass_context
def config_update(ctx: click.Context, config_id: str, body_json: str, actor: str) -> None:
    """Shallow-merge a JSON patch into a config."""
    patch = _load_body(None, body_json)
    updated = _run(ctx.obj["settings"], lambda c: c.update_config(config_id, patch, actor=actor))
    click.echo(f"Updated lifecycle config {updated.id}: {', '.join(sorted(patch))}")


@config.command("show")
@click.argument("experiment_id")
@click.pass_context
def config_show(ctx: click.Context, experiment_id: str) -> None:
    """Print an experiment's lifecycle config as JSON."""
    settings = ctx.obj["settings"]
    db = open_database(settings)
    try:
        found = db.get_config_for_experiment(experiment_id)
    finally:
        db.close()
    if found is None:
        click.echo(f"No lifecycle config for experiment {experiment_id}.", err=True)
        sys.exit(1)
    click.echo(json.dumps(found.model_dump(mode="json"), indent=2))


# --- Transitions ---


@cli.command()
@click.argument("experiment_id")
@click.option("--actor", default="cli", help="Who is starting the experiment")
@click.pass_context
def start(ctx: click.Context, experiment_id: str, actor: str) -> None:
    """Start or resume an experiment (honours its schedule)."""
    state = _run(ctx.obj["settings"], lambda c: c.start(experiment_id, actor=actor))
    _print_state(state)


@cli.command()
@click.argument("experiment_id")
@click.option("--reason", default="", help="Why the experiment is paused")
@click.option("--actor", default="cli", help="Who is pausing the experiment")
@click.pass_context
def pause(ctx: click.Context, experiment_id: str, reason: str, actor: str) -> None:
    """Pause a running experiment."""
    state = _run(
        ctx.obj["settings"], lambda c: c.pause(experiment_id, reason=reason, actor=actor)
    )
    _print_state(state)


@cli.command()
@click.argument("experiment_id")
@click.option("--reason", default="", help="Why the experiment is stopped")
@click.option("--actor", default="cli", help="Who is stopping the experiment")
@click.pass_context
def stop(ctx: click.Context, experiment_id: str, reason: str, actor: str) -> None:
    """Complete an experiment."""
    state = _run(
        ctx.obj["settings"], lambda c: c.stop(experiment_id, reason=reason, actor=actor)
    )
    _print_state(state)


@cli.command()
@click.argument("experiment_id")
@click.option("--reason", default="", help="Why the experiment is rolled back")
@click.option("--actor", default="cli", help="Who is rolling back")
@click.pass_context
def rollback(ctx: click.Context, experiment_id: str, reason: str, actor: str) -> None:
    """Disable the experiment's flag and mark it failed."""
    state = _run(
        ctx.obj["settings"], lambda c: c.rollback(experiment_id, reason=reason, actor=actor)
    )
    _print_state(state)


@cli.command()
@click.argument("experiment_id")
@click.option("--actor", default="cli", help="Who approves the step")
@click.pass_context
def advance(ctx: click.Context, experiment_id: str, actor: str) -> None:
    """Move to the next rollout step without waiting for its gates."""
    state = _run(ctx.obj["settings"], lambda c: c.advance_rollout(experiment_id, actor=actor))
    _print_state(state)


@cli.command()
@click.argument("experiment_id")
@click.argument("alert_id")
@click.option("--actor", default="cli", help="Who acknowledges the alert")
@click.pass_context
def ack(ctx: click.Context, experiment_id: str, alert_id: str, actor: str) -> None:
    """Acknowledge an alert."""
    alert = _run(
        ctx.obj["settings"], lambda c: c.acknowledge_alert(experiment_id, alert_id, actor=actor)
    )
    click.echo(f"Alert {alert.id} acknowledged by {alert.acknowledged_by}")


# --- Reads ---


@cli.command()
@click.argument("experiment_id", required=False)
@click.pass_context
def status(ctx: click.Context, experiment_id: str | None) -> None:
    """Show one experiment's lifecycle state, or a summary of all of them."""
    settings = ctx.obj["settings"]
    db = open_database(settings)
    try:
        if experiment_id is None:
            states = db.list_states()
            if not states:
                click.echo("No lifecycle states found.")
                return
            for s in states:
                click.echo(f"  {s.experiment_id:24s} {s.status.value:10s} {s.health.value}")
            return
        state = db.get_state(experiment_id)
    finally:
        db.close()
    if state is None:
        click.echo(f"No lifecycle state for experiment {experiment_id}.", err=True)
        sys.exit(1)
    _print_state(state)


@cli.command()
@click.argument("experiment_id")
@click.option("--limit", default=50, type=int, help="Maximum number of events")
@click.pass_context
def events(ctx: click.Context, experiment_id: str, limit: int) -> None:
    """Show an experiment's recent lifecycle events, newest first."""
    settings = ctx.obj["settings"]
    db = open_database(settings)
    try:
        state = db.get_state(experiment_id)
    finally:
        db.close()
    if state is None:
        click.echo(f"No lifecycle state for experiment {experiment_id}.", err=True)
        sys.exit(1)
    found = recent_events(state, limit)
    if not found:
        click.echo("No events.")
        return
    for event in found:
        detail = json.dumps(event.data, default=str) if event.data else ""
        click.echo(
            f"  [{event.timestamp.isoformat()}] {event.type.value} "
            f"({event.triggered_by.value}) {detail}".rstrip()
        )


@cli.command()
@click.argument("experiment_id")
@click.option("--limit", default=20, type=int, help="Maximum number of entries")
@click.pass_context
def audit(ctx: click.Context, experiment_id: str, limit: int) -> None:
    """Show audit log entries for an experiment."""
    settings = ctx.obj["settings"]
    db = open_database(settings)
    try:
        entries = db.get_audit_entries(experiment_id, limit)
    finally:
        db.close()
    if not entries:
        click.echo("No audit entries.")
        return
    for e in entries:
        click.echo(
            f"  [{e['created_at']}] {e['action']} by {e['actor']}: "
            f"{e['old_value']} -> {e['new_value']}"
        )


# --- Control loop ---


@cli.command()
@click.pass_context
def tick(ctx: click.Context) -> None:
    """Run one control-loop scan and exit."""
    serviced = _run(ctx.obj["settings"], lambda c: c.tick())
    click.echo(f"Serviced {serviced} experiment(s).")


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Run the control loop in the foreground until interrupted."""
    settings = ctx.obj["settings"]
    click.echo(f"Ticking every {settings.tick_interval_seconds:g}s. Press Ctrl-C to stop.")
    try:
        _run(settings, lambda c: c.run_forever())
    except KeyboardInterrupt:
        click.echo("Stopped.")


@cli.command()
@click.option("--workers", default=1, type=int, help="Number of Huey worker threads")
@click.pass_context
def worker(ctx: click.Context, workers: int) -> None:
    """Start the Huey consumer that runs the periodic tick."""
    from skuld.tasks import huey

    click.echo(f"Starting Huey consumer with {workers} workers...")
    consumer = huey.create_consumer(workers=workers)
    consumer.run()


@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Verify which collaborator services are configured."""
    settings = ctx.obj["settings"]
    services = {
        "Experiment service": bool(settings.experiment_service_url),
        "Analytics engine": bool(settings.analytics_service_url),
        "Slack": bool(settings.slack_webhook_url),
        "Webhook": bool(settings.notification_webhook_url),
    }
    for name, configured in services.items():
        state = "OK" if configured else "-- not set (offline)"
        click.echo(f"  {name:20s} {state}")


@cli.command()
@click.option("--host", type=str, default=None, help="Bind host")
@click.option("--port", type=int, default=None, help="Bind port")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Start the FastAPI admin server (with the built-in ticker)."""
    import uvicorn

    settings = ctx.obj["settings"]
    uvicorn.run(
        "skuld.api.app:create_app",
        factory=True,
        host=host or settings.api_host,
        port=port or settings.api_port,
    )
