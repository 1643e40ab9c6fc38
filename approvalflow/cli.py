"""Command line interface for approvalflow instances and workers."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Coroutine, List, Optional, TypeVar

import typer

from approvalflow import OrchestrationEngine, SignalListener, get_transport, load_config
from approvalflow.activity import get_notifier
from approvalflow.contracts import RuntimeState
from approvalflow.exceptions import ClientError

app = typer.Typer(help="CLI for approvalflow document approvals")

# Command groups
instance_app = typer.Typer(help="Commands for managing workflow instances")
worker_app = typer.Typer(help="Commands for running workers")

app.add_typer(instance_app, name="instance")
app.add_typer(worker_app, name="worker")

T = TypeVar("T")


class NotifierChoice(str, Enum):
    logging = "logging"
    transport = "transport"


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, help="Logging level; defaults to log_level from config"
    ),
) -> None:
    """approvalflow CLI entry point."""
    logging.basicConfig(
        level=(log_level or load_config().log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _run(coro: Coroutine[None, None, T]) -> T:
    """Run ``coro``; client errors become a red message and exit code 1."""
    try:
        return asyncio.run(coro)
    except ClientError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)


@instance_app.command("start")
def instance_start(
    title: str = typer.Option(..., help="Document title"),
    creator: str = typer.Option(..., help="Who created the document"),
    application_id: str = typer.Option(..., help="Application identifier"),
    created_date: Optional[datetime] = typer.Option(
        None, help="Document creation time (default: now)"
    ),
) -> None:
    """
    Start a new approval instance and run it to its first wait.

    Example:
        approvalflow instance start --title "Offer Letter" --creator alice --application-id A1
        # Output: Started instance 3f2c...
        #         Status: Waiting for feedback
    """

    async def _start():
        engine = OrchestrationEngine()
        handle = await engine.start(
            {
                "title": title,
                "creator": creator,
                "application_id": application_id,
                "created_date": created_date or datetime.now(timezone.utc),
            }
        )
        return await handle.status()

    status = _run(_start())
    typer.echo(f"Started instance {status.instance_id}")
    typer.echo(f"Status: {status.custom_status}")


@instance_app.command("signal")
def instance_signal(instance_id: str, signal_name: str, payload: str) -> None:
    """
    Deliver a signal to an instance. PAYLOAD is JSON.

    Example:
        approvalflow instance signal 3f2c... InterviewFeedback '{"feedback": "great fit", "isPassed": true}'
        approvalflow instance signal 3f2c... SubmissionApproval true
    """
    try:
        value = json.loads(payload)
    except json.JSONDecodeError as exc:
        typer.secho(f"Payload is not valid JSON: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    result = _run(OrchestrationEngine().signal(instance_id, signal_name, value))
    typer.echo(f"{signal_name}: {result.value}")


@instance_app.command("status")
def instance_status(instance_id: str) -> None:
    """Show runtime state, custom status and output of an instance."""
    status = _run(OrchestrationEngine().query_status(instance_id))
    typer.echo(f"Instance {status.instance_id}: {status.runtime_state.value}")
    typer.echo(f"Status: {status.custom_status}")
    if status.output is not None:
        typer.echo(f"Output: {status.output}")
    if status.failure is not None:
        typer.echo(f"Failure: {status.failure}")
    if status.pending_signals:
        typer.echo(f"Pending signals: {', '.join(status.pending_signals)}")


@instance_app.command("history")
def instance_history(instance_id: str) -> None:
    """Print the history log of an instance."""
    entries = _run(OrchestrationEngine().get_history(instance_id))
    for entry in entries:
        typer.echo(
            f"#{entry.sequence}\t{entry.recorded_at.isoformat()}\t"
            f"{entry.kind.value}\t{entry.step}\t{json.dumps(entry.payload)}"
        )


@instance_app.command("list")
def instance_list(
    status: Optional[List[RuntimeState]] = typer.Option(
        None, help="Runtime states to include (default: Pending and Running)"
    ),
    days: Optional[int] = typer.Option(None, help="Only instances created in the last N days"),
    page_size: Optional[int] = typer.Option(None, help="Instances per page"),
    page_token: Optional[str] = typer.Option(None, help="Token from a previous page"),
) -> None:
    """
    List instances by runtime state and creation time.

    Example:
        approvalflow instance list --status Running --days 7
        # Output: 3f2c...    Running    Awaiting submission
    """

    async def _list():
        engine = OrchestrationEngine()
        await engine.refresh_directory()
        created_after = (
            datetime.now(timezone.utc) - timedelta(days=days) if days is not None else None
        )
        return engine.list_instances(
            statuses=status or None,
            created_after=created_after,
            page_size=page_size,
            page_token=page_token,
        )

    page = _run(_list())
    if not page.items:
        typer.echo("No instances found")
    for item in page.items:
        typer.echo(f"{item.instance_id}\t{item.runtime_state.value}\t{item.custom_status}")
    if page.next_page_token:
        typer.echo(f"Next page token: {page.next_page_token}")


@instance_app.command("sweep")
def instance_sweep() -> None:
    """Fail instances whose open wait exceeded wait_timeout_seconds."""
    expired = _run(OrchestrationEngine().expire_overdue())
    if not expired:
        typer.echo("No overdue instances")
    for instance_id in expired:
        typer.echo(f"Expired {instance_id}")


@worker_app.command("listen")
def worker_listen(
    lifespan: Optional[float] = typer.Option(
        None, help="Worker timeout in seconds (default: run indefinitely)"
    ),
    notifier: Optional[NotifierChoice] = typer.Option(
        None, help="How approval requests go out; defaults to notifier from config"
    ),
) -> None:
    """
    Resume unfinished instances, then deliver signals from the transport.

    Example:
        approvalflow worker listen --lifespan 300 --notifier transport
    """
    config = load_config()
    if notifier is not None:
        config = config.model_copy(update={"notifier": notifier.value})

    async def _listen():
        transport = get_transport(config=config)
        engine = OrchestrationEngine(
            config=config, notifier=get_notifier(config, transport)
        )
        await engine.recover()
        listener = SignalListener(transport, engine)
        try:
            await listener.start(lifespan=lifespan)
        finally:
            await transport.disconnect()

    typer.echo("Starting signal listener")
    _run(_listen())


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
