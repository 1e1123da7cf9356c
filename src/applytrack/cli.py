"""applytrack command-line interface."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Any

import typer

from . import __version__
from .classifier import Classifier
from .config import Config, load_config, resolve_config_path
from .errors import MessageParseError, PersistenceError
from .extract import sender_domain
from .logging import configure_logging
from .mailbox import parse_message
from .matcher import RecordMatcher
from .pipeline import ScanPipeline
from .reconcile import STATUS_TRANSITIONS, ReconciliationEngine
from .rules import load_rules
from .runtime import DaemonRuntime
from .scheduler import ScanScheduler
from .store import ApplicationStore

app = typer.Typer(help="Track job applications from mailbox updates.")
LOGGER = logging.getLogger(__name__)


@dataclass
class CLIState:
    """Stores shared CLI options."""

    config_path: Path | None


@dataclass
class Services:
    """Objects wired together from configuration."""

    config: Config
    store: ApplicationStore
    classifier: Classifier
    matcher: RecordMatcher
    pipeline: ScanPipeline


@app.callback()
def _applytrack(
    ctx: typer.Context,
    config: Annotated[
        Path | None,
        typer.Option(
            "-c",
            "--config",
            help="Path to config (env APPLYTRACK_CONFIG or ~/.config/applytrack/config.yaml).",
        ),
    ] = None,
) -> None:
    """Capture global CLI options."""

    resolved = config.expanduser() if config else None
    ctx.obj = CLIState(config_path=resolved)


@app.command()
def daemon(
    ctx: typer.Context,
    skip_initial_scan: Annotated[
        bool,
        typer.Option(
            "--skip-initial-scan",
            help="Wait for the first interval instead of scanning at startup.",
        ),
    ] = False,
) -> None:
    """Poll the mailbox on a fixed interval until interrupted."""

    services = _build_services(_state(ctx))
    try:
        if not services.pipeline.enabled:
            typer.secho(
                "Mailbox scanning is disabled; set mailbox.enabled in the config.",
                fg=typer.colors.YELLOW,
                err=True,
            )
            raise typer.Exit(1)
        scheduler = ScanScheduler(
            services.pipeline, interval_minutes=services.config.scan.interval_minutes
        )
        runtime = DaemonRuntime(scheduler, status_callback=_format_status_message)
        LOGGER.info(
            "Starting applytrack daemon for %s (database %s)",
            services.config.mailbox.user,
            services.store.path,
        )
        runtime.run(initial_scan=not skip_initial_scan)
    finally:
        services.store.close()


@app.command()
def scan(ctx: typer.Context) -> None:
    """Run a single scan cycle now."""

    services = _build_services(_state(ctx))
    try:
        if not services.pipeline.enabled:
            typer.secho("Mailbox scanning is disabled.", fg=typer.colors.YELLOW, err=True)
            raise typer.Exit(1)
        scheduler = ScanScheduler(
            services.pipeline, interval_minutes=services.config.scan.interval_minutes
        )
        result = scheduler.run_now()
        if result is None:
            typer.secho(
                f"Scan failed: {scheduler.last_error or 'see log'}", fg=typer.colors.RED, err=True
            )
            raise typer.Exit(1)
        typer.echo(
            f"Scanned {len(result.outcomes)} message(s): "
            f"{result.processed} reconciled, {result.skipped} skipped."
        )
        for outcome in result.outcomes:
            target = f"application {outcome.application_id}" if outcome.application_id else "-"
            typer.echo(f"  - email {outcome.email_id}: {outcome.category} -> {outcome.action} ({target})")
    finally:
        services.store.close()


@app.command()
def classify(
    ctx: typer.Context,
    message: Annotated[Path, typer.Argument(..., help="Path to .eml message file.")],
) -> None:
    """Classify a single RFC822 message without changing anything."""

    services = _build_services(_state(ctx))
    try:
        message_path = message.expanduser()
        if not message_path.is_file():
            typer.secho(f"Message file not found: {message_path}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        try:
            email = parse_message(message_path.read_bytes(), fallback_message_id=message_path.name)
        except MessageParseError as exc:
            typer.secho(f"Failed to parse message: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1) from exc

        category = services.classifier.classify(email)
        try:
            matched = services.matcher.find_correlated(email)
        except PersistenceError as exc:
            typer.secho(f"Store error: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1) from exc
        typer.echo(f"Message: {message_path}")
        typer.echo(f"Message-ID: {email.message_id}")
        typer.echo(f"Sender domain: {sender_domain(email.sender) or 'n/a'}")
        typer.echo(f"Category: {category}")
        if matched is None:
            typer.echo("Application: none")
        else:
            transition = STATUS_TRANSITIONS.get(category)
            next_status = transition.value if transition else matched.status.value
            typer.echo(
                f"Application: {matched.id} {matched.company} ({matched.position}) "
                f"{matched.status.value} -> {next_status}"
            )
    finally:
        services.store.close()


@app.command()
def reprocess(
    ctx: typer.Context,
    email_id: Annotated[int, typer.Argument(..., help="Stored email id to reprocess.")],
) -> None:
    """Re-run classification and reconciliation for a stored message."""

    services = _build_services(_state(ctx))
    try:
        try:
            outcome = services.pipeline.reprocess(email_id)
        except PersistenceError as exc:
            typer.secho(f"Store error: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1) from exc
        if outcome is None:
            typer.secho(f"No stored email with id {email_id}.", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        typer.echo(f"Email {email_id}: {outcome.category} -> {outcome.action}")
        if outcome.application_id is not None:
            status = outcome.status.value if outcome.status else "?"
            typer.echo(f"Application {outcome.application_id}: {status}")
        if outcome.action == "error":
            raise typer.Exit(1)
    finally:
        services.store.close()


@app.command()
def emails(
    ctx: typer.Context,
    limit: Annotated[
        int,
        typer.Option("-n", "--limit", min=1, help="Number of messages to list."),
    ] = 50,
) -> None:
    """List stored messages, newest first."""

    services = _build_services(_state(ctx))
    try:
        try:
            stored = services.store.recent_emails(limit=limit)
        except PersistenceError as exc:
            typer.secho(f"Store error: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1) from exc
        if not stored:
            typer.echo("No stored emails.")
            return
        for email in stored:
            marker = "●" if email.processed else "○"
            received = email.email_date.strftime("%Y-%m-%d %H:%M") if email.email_date else "-"
            typer.echo(
                f"{marker} {email.id}: {received} | {email.category or '-'} | "
                f"{email.sender} | {email.subject}"
            )
    finally:
        services.store.close()


@app.command()
def status(ctx: typer.Context) -> None:
    """Display configuration and stored totals."""

    state = _state(ctx)
    services = _build_services(state)
    try:
        config = services.config
        counts = services.store.counts()
        mailbox = config.mailbox
        typer.echo("→ applytrack Status")
        typer.echo(f"Version: {__version__}")
        typer.echo(f"Config path: {resolve_config_path(state.config_path)}")
        typer.echo(f"Database: {services.store.path}")
        if mailbox.enabled:
            typer.echo(f"Mailbox: ● Enabled ({mailbox.user}@{mailbox.host}:{mailbox.port})")
        else:
            typer.echo("Mailbox: ○ Disabled")
        typer.echo(f"Scan interval: {config.scan.interval_minutes} minute(s)")
        typer.echo(f"Categories: {', '.join(services.classifier.labels)}")
        typer.echo("")
        typer.echo(f"Applications: {counts['applications']}")
        typer.echo(f"Emails: {counts['emails']} ({counts['unprocessed_emails']} unprocessed)")
        for record in services.store.list_applications()[:10]:
            typer.echo(f"  - {record.id}: {record.company} | {record.position} | {record.status.value}")
    finally:
        services.store.close()


def _state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise RuntimeError("CLI state missing from context.")
    return state


def _build_services(state: CLIState) -> Services:
    config = load_config(state.config_path)
    configure_logging(config.logging, config.root_dir)
    try:
        store = ApplicationStore(config.database)
    except PersistenceError as exc:
        typer.secho(f"Store error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(2) from exc
    classifier = Classifier(load_rules(config.rules_file))
    matcher = RecordMatcher(store)
    pipeline = ScanPipeline(
        mailbox_config=config.mailbox,
        classifier=classifier,
        matcher=matcher,
        engine=ReconciliationEngine(store),
        store=store,
    )
    return Services(
        config=config,
        store=store,
        classifier=classifier,
        matcher=matcher,
        pipeline=pipeline,
    )


def _format_status_message(snapshot: dict[str, Any]) -> str:
    categories = ", ".join(
        f"{category}={count}" for category, count in sorted(snapshot["category_counts"].items())
    )
    lines = [
        "applytrack daemon status:",
        f"  state={snapshot['state']} cycles={snapshot['cycles']} "
        f"failed={snapshot['failed_cycles']} skipped_ticks={snapshot['skipped_ticks']}",
        f"  fetched={snapshot['fetched']} parse_errors={snapshot['parse_errors']} "
        f"created={snapshot['created']} updated={snapshot['updated']}",
        f"  categories: {categories or 'none'}",
    ]
    if snapshot["last_error"]:
        lines.append(f"  last_error: {snapshot['last_error']}")
    return "\n".join(lines)


def main() -> None:  # pragma: no cover - delegated to Typer
    app()


__all__ = ["app", "main"]
