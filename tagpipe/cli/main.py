#!/usr/bin/env python3
"""Main CLI entry point for TagPipe using Typer.

This module exposes the pipeline for local inspection and manual testing:
consent decisions, the pre-consent queue and single event submission all
operate on a JSON storage file that stands in for the browser's durable
storage.
"""

import asyncio
import json
import logging
from enum import IntEnum
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from typing_extensions import Annotated

from .. import __version__
from ..pipeline.config import (
    PipelineConfiguration,
    get_pipeline_config,
    load_pipeline_config_from_file,
    validate_pipeline_config,
)
from ..pipeline.location.providers import NoGeolocation
from ..pipeline.models.events import PageContext
from ..pipeline.storage.backends import JsonFileStorage
from ..pipeline.tracker import Tracker, create_tracker


class ExitCode(IntEnum):
    """CLI exit codes."""
    SUCCESS = 0
    DELIVERY_FAILED = 1   # Event was sent but no route accepted it
    CONFIG_ERROR = 3      # Configuration or argument error
    RUNTIME_ERROR = 4     # Unexpected error during execution


DEFAULT_STORAGE_PATH = Path(".tagpipe/storage.json")


app = typer.Typer(
    name="tagpipe",
    help="TagPipe - consent-gated analytics event pipeline",
    add_completion=False,
    rich_markup_mode="rich"
)
consent_app = typer.Typer(help="Inspect and change the stored consent decision", add_completion=False)
queue_app = typer.Typer(help="Inspect the pre-consent event queue", add_completion=False)
config_app = typer.Typer(help="Show and validate pipeline configuration", add_completion=False)
app.add_typer(consent_app, name="consent")
app.add_typer(queue_app, name="queue")
app.add_typer(config_app, name="config")


StorageOption = Annotated[
    Path,
    typer.Option("--storage", "-s", help="JSON file holding the pipeline's durable storage")
]
ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to a pipeline YAML configuration file")
]
EnvOption = Annotated[
    Optional[str],
    typer.Option("--env", "-e", help="Environment (development, staging, production)")
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable debug logging")
]


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_config(config_path: Optional[Path], env: Optional[str]) -> PipelineConfiguration:
    if config_path is None:
        return get_pipeline_config(environment=env)
    if not config_path.exists():
        typer.echo(f"❌ Configuration file not found: {config_path}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)
    try:
        return load_pipeline_config_from_file(config_path, env)
    except ValueError as e:
        typer.echo(f"❌ Configuration error: {e}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)


def _build_tracker(
    storage_path: Path,
    config_path: Optional[Path],
    env: Optional[str],
    page: Optional[PageContext] = None,
    no_geo: bool = False,
) -> Tracker:
    config = _load_config(config_path, env)
    return create_tracker(
        config=config,
        storage=JsonFileStorage(storage_path),
        page=page,
        geolocation=NoGeolocation() if no_geo else None,
    )


def _run(coro):
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        typer.echo("❌ Operation interrupted by user", err=True)
        raise typer.Exit(code=ExitCode.RUNTIME_ERROR.value)


def parse_params(values: Optional[List[str]]) -> Dict[str, Any]:
    """Parse ``key=value`` pairs; values that parse as JSON keep their type."""
    params: Dict[str, Any] = {}
    for item in values or []:
        key, sep, raw = item.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected key=value, got '{item}'")
        try:
            params[key.strip()] = json.loads(raw)
        except json.JSONDecodeError:
            params[key.strip()] = raw
    return params


@app.callback()
def main():
    """
    TagPipe - consent-gated analytics event pipeline.

    Resolves attribution, holds events until consent is decided and
    delivers them through direct or relay routes.
    """
    pass


@app.command(name="version")
def show_version():
    """Show version information."""
    typer.echo(f"TagPipe CLI v{__version__}")


@app.command()
def track(
    name: Annotated[str, typer.Argument(help="Event name, e.g. page_view")],
    param: Annotated[
        Optional[List[str]],
        typer.Option("--param", "-p", help="Event parameter as key=value (repeatable)")
    ] = None,
    url: Annotated[str, typer.Option("--url", help="Page URL the event happened on")] = "",
    referrer: Annotated[str, typer.Option("--referrer", help="Document referrer")] = "",
    user_agent: Annotated[str, typer.Option("--user-agent", help="Browser user agent")] = "",
    timezone: Annotated[str, typer.Option("--timezone", help="IANA timezone of the visitor")] = "",
    no_geo: Annotated[bool, typer.Option("--no-geo", help="Skip precise geolocation lookups")] = False,
    unload: Annotated[bool, typer.Option("--unload", help="Simulate page unload after tracking")] = False,
    storage: StorageOption = DEFAULT_STORAGE_PATH,
    config: ConfigOption = None,
    env: EnvOption = None,
    verbose: VerboseOption = False,
):
    """Track one event through the pipeline."""
    configure_logging(verbose)
    params = parse_params(param)
    page = PageContext(
        page_url=url,
        referrer=referrer,
        user_agent=user_agent,
        timezone=timezone,
    )
    tracker = _build_tracker(storage, config, env, page=page, no_geo=no_geo)

    async def _track():
        await tracker.start()
        try:
            outcome = await tracker.track_event(name, params)
            unload_result = await tracker.handle_page_unload() if unload else None
            return outcome, tracker.consent.state, unload_result
        finally:
            await tracker.close()

    outcome, state, unload_result = _run(_track())

    if outcome is None:
        typer.echo(f"⏸️  {name} queued (consent {state.value})")
    elif outcome.skipped:
        typer.echo(f"🚫 {name} not sent: {outcome.skipped_reason}")
    elif outcome.success:
        typer.echo(f"✅ {name} delivered via {outcome.strategy.value} ({outcome.transport.value})")
    else:
        typer.echo(f"❌ {name} delivery failed after {len(outcome.attempts)} attempts", err=True)
        for attempt in outcome.attempts:
            typer.echo(f"   {attempt.strategy.value}/{attempt.transport.value}: {attempt.error}", err=True)

    if unload_result is not None:
        typer.echo(
            f"📤 Unload: {unload_result['handed_off']} handed to beacon, "
            f"{unload_result['flushed']} queued events flushed"
        )

    if outcome is not None and not outcome.success and not outcome.skipped:
        raise typer.Exit(code=ExitCode.DELIVERY_FAILED.value)


@consent_app.command("status")
def consent_status(
    storage: StorageOption = DEFAULT_STORAGE_PATH,
    config: ConfigOption = None,
    env: EnvOption = None,
    verbose: VerboseOption = False,
):
    """Show the stored consent decision."""
    configure_logging(verbose)
    tracker = _build_tracker(storage, config, env, no_geo=True)
    record = tracker.consent.store.load()
    if record is None:
        typer.echo("Consent: UNKNOWN")
        typer.echo(f"Queued events: {tracker.queue.size()}")
        return

    typer.echo(f"Consent: {record.state.value} ({record.consent_mode})")
    for category, decision in record.categories().items():
        typer.echo(f"   {category}: {decision}")
    typer.echo(f"Queued events: {tracker.queue.size()}")


def _decide(storage: Path, config: Optional[Path], env: Optional[str], grant: bool,
            categories: Optional[Dict[str, Any]] = None) -> None:
    tracker = _build_tracker(storage, config, env, no_geo=True)

    async def _apply():
        await tracker.start()
        try:
            queued = tracker.queue.size()
            if grant:
                changed = await tracker.consent.grant(categories)
            else:
                changed = await tracker.consent.deny()
            return changed, queued
        finally:
            await tracker.close()

    changed, queued = _run(_apply())
    state = tracker.consent.state.value
    if changed:
        typer.echo(f"✅ Consent {state}, replayed {queued} queued events")
    else:
        typer.echo(f"Consent already {state}, nothing changed")


@consent_app.command("grant")
def consent_grant(
    category: Annotated[
        Optional[List[str]],
        typer.Option("--category", help="Grant only these categories (repeatable)")
    ] = None,
    storage: StorageOption = DEFAULT_STORAGE_PATH,
    config: ConfigOption = None,
    env: EnvOption = None,
    verbose: VerboseOption = False,
):
    """Grant consent and replay queued events."""
    configure_logging(verbose)
    categories = {name: "GRANTED" for name in category} if category else None
    _decide(storage, config, env, grant=True, categories=categories)


@consent_app.command("deny")
def consent_deny(
    storage: StorageOption = DEFAULT_STORAGE_PATH,
    config: ConfigOption = None,
    env: EnvOption = None,
    verbose: VerboseOption = False,
):
    """Deny consent and replay queued events anonymized."""
    configure_logging(verbose)
    _decide(storage, config, env, grant=False)


@consent_app.command("reset")
def consent_reset(
    storage: StorageOption = DEFAULT_STORAGE_PATH,
    config: ConfigOption = None,
    env: EnvOption = None,
    verbose: VerboseOption = False,
):
    """Forget the decision and purge queued events and tracking data."""
    configure_logging(verbose)
    tracker = _build_tracker(storage, config, env, no_geo=True)

    async def _reset():
        try:
            await tracker.consent.reset()
        finally:
            await tracker.close()

    _run(_reset())
    typer.echo("✅ Consent reset to UNKNOWN")


@queue_app.command("show")
def queue_show(
    as_json: Annotated[bool, typer.Option("--json", help="Print queued events as JSON")] = False,
    storage: StorageOption = DEFAULT_STORAGE_PATH,
    config: ConfigOption = None,
    env: EnvOption = None,
    verbose: VerboseOption = False,
):
    """List queued events, oldest first."""
    configure_logging(verbose)
    tracker = _build_tracker(storage, config, env, no_geo=True)
    events = tracker.queue.peek()

    if as_json:
        typer.echo(json.dumps([event.model_dump(mode="json") for event in events], indent=2))
        return

    if not events:
        typer.echo("Queue is empty")
        return

    typer.echo(f"{len(events)} queued events:")
    for event in events:
        age_seconds = event.age_ms() // 1000
        typer.echo(f"   {event.id[:8]}  {event.name:<24} {age_seconds}s old")


@queue_app.command("sweep")
def queue_sweep(
    storage: StorageOption = DEFAULT_STORAGE_PATH,
    config: ConfigOption = None,
    env: EnvOption = None,
    verbose: VerboseOption = False,
):
    """Evict expired and over-limit events."""
    configure_logging(verbose)
    tracker = _build_tracker(storage, config, env, no_geo=True)
    evicted = tracker.queue.sweep()
    typer.echo(f"🧹 Evicted {evicted} events, {tracker.queue.size()} remain")


@queue_app.command("flush")
def queue_flush(
    storage: StorageOption = DEFAULT_STORAGE_PATH,
    config: ConfigOption = None,
    env: EnvOption = None,
    verbose: VerboseOption = False,
):
    """Send all queued events as one batch."""
    configure_logging(verbose)
    tracker = _build_tracker(storage, config, env, no_geo=True)

    async def _flush():
        await tracker.start()
        try:
            return await tracker.flush_queue(critical=True)
        finally:
            await tracker.close()

    outcome = _run(_flush())
    if outcome is None:
        typer.echo("Queue is empty, nothing to flush")
    elif outcome.success:
        typer.echo(f"✅ Flushed {outcome.event_count} events via {outcome.strategy.value}")
    else:
        typer.echo(f"❌ Flush of {outcome.event_count} events failed", err=True)
        raise typer.Exit(code=ExitCode.DELIVERY_FAILED.value)


@config_app.command("show")
def config_show(
    config: ConfigOption = None,
    env: EnvOption = None,
):
    """Print the effective configuration as JSON."""
    loaded = _load_config(config, env)
    typer.echo(json.dumps(loaded.model_dump(mode="json"), indent=2))


@config_app.command("validate")
def config_validate(
    config_file: Annotated[Path, typer.Argument(help="Pipeline configuration file to validate")],
):
    """Validate a pipeline configuration file."""
    if not config_file.exists():
        typer.echo(f"❌ Configuration file not found: {config_file}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)

    issues = validate_pipeline_config(config_file)
    if issues:
        for issue in issues:
            typer.echo(f"❌ {issue}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)

    typer.echo(f"✅ Configuration file {config_file} is valid")


def cli_main():
    """Entry point for console script."""
    app()


if __name__ == "__main__":
    app()
