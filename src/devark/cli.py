"""CLI entry point for devark."""

import asyncio
import json
import logging

import click
import uvicorn

from .core import CLAUDE_CODE, CURSOR, parse_timestamp, source_display_name
from .errors import DevarkError, HookInstallError, friendly_error_message
from .installer import INSTALLERS, get_installer

TOOLS = (CLAUDE_CODE, CURSOR)


def _selected_tools(tool: str | None) -> tuple[str, ...]:
    return (tool,) if tool else TOOLS


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def main(verbose: bool):
    """Observe AI coding assistant prompts, score them, coach on responses and sync sessions."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


@main.command()
@click.option("--port", default=8080, help="Port to serve on.")
@click.option("--host", default="127.0.0.1", help="Host to bind to.")
def serve(port: int, host: str):
    """Start the local browsing API."""
    click.echo(f"Starting devark on http://{host}:{port}")
    uvicorn.run("devark.server:app", host=host, port=port, reload=False)


@main.command()
@click.option("--poll-interval", type=float, default=None, help="Seconds between polling passes.")
def watch(poll_interval: float | None):
    """Watch the hook directory and analyze prompts and responses as they arrive."""
    from .detection import create_detection_service
    from .events import ANALYSIS_COMPLETE, ANALYSIS_FAILED, FINAL_RESPONSE_DETECTED
    from .watcher import HookWatcher

    service = create_detection_service()
    dispatcher = service.dispatcher

    def on_analysis(data):
        prompt = data["prompt"]
        click.echo(f"[{prompt['score']:.1f}/10] {prompt['truncatedText']} ({data['analyzedToday']} today)")

    dispatcher.on(ANALYSIS_COMPLETE, on_analysis)
    dispatcher.on(ANALYSIS_FAILED, lambda data: click.echo(f"Analysis failed: {data['error']}", err=True))
    dispatcher.on(FINAL_RESPONSE_DETECTED, lambda data: click.echo(
        f"Conversation finished ({data['conversationState'].stop_reason})"
    ))
    if service.coaching is not None:
        service.coaching.subscribe(lambda coaching: coaching and click.echo(
            "Coaching: " + "; ".join(s.title for s in coaching.suggestions)
        ))

    watcher = HookWatcher(service, poll_interval or service.settings.poll_interval)
    click.echo(f"Watching {service.processor.hook_dir} (Ctrl+C to stop)")
    try:
        asyncio.run(watcher.run_forever())
    except KeyboardInterrupt:
        click.echo("Stopped.")


@main.command("install-hooks")
@click.option("--tool", type=click.Choice(TOOLS), default=None, help="Only this tool.")
@click.option("--hook", "hooks", multiple=True, help="Hook type to install (repeatable).")
def install_hooks(tool: str | None, hooks: tuple[str, ...]):
    """Install capture hooks into the user-level settings of each tool."""
    failed = False
    for name in _selected_tools(tool):
        try:
            result = get_installer(name).install(list(hooks) or None)
        except HookInstallError as e:
            click.echo(f"{source_display_name(name)}: {e}", err=True)
            failed = True
            continue
        if result.hooks_installed:
            click.echo(f"{source_display_name(name)}: installed {', '.join(result.hooks_installed)}")
        for error in result.errors:
            click.echo(f"{source_display_name(name)}: {error['hook']}: {error['error']}", err=True)
        failed = failed or not result.success
    if failed:
        raise SystemExit(1)


@main.command("uninstall-hooks")
@click.option("--tool", type=click.Choice(TOOLS), default=None, help="Only this tool.")
def uninstall_hooks(tool: str | None):
    """Remove devark's hooks, leaving other entries untouched."""
    for name in _selected_tools(tool):
        try:
            result = get_installer(name).uninstall()
        except HookInstallError as e:
            click.echo(f"{source_display_name(name)}: {e}", err=True)
            continue
        removed = ", ".join(result.hooks_installed) or "nothing to remove"
        click.echo(f"{source_display_name(name)}: {removed}")


@main.command("hook-status")
def hook_status():
    """Show which hooks are installed for each tool."""
    for name in INSTALLERS:
        status = get_installer(name).get_status()
        click.echo(f"{source_display_name(name)}:")
        for hook, installed in status.items():
            click.echo(f"  {'✓' if installed else '✗'} {hook}")


@main.command()
@click.argument("text")
@click.option("--json", "as_json", is_flag=True, help="Print the full result as JSON.")
def score(text: str, as_json: bool):
    """Score a prompt with the configured LLM provider."""
    from .copilot import PromptScorer
    from .copilot.explainer import quick_summary
    from .llm import create_default_manager

    llm = create_default_manager()
    if not llm.is_available():
        raise click.ClickException("LLM provider not configured (set ANTHROPIC_API_KEY)")
    try:
        result = asyncio.run(PromptScorer(llm).score_prompt_v2(text, fallback=False))
    except DevarkError as e:
        raise click.ClickException(friendly_error_message(e)) from e

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return
    click.echo(f"Score: {result.score:.1f}/10")
    for dimension, value in result.breakdown.to_dict().items():
        if isinstance(value, dict):
            click.echo(f"  {dimension}: {value['score']}/10")
    click.echo(quick_summary(result.breakdown))
    for suggestion in result.explanation.suggestions:
        click.echo(f"  - {suggestion}")


@main.command()
@click.option("--force", is_flag=True, help="Ignore the server's last-synced timestamp.")
@click.option("--since", default=None, help="Only sessions started after this ISO date.")
def sync(force: bool, since: str | None):
    """Sanitize and upload eligible sessions."""
    from .backends import get_available_sources
    from .sync import SyncService

    since_dt = None
    if since:
        since_dt = parse_timestamp(since)
        if since_dt is None:
            raise click.BadParameter(f"Invalid date: {since}", param_hint="--since")

    service = SyncService(get_available_sources())

    def on_progress(progress):
        click.echo(progress.message)

    try:
        result = asyncio.run(service.sync(force=force, since=since_dt, on_progress=on_progress))
    except KeyboardInterrupt:
        raise click.Abort() from None
    for error in result.errors:
        click.echo(f"{error.code}: {error.message}", err=True)
    if not result.success:
        raise SystemExit(1)


@main.command()
@click.option("--token", prompt=True, hide_input=True, help="API token from the devark dashboard.")
def login(token: str):
    """Store and verify a backend API token."""
    from .sync import DevarkApiClient, TokenStore

    verification = asyncio.run(DevarkApiClient(token=token).verify_token())
    if not verification.valid:
        raise click.ClickException("Token is invalid")
    TokenStore().set(token)
    click.echo("Logged in.")


@main.command()
def status():
    """Show sync status and local session counts."""
    from .backends import get_available_sources
    from .sync import SyncService

    info = SyncService(get_available_sources()).get_sync_status()
    click.echo(f"Local eligible sessions: {info['localSessions']}")
    click.echo(f"Uploaded sessions:       {info['syncedSessions']}")
    click.echo(f"Pending uploads:         {info['pendingUploads']}")
    click.echo(f"Last synced:             {info['lastSynced'] or 'never'}")
    if info["lastError"]:
        click.echo(f"Last error:              {info['lastError']['message']}")
