"""
CLI interface for the tips cache.

Usage:
    tipsync add "Study daily" "Short sessions every day beat cramming."
    tipsync list --author u1
    tipsync sync
"""

import json
import os
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .app import TipsApp
from .errors import Result, log_exception
from .logging_config import configure_ops_log, configure_quiet_mode, enable_debug_mode
from .sync import PushReport, SyncReport
from .types import Tip
from .views import ViewKind, create_view

# Configure quiet mode by default (suppress verbose library output)
# Set TIPSYNC_VERBOSE=1 to enable debug mode via environment
if os.environ.get("TIPSYNC_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"tipsync {version('tipsync')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _store_callback(value: Optional[Path]):
    global _store_override
    if value is not None:
        _store_override = value


app = typer.Typer(
    name="tipsync",
    help="Offline-first study tips with remote sync.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="TIPSYNC_STORE_PATH",
        help="Path to the store directory",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Offline-first study tips with remote sync."""


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _get_app() -> TipsApp:
    """Open the store, handling errors gracefully."""
    import atexit

    try:
        tips_app = TipsApp.open(_store_override)
    except Exception as e:
        log_path = log_exception(e, "open store")
        typer.echo(f"Error: {e} (details in {log_path})", err=True)
        raise typer.Exit(1)
    handler = configure_ops_log(tips_app.config.path)

    def _close():
        import logging
        logging.getLogger("tipsync").removeHandler(handler)
        handler.close()
        tips_app.close()

    atexit.register(_close)
    return tips_app


def _check(result: Result) -> Result:
    """Exit with the failure message if ``result`` failed."""
    if not result.ok:
        typer.echo(f"Error: {result.failure}", err=True)
        raise typer.Exit(1)
    return result


def _format_time(millis: int) -> str:
    return datetime.fromtimestamp(millis / 1000).strftime("%Y-%m-%d %H:%M")


def _format_tip_line(tip: Tip) -> str:
    marker = " " if tip.is_synced else "*"
    author = tip.author_name or "(no author)"
    return f"{marker} {tip.id}  {_format_time(tip.created_at)}  {tip.title}  ({author})"


def _format_tip(tip: Tip) -> str:
    lines = [
        f"id: {tip.id}",
        f"title: {tip.title}",
        f"author: {tip.author_name or '(none)'} ({tip.author_id or '-'})",
        f"created: {_format_time(tip.created_at)}",
        f"updated: {_format_time(tip.updated_at)}",
        f"synced: {'yes' if tip.is_synced else 'no'}",
    ]
    if tip.image_ref:
        lines.append(f"image: {tip.image_ref}")
    lines.append("")
    lines.append(tip.description)
    return "\n".join(lines)


def _echo_tips(tips: list[Tip]) -> None:
    if _get_json_output():
        typer.echo(json.dumps([asdict(t) for t in tips], indent=2))
        return
    if not tips:
        typer.echo("No tips.")
        return
    for tip in tips:
        typer.echo(_format_tip_line(tip))


def _format_push(report: PushReport) -> str:
    return f"{report.pushed} pushed, {report.failed} failed, {report.skipped} skipped"


# -----------------------------------------------------------------------------
# Tip commands
# -----------------------------------------------------------------------------

@app.command()
def add(
    title: Annotated[str, typer.Argument(help="Short title")],
    description: Annotated[str, typer.Argument(help="The tip itself")],
    image: Annotated[Optional[str], typer.Option(
        "--image", "-i", help="Image URL or local file path"
    )] = None,
):
    """Create a tip (saved locally, pushed when possible)."""
    tips_app = _get_app()
    result = _check(tips_app.tips.create_tip(title, description, image_ref=image))
    tip = tips_app.tips.get_tip(result.value)
    if _get_json_output():
        typer.echo(json.dumps(asdict(tip)))
    else:
        typer.echo(_format_tip_line(tip))


@app.command()
def edit(
    id: Annotated[str, typer.Argument(help="Tip ID")],
    title: Annotated[Optional[str], typer.Option("--title", "-t")] = None,
    description: Annotated[Optional[str], typer.Option("--description", "-d")] = None,
    image: Annotated[Optional[str], typer.Option(
        "--image", "-i", help="New image ref ('' removes the image)"
    )] = None,
):
    """Edit a tip's title, description or image."""
    tips_app = _get_app()
    kwargs: dict = {"title": title, "description": description}
    if image is not None:
        kwargs["image_ref"] = image or None
    _check(tips_app.tips.update_tip(id, **kwargs))
    typer.echo(_format_tip_line(tips_app.tips.get_tip(id)))


@app.command("rm")
def remove(
    id: Annotated[str, typer.Argument(help="Tip ID")],
):
    """Delete a tip (hidden locally, deleted remotely)."""
    tips_app = _get_app()
    _check(tips_app.tips.delete_tip(id))
    typer.echo(f"Deleted {id}")


@app.command()
def show(
    id: Annotated[str, typer.Argument(help="Tip ID")],
):
    """Show one tip."""
    tips_app = _get_app()
    tip = tips_app.tips.get_tip(id)
    if tip is None:
        typer.echo(f"Not found: {id}", err=True)
        raise typer.Exit(1)
    if _get_json_output():
        typer.echo(json.dumps(asdict(tip)))
    else:
        typer.echo(_format_tip(tip))


@app.command("list")
def list_tips(
    author: Annotated[Optional[str], typer.Option(
        "--author", "-a", help="Only tips by this author ID"
    )] = None,
    mine: Annotated[bool, typer.Option(
        "--mine", "-m", help="Only tips by the current user"
    )] = False,
):
    """
    List tips, newest first. Unsynced tips are marked with '*'.
    """
    tips_app = _get_app()
    if mine:
        view = create_view(ViewKind.PROFILE, tips_app)
        _echo_tips(view.tips)
        return
    view = create_view(ViewKind.HOME, tips_app)
    view.filter_by_author(author)
    _echo_tips(view.tips)


@app.command()
def authors():
    """List authors of cached tips."""
    tips_app = _get_app()
    found = tips_app.tips.list_authors()
    if _get_json_output():
        typer.echo(json.dumps([asdict(a) for a in found]))
        return
    for author in found:
        typer.echo(f"{author.id}\t{author.name}")


@app.command()
def purge():
    """Permanently remove deleted tips from the local cache."""
    tips_app = _get_app()
    result = _check(tips_app.tips.purge_deleted())
    typer.echo(f"Purged {result.value} tips")


# -----------------------------------------------------------------------------
# Sync commands
# -----------------------------------------------------------------------------

@app.command()
def sync():
    """Pull, repair author data, push, and retry pending deletes."""
    tips_app = _get_app()
    report: SyncReport = _check(tips_app.tips.trigger_sync()).value
    if _get_json_output():
        typer.echo(json.dumps(asdict(report), default=str))
        return
    typer.echo(f"Pulled {report.pulled}, repaired {report.repaired}")
    typer.echo(f"Push: {_format_push(report.push)}")
    if report.deleted:
        typer.echo(f"Remote deletes confirmed: {report.deleted}")


@app.command()
def pull(
    author: Annotated[Optional[str], typer.Option(
        "--author", "-a", help="Only pull this author's tips"
    )] = None,
):
    """Fetch tips from the remote store."""
    tips_app = _get_app()
    if author:
        result = _check(tips_app.engine.pull_by_author(author))
    else:
        result = _check(tips_app.engine.pull_all())
    typer.echo(f"Pulled {result.value} tips")


@app.command()
def push():
    """Push unsynced tips to the remote store."""
    tips_app = _get_app()
    report: PushReport = _check(tips_app.engine.push_all_unsynced()).value
    typer.echo(_format_push(report))
    for tip_id, failure in report.failures.items():
        typer.echo(f"  {tip_id}: {failure}", err=True)


@app.command()
def repair():
    """Fill missing author data from the current user and push it."""
    tips_app = _get_app()
    result = _check(tips_app.tips.repair_author_data())
    typer.echo(f"Repaired {result.value} tips")


# -----------------------------------------------------------------------------
# User commands
# -----------------------------------------------------------------------------

@app.command()
def login(
    user_id: Annotated[str, typer.Argument(help="User ID")],
    name: Annotated[str, typer.Option("--name", "-n", help="Display name (new profiles)")] = "",
    email: Annotated[str, typer.Option("--email", "-e")] = "",
):
    """Set the current user, loading their remote profile if it exists."""
    tips_app = _get_app()
    user = _check(tips_app.users.login(user_id, name, email)).value
    typer.echo(f"Logged in as {user.name} ({user.id})")


@app.command()
def logout():
    """Forget the current user."""
    tips_app = _get_app()
    _check(tips_app.users.logout())
    typer.echo("Logged out")


@app.command()
def whoami():
    """Show the current user."""
    tips_app = _get_app()
    user = tips_app.users.get_current_user_profile()
    if user is None:
        typer.echo("Not logged in")
        raise typer.Exit(1)
    if _get_json_output():
        typer.echo(json.dumps(asdict(user)))
    else:
        typer.echo(f"{user.name} ({user.id}), {user.tips_count} tips")


@app.command("config")
def show_config():
    """Show the store configuration (API key hidden)."""
    tips_app = _get_app()
    config = tips_app.config
    data = {
        "path": str(config.path),
        "remote": {
            "backend": config.remote.backend,
            "api_url": config.remote.api_url,
            "api_key": "***" if config.remote.api_key else "",
            "configured": config.remote.configured,
        },
        "sync": asdict(config.sync),
    }
    typer.echo(json.dumps(data, indent=2))


def main():
    app()


if __name__ == "__main__":
    main()
