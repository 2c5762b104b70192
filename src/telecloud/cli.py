"""CLI entry point for telecloud.

Provides commands:
  - run: Start the operator bot (long-polling) until SIGINT/SIGTERM
  - upload: Scan a directory and upload new files without the bot
  - restore: Download every recorded file into a local directory
  - status: Display snapshot statistics
  - config: Manage configuration (bot tokens in the system keyring)
  - version: Print the installed version
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
from collections.abc import Callable
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from telecloud import __version__
from telecloud.config import (
    ConfigError,
    get_tokens_from_keyring,
    load_config,
    remove_tokens_from_keyring,
    set_tokens_in_keyring,
    split_list,
    validate,
)
from telecloud.constants import SHUTDOWN_DEADLINE_SECONDS
from telecloud.models import TelecloudConfig

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="telecloud - back up local files to Telegram storage channels and restore them",
    rich_markup_mode="rich",
)
console = Console()

config_app = typer.Typer(help="Manage configuration (bot tokens, settings)")
app.add_typer(config_app, name="config")


def _configure_logging(verbose: bool, debug: bool) -> None:
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.DEBUG if debug else logging.INFO)

    handler = RichHandler(console=console, show_path=False, rich_tracebacks=True)
    handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.addHandler(handler)

    if debug:
        debug_dir = Path.home() / ".telecloud"
        debug_dir.mkdir(exist_ok=True)
        fh = logging.FileHandler(debug_dir / "debug.log")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        root.addHandler(fh)

    # aiohttp access chatter is not useful even in verbose mode
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


@app.callback()
def app_callback(
    ctx: typer.Context,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to JSON config (default: config/telecloud.json)"),
    ] = None,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Show debug output on the console")
    ] = False,
    debug: Annotated[
        bool, typer.Option("--debug", help="Write debug log to ~/.telecloud/debug.log")
    ] = False,
) -> None:
    """Configure logging and remember the config path for subcommands."""
    _configure_logging(verbose, debug)
    ctx.obj = {"config_path": config_path}


def get_config(ctx: typer.Context, *, require_sessions: bool = False) -> TelecloudConfig:
    """Load and validate configuration, exiting with a message on failure."""
    config_path = (ctx.obj or {}).get("config_path")
    try:
        config = load_config(config_path)
        validate(config, require_sessions=require_sessions)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    return config


def _build_pool(config: TelecloudConfig):
    from telecloud.upload.client import TelegramBotClient
    from telecloud.upload.pool import ClientPool

    return ClientPool(TelegramBotClient(token) for token in config.bot_tokens)


def _install_signal_handlers(on_stop: Callable[[], None]) -> None:
    """Call *on_stop* on the first SIGINT/SIGTERM; exit hard on the second."""
    loop = asyncio.get_running_loop()
    received = 0

    def _handler() -> None:
        nonlocal received
        received += 1
        if received > 1:
            console.print("[red]Second signal received, exiting immediately[/red]")
            os._exit(130)
        console.print("[yellow]Stopping... (press Ctrl+C again to force)[/yellow]")
        on_stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on Windows event loops
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, _handler)


# ---------------------------------------------------------------------------
# Bot
# ---------------------------------------------------------------------------


@app.command()
def run(
    ctx: typer.Context,
    deadline: Annotated[
        float,
        typer.Option("--shutdown-deadline", help="Seconds to wait for in-flight uploads on exit"),
    ] = SHUTDOWN_DEADLINE_SECONDS,
) -> None:
    """Start the operator bot and serve until interrupted."""
    from telecloud.bot import BotApp
    from telecloud.upload.state import MetadataStore

    config = get_config(ctx, require_sessions=True)

    console.print(
        Panel(
            f"Bot identities: [bold]{len(config.bot_tokens)}[/bold]\n"
            f"Storage channels: [bold]{len(config.storage_channel_ids)}[/bold]\n"
            f"Authorised chats: [bold]{len(config.authorized_sessions)}[/bold]\n"
            f"Drive: {config.scan_root} | Snapshot: {config.snapshot_path}",
            title="telecloud",
        )
    )

    async def _serve() -> None:
        store = MetadataStore(config.snapshot_path)
        store.load()
        bot = BotApp(config, _build_pool(config), store)
        stop = asyncio.Event()
        _install_signal_handlers(stop.set)
        await bot.start()
        await stop.wait()
        await bot.shutdown(deadline)

    asyncio.run(_serve())


# ---------------------------------------------------------------------------
# Upload / restore
# ---------------------------------------------------------------------------


@app.command()
def upload(
    ctx: typer.Context,
    root: Annotated[
        Path | None,
        typer.Argument(help="Directory to scan (default: DEFAULT_DRIVE_PATH)"),
    ] = None,
    concurrency: Annotated[
        int | None,
        typer.Option("--concurrency", "-n", help="Concurrent uploads (default: 2 per bot)"),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Show what would be uploaded without uploading"),
    ] = False,
) -> None:
    """Upload new files under ROOT to every configured storage channel."""
    from telecloud.scanner import relative_path_for, scan_directory
    from telecloud.upload.progress import UploadProgressTracker
    from telecloud.upload.retry import RetryPolicy
    from telecloud.upload.scheduler import UploadScheduler
    from telecloud.upload.state import MetadataStore

    config = get_config(ctx)
    scan_root = root or config.scan_root
    if not scan_root.is_dir():
        console.print(f"[red]Error:[/red] Not a directory: {scan_root}")
        raise typer.Exit(code=1)
    workers = concurrency or config.effective_concurrency
    if workers < 1:
        console.print("[red]--concurrency must be at least 1[/red]")
        raise typer.Exit(code=1)

    store = MetadataStore(config.snapshot_path)
    store.load()
    paths = scan_directory(scan_root, config.scan_extensions)
    pending = [p for p in paths if not store.is_uploaded(relative_path_for(p, scan_root))]

    if dry_run:
        console.print(
            Panel(
                f"[bold]{len(pending)}[/bold] of {len(paths)} files pending upload to "
                f"[bold]{len(config.storage_channel_ids)}[/bold] channel(s)",
                title="Dry Run",
            )
        )
        if pending:
            preview_table = Table(title=f"Pending Files (showing first {min(20, len(pending))})")
            preview_table.add_column("File Path", style="cyan", no_wrap=True)
            preview_table.add_column("Size", justify="right")
            for path in pending[:20]:
                size_kb = path.stat().st_size / 1024
                size_str = f"{size_kb:.1f} KB" if size_kb < 1024 else f"{size_kb / 1024:.1f} MB"
                preview_table.add_row(relative_path_for(path, scan_root), size_str)
            if len(pending) > 20:
                preview_table.add_row(f"... and {len(pending) - 20} more", "")
            console.print(preview_table)
        return

    if not config.storage_channel_ids:
        console.print(
            "[red]Error:[/red] No storage channels configured.\n"
            "Set [bold]STORAGE_CHANNEL_IDS[/bold] or register one through the bot."
        )
        raise typer.Exit(code=1)

    console.print(
        Panel(
            f"Uploading [bold]{len(pending)}[/bold] new files from {scan_root}\n"
            f"Channels: {len(config.storage_channel_ids)} | "
            f"Bots: {len(config.bot_tokens)} | Concurrency: {workers}",
            title="Upload Pipeline",
        )
    )

    async def _run_upload() -> dict[str, int]:
        pool = _build_pool(config)
        progress = UploadProgressTracker(total_files=len(paths))
        scheduler = UploadScheduler(
            pool,
            store,
            root=scan_root,
            retry_policy=RetryPolicy(
                max_attempts=config.max_attempts,
                base_delay=config.retry_base_delay,
                cap_delay=config.retry_cap_delay,
            ),
            progress=progress,
            report_interval=config.report_interval,
        )
        _install_signal_handlers(
            lambda: asyncio.ensure_future(scheduler.shutdown(SHUTDOWN_DEADLINE_SECONDS))
        )
        try:
            with progress:
                return await scheduler.run(paths, config.storage_channel_ids, workers)
        finally:
            await pool.close()

    result = asyncio.run(_run_upload())

    summary_table = Table(title="Upload Summary")
    summary_table.add_column("Metric", style="bold")
    summary_table.add_column("Count", justify="right")
    summary_table.add_row("Total files", str(result["total"]))
    summary_table.add_row("Uploaded", f"[green]{result['uploaded']}[/green]")
    summary_table.add_row("Already uploaded", str(result["already_uploaded"]))
    summary_table.add_row("Failed", f"[red]{result['failed']}[/red]")
    summary_table.add_row("Not attempted", f"[yellow]{result['skipped']}[/yellow]")
    summary_table.add_row("Records added", str(result["records_added"]))
    console.print(Panel(summary_table, title="Upload Complete"))

    if result["failed"]:
        raise typer.Exit(code=1)


@app.command()
def restore(
    ctx: typer.Context,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Output directory (default: RESTORE_OUTPUT_PATH)"),
    ] = None,
) -> None:
    """Download every recorded file into the output directory."""
    from telecloud.upload.restore import RestoreEngine
    from telecloud.upload.state import MetadataStore

    config = get_config(ctx)
    output_root = output or config.restore_root

    store = MetadataStore(config.snapshot_path)
    store.load()
    if not len(store):
        console.print("[yellow]No uploaded files recorded; nothing to restore.[/yellow]")
        return

    async def _run_restore() -> dict[str, int]:
        pool = _build_pool(config)
        try:
            return await RestoreEngine(pool, store, output_root).restore_all()
        finally:
            await pool.close()

    with console.status(f"Restoring to {output_root}..."):
        result = asyncio.run(_run_restore())

    summary_table = Table(title="Restore Summary")
    summary_table.add_column("Metric", style="bold")
    summary_table.add_column("Count", justify="right")
    summary_table.add_row("Files", str(result["total"]))
    summary_table.add_row("Restored", f"[green]{result['restored']}[/green]")
    summary_table.add_row("Failed", f"[red]{result['failed']}[/red]")
    console.print(Panel(summary_table, title="Restore Complete"))

    if result["failed"]:
        raise typer.Exit(code=1)


@app.command()
def status(ctx: typer.Context) -> None:
    """Display snapshot statistics."""
    from telecloud.upload.state import MetadataStore

    config_path = (ctx.obj or {}).get("config_path")
    try:
        config = load_config(config_path, use_keyring=False)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    if not config.snapshot_path.exists():
        console.print(f"[yellow]No snapshot at {config.snapshot_path}[/yellow]")
        return

    store = MetadataStore(config.snapshot_path)
    store.load()
    stats = store.stats()

    console.print(
        Panel(
            f"Snapshot: [bold]{config.snapshot_path}[/bold]\n"
            f"Records: [bold]{stats['records']}[/bold] | "
            f"Distinct files: [bold]{stats['paths']}[/bold]",
            title="telecloud status",
        )
    )

    if stats["channels"]:
        channel_table = Table(title="Records by Channel")
        channel_table.add_column("Channel", style="cyan")
        channel_table.add_column("Records", justify="right")
        for channel_id, count in sorted(stats["channels"].items(), key=lambda kv: str(kv[0])):
            channel_table.add_row(str(channel_id), str(count))
        console.print(channel_table)


@app.command()
def version() -> None:
    """Print the installed version."""
    console.print(f"telecloud {__version__}")


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


def _mask(token: str) -> str:
    bot_id, _, secret = token.partition(":")
    if not secret:
        return token[:2] + "*" * max(1, len(token) - 2)
    return f"{bot_id}:{secret[:4]}" + "*" * max(1, len(secret) - 4)


@config_app.command("set-tokens")
def set_tokens(
    tokens: Annotated[
        str,
        typer.Argument(help="Comma-separated bot tokens to store in the system keyring"),
    ],
) -> None:
    """Store bot tokens in the system keyring (service: telecloud)."""
    parsed = split_list(tokens)
    if not parsed:
        console.print("[red]Error:[/red] At least one token is required")
        raise typer.Exit(code=1)

    try:
        set_tokens_in_keyring(parsed)
    except Exception as e:
        console.print(f"[red]Error:[/red] Failed to store tokens: {e}")
        raise typer.Exit(code=1)
    console.print(
        f"[green]✓[/green] {len(parsed)} token(s) stored in system keyring "
        "(service: telecloud)"
    )


@config_app.command("show")
def show_config(ctx: typer.Context) -> None:
    """Show the effective configuration with tokens masked."""
    config_path = (ctx.obj or {}).get("config_path")
    try:
        config = load_config(config_path)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    table = Table(title="Effective Configuration")
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    table.add_row("bot_tokens", ", ".join(_mask(t) for t in config.bot_tokens) or "[red]none[/red]")
    table.add_row("storage_channel_ids", ", ".join(map(str, config.storage_channel_ids)) or "-")
    table.add_row("authorized_sessions", ", ".join(map(str, config.authorized_sessions)) or "-")
    table.add_row("admin_chat_id", str(config.report_chat_id or "-"))
    table.add_row("scan_root", str(config.scan_root))
    table.add_row("restore_root", str(config.restore_root))
    table.add_row("snapshot_path", str(config.snapshot_path))
    table.add_row("concurrency", str(config.effective_concurrency))
    table.add_row("max_attempts", str(config.max_attempts))
    table.add_row("report_interval", f"{config.report_interval:.0f}s")
    console.print(table)


@config_app.command("remove-tokens")
def remove_tokens() -> None:
    """Delete stored bot tokens from the system keyring."""
    try:
        removed = remove_tokens_from_keyring()
    except Exception as e:
        console.print(f"[red]Error:[/red] Failed to remove tokens: {e}")
        raise typer.Exit(code=1)

    if not removed:
        console.print(
            "[yellow]Warning:[/yellow] No tokens found in keyring.\nNothing to remove."
        )
        return
    console.print("[green]✓[/green] Tokens removed from system keyring (service: telecloud)")


@config_app.command("get-tokens")
def get_tokens() -> None:
    """Display the stored bot tokens (masked)."""
    tokens = get_tokens_from_keyring()
    if not tokens:
        console.print(
            "[yellow]No tokens found in keyring.[/yellow]\n"
            "Set them with: [bold]telecloud config set-tokens TOKEN[,TOKEN...][/bold]"
        )
        raise typer.Exit(code=1)
    for token in tokens:
        console.print(f"[green]Token:[/green] {_mask(token)}")
