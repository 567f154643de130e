import json
import click

from .config import Settings
from .db import SQLiteStore, init_db
from .logging_setup import setup_logging
from .models import ITEM_STATES, COMPLETED, SYNC_MODES, WORK_CLASSES
from .network import ManualNetworkObserver, ProbeNetworkObserver
from .queue import QueueEngine
from .sync import SyncController, run_inline, spawn_thread
from .transport import SimulatedTransport
from .utils import format_timestamp, parse_duration, time_taken
from . import worker


class App:
    """Everything one command needs, wired against a single database."""

    def __init__(self, db_path, network, background=False):
        self.store = SQLiteStore.open(db_path)
        self.settings = Settings.from_config(self.store.config())
        self.transport = SimulatedTransport.from_settings(self.settings)
        if network is None:
            self.observer = ProbeNetworkObserver.from_settings(self.settings)
        else:
            self.observer = ManualNetworkObserver(connected=(network == "online"))
        self.engine = QueueEngine(self.store, self.transport, self.settings)
        self.engine.initialize()
        self.controller = SyncController(
            self.engine,
            self.observer,
            self.store,
            self.settings,
            dispatch=spawn_thread if background else run_inline,
        )

    def close(self):
        self.controller.close()
        self.store.close()


def _fail(e):
    click.secho(f"Error: {e}", fg="red")
    raise SystemExit(1)


@click.group(help="offlineq: offline work queue with connectivity-aware sync")
@click.option("--db", "db_path", envvar="OFFLINEQ_DB", default="offlineq.db", show_default=True,
              help="SQLite database holding the queue, completion log and config")
@click.option("--log-level", default="WARNING", show_default=True,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False))
@click.option("--network", default="probe", show_default=True,
              type=click.Choice(["probe", "online", "offline"], case_sensitive=False),
              help="Probe connectivity, or assume online/offline")
@click.pass_context
def cli(ctx, db_path, log_level, network):
    setup_logging(log_level)
    # Ensure DB/schema exist before any command runs
    init_db(db_path)
    ctx.obj = {"db_path": db_path, "network": None if network == "probe" else network}


def _open(ctx, start=True, background=False) -> App:
    try:
        app = App(ctx.obj["db_path"], ctx.obj["network"], background=background)
        if start:
            app.controller.start(auto_sync=False)
    except RuntimeError as e:
        _fail(e)
    ctx.call_on_close(app.close)
    return app


def _item_line(item):
    line = (
        f"{item.id:>24} | {item.work_class:<5} | {item.status:<10} | "
        f"retries={item.retry_count} | created={format_timestamp(item.created_at)}"
    )
    if item.last_error:
        line += f" | last_error={item.last_error}"
    return line


# ---------- Enqueue ----------
@cli.command("enqueue", help="Add work to the queue (syncs at once in AUTO mode when online)")
@click.option("--class", "work_class", required=True,
              type=click.Choice(WORK_CLASSES, case_sensitive=False), help="Work class")
@click.option("--payload", default=None, help="Payload text (UTF-8)")
@click.option("--size", default=None, type=int, help="Generate a filler payload of this many bytes")
@click.option("--count", default=1, type=int, show_default=True, help="Number of items to add")
@click.pass_context
def enqueue_cmd(ctx, work_class, payload, size, count):
    if payload is not None and size is not None:
        _fail("Use either --payload or --size, not both.")
    if count < 1:
        _fail("--count must be >= 1")

    app = _open(ctx)
    try:
        for _ in range(count):
            data = payload.encode("utf-8") if payload is not None else b"x" * (size or 0)
            item = app.controller.submit(work_class, data)
            click.secho(f"Enqueued {item.work_class} item {item.id} ({len(data)} bytes)", fg="green")
    except (ValueError, RuntimeError) as e:
        _fail(e)

    stats = app.engine.get_stats()
    click.echo(f"pending={stats.total_pending} failed={stats.failed} completed={stats.total_completed}")


# ---------- Items ----------
@cli.command("list", help="List resident items (pending and processing by default)")
@click.option("--state", type=click.Choice([s for s in ITEM_STATES if s != COMPLETED], case_sensitive=False),
              default=None)
@click.pass_context
def list_cmd(ctx, state):
    app = _open(ctx, start=False)
    if state:
        rows = [i for i in app.engine.get_items() if i.status == state.upper()]
    else:
        rows = app.engine.get_pending()

    if not rows:
        click.echo("No items.")
        return
    for item in rows:
        click.echo(_item_line(item))


@cli.command("status")
@click.pass_context
def status_cmd(ctx):
    app = _open(ctx)
    out = app.engine.get_stats().to_dict()
    out["online"] = app.controller.is_online
    out["mode"] = app.controller.mode
    click.echo(json.dumps(out, indent=2))


@cli.command("log", help="Show recently completed items")
@click.option("--limit", default=10, type=int, show_default=True)
@click.pass_context
def log_cmd(ctx, limit):
    app = _open(ctx, start=False)
    records = app.engine.get_completion_log()[:limit]
    if not records:
        click.echo("No completed items.")
        return
    for r in records:
        click.echo(
            f"{r.id:>24} | {r.work_class:<5} | completed={format_timestamp(r.completed_at)} "
            f"| took={time_taken(r.created_at, r.completed_at)}"
        )


# ---------- Failed ----------
@cli.group("failed", help="Permanently failed items")
def failed_group():
    pass


@failed_group.command("list")
@click.pass_context
def failed_list_cmd(ctx):
    app = _open(ctx, start=False)
    rows = app.engine.get_failed()
    if not rows:
        click.echo("No failed items.")
        return
    for item in rows:
        click.echo(_item_line(item))


@failed_group.command("retry")
@click.argument("item_id")
@click.pass_context
def failed_retry_cmd(ctx, item_id):
    app = _open(ctx)
    try:
        retried = app.engine.retry_item(item_id)
    except RuntimeError as e:
        _fail(e)
    if not retried:
        _fail(f"Item {item_id} not found among failed items.")
    click.secho(f"Retried {item_id}.", fg="green")


@failed_group.command("clear")
@click.pass_context
def failed_clear_cmd(ctx):
    app = _open(ctx, start=False)
    try:
        removed = app.engine.clear_failed()
    except RuntimeError as e:
        _fail(e)
    click.secho(f"Cleared {removed} failed item(s).", fg="yellow")


# ---------- Sync ----------
@cli.command("sync", help="Deliver pending items now")
@click.pass_context
def sync_cmd(ctx):
    app = _open(ctx)
    if not app.controller.is_online:
        click.secho("Offline - nothing sent.", fg="yellow")
        return
    try:
        app.controller.trigger_sync()
    except RuntimeError as e:
        _fail(e)
    stats = app.engine.get_stats()
    click.secho(
        f"Sync finished: pending={stats.total_pending} failed={stats.failed} "
        f"completed={stats.total_completed}",
        fg="green",
    )


@cli.group("mode", help="Sync mode (AUTO or MANUAL)")
def mode_group():
    pass


@mode_group.command("get")
@click.pass_context
def mode_get(ctx):
    app = _open(ctx)
    click.echo(app.controller.mode)


@mode_group.command("set")
@click.argument("mode", type=click.Choice(SYNC_MODES, case_sensitive=False))
@click.pass_context
def mode_set(ctx, mode):
    app = _open(ctx)
    try:
        app.controller.set_mode(mode)
    except RuntimeError as e:
        _fail(e)
    click.secho(f"Sync mode: {app.controller.mode}", fg="green")


# ---------- Config ----------
@cli.group("config", help="Configuration")
def config_group():
    pass


@config_group.command("get")
@click.pass_context
def config_get(ctx):
    store = SQLiteStore.open(ctx.obj["db_path"])
    try:
        click.echo(json.dumps(store.config(), indent=2, sort_keys=True))
    finally:
        store.close()


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set_cmd(ctx, key, value):
    store = SQLiteStore.open(ctx.obj["db_path"])
    try:
        store.set_config(key, value)
        click.secho(f"Config updated: {key}={value}", fg="green")
    except ValueError as e:
        _fail(e)
    finally:
        store.close()


@cli.command("reset", help="Delete all items, completion history and the sync mode")
@click.confirmation_option(prompt="Delete all queue data?")
@click.pass_context
def reset_cmd(ctx):
    app = _open(ctx, start=False)
    try:
        app.controller.clear_all()
    except RuntimeError as e:
        _fail(e)
    click.secho("Queue data cleared.", fg="yellow")


# ---------- Watch ----------
@cli.command("watch", help="Sync automatically whenever connectivity returns. Ctrl+C to stop.")
@click.option("--for", "duration_str", default=None, help="Stop after a duration, e.g. 30s, 5m, 1h30m")
@click.pass_context
def watch_cmd(ctx, duration_str):
    duration = None
    if duration_str:
        try:
            duration = parse_duration(duration_str)
        except ValueError as e:
            _fail(e)

    app = _open(ctx, start=False, background=True)
    click.secho("Watching connectivity. Press Ctrl+C to stop…", fg="cyan")
    worker.watch(app.controller, app.observer, duration=duration)
    click.secho("Watcher stopped.", fg="yellow")


def main():
    cli()
