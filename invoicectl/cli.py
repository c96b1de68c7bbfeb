import json
import logging
import signal
import click

from .db import init_db, connect_db
from .errors import InvoiceCtlError
from .extraction import load_client
from .models import Document, RECORD_STATUSES, APPROVED, REJECTED, COMPLETED, FAILED, PROCESSING
from .repository import get_config, set_config
from .retry import RetryPolicy
from .scheduler import BatchScheduler
from .store import RecordStore
from .utils import parse_duration

STATE_COLOURS = {PROCESSING: "cyan", COMPLETED: "green", FAILED: "red"}


@click.group(help="invoicectl — batch document extraction and record history")
@click.option("--db", "db_path", envvar="INVOICECTL_DB", default="invoices.db", show_default=True,
              help="SQLite database file")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, db_path, verbose):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # Ensure DB/schema exist before any command runs
    init_db(db_path)
    ctx.obj = {"db": db_path}


def _store(ctx) -> RecordStore:
    return RecordStore.from_config(ctx.obj["db"])


# ---------- Batch ----------
@cli.command("batch", help="Extract a batch of documents and save the results")
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--client", "client_spec", required=True,
              help="Extraction client as package.module:factory")
@click.option("--delay", "delay_str", default=None, help="Override inter-item delay, e.g. 10s")
@click.option("--backoff-base", default=None, help="Override backoff base, e.g. 20s")
@click.option("--max-retries", default=None, type=int, help="Override rate-limit retry count")
@click.pass_context
def batch_cmd(ctx, files, client_spec, delay_str, backoff_base, max_retries):
    store = None
    try:
        client = load_client(client_spec)
        store = _store(ctx)
        scheduler = BatchScheduler.from_config(client, store, ctx.obj["db"])
        if delay_str is not None:
            scheduler.inter_item_delay = parse_duration(delay_str)
        if backoff_base is not None or max_retries is not None:
            scheduler.policy = RetryPolicy(
                max_retries=scheduler.policy.max_retries if max_retries is None else max_retries,
                base=scheduler.policy.base if backoff_base is None else parse_duration(backoff_base),
            )

        seen = {}

        def report(snapshot):
            for idx, item in enumerate(snapshot, 1):
                key = (item.state, item.last_error)
                if seen.get(item.id) == key:
                    continue
                seen[item.id] = key
                line = f"{idx:>4}. {item.name:<40} {item.state.upper():<10}"
                if item.last_error:
                    line += f" {item.last_error}"
                if item.duplicate:
                    line += " [possible duplicate]"
                click.secho(line, fg=STATE_COLOURS.get(item.state))

        def _handler(signum, frame):
            click.secho("\nStopping after the current document…", fg="yellow")
            scheduler.cancel()

        signal.signal(signal.SIGINT, _handler)
        scheduler.subscribe(report)
        scheduler.enqueue(Document.from_path(p) for p in files)
        scheduler.run()
    except (ValueError, OSError, InvoiceCtlError) as e:
        click.secho(f"Error: {e}", fg="red")
        raise SystemExit(1)
    finally:
        signal.signal(signal.SIGINT, signal.default_int_handler)
        if store is not None:
            store.close()

    summary = scheduler.counts()
    click.echo(json.dumps(summary, indent=2))
    if summary["pending"]:
        click.secho(f"{summary['pending']} document(s) were not started.", fg="yellow")


# ---------- Records ----------
@cli.group("records", help="Saved extraction history")
def records_group():
    pass


@records_group.command("list")
@click.option("--status", type=click.Choice(RECORD_STATUSES), default=None)
@click.pass_context
def records_list(ctx, status):
    store = _store(ctx)
    try:
        rows = store.list(status=status)
    finally:
        store.close()

    if not rows:
        click.echo("No records.")
        return

    for r in rows:
        click.echo(
            f"{r.id:>36} | {r.kind:<7} | {r.status:<8} | {r.counterparty[:30]:<30} "
            f"| {r.date:<10} | {r.total:>10.2f} | {r.file_name} | created={r.created_at}"
            f"{' | preview' if r.preview else ''}"
        )


@records_group.command("show")
@click.argument("record_id")
@click.pass_context
def records_show(ctx, record_id):
    store = _store(ctx)
    try:
        record = store.get(record_id)
    finally:
        store.close()
    if record is None:
        click.secho(f"Error: record {record_id} not found.", fg="red")
        raise SystemExit(1)
    out = json.loads(record.data_json())
    out.update(id=record.id, kind=record.kind, status=record.status, file_name=record.file_name,
               created_at=record.created_at, updated_at=record.updated_at,
               media_type=record.media_type, preview_bytes=len(record.preview or b""))
    click.echo(json.dumps(out, indent=2))


def _set_status(ctx, ids, status):
    store = _store(ctx)
    try:
        updated = store.bulk_update_status(ids, status)
    finally:
        store.close()
    colour = "green" if updated == len(ids) else "yellow"
    click.secho(f"{updated}/{len(ids)} record(s) set to {status}.", fg=colour)
    if updated == 0:
        raise SystemExit(1)


@records_group.command("status")
@click.argument("record_id")
@click.argument("status", type=click.Choice(RECORD_STATUSES))
@click.pass_context
def records_status(ctx, record_id, status):
    _set_status(ctx, [record_id], status)


@records_group.command("approve")
@click.argument("ids", nargs=-1, required=True)
@click.pass_context
def records_approve(ctx, ids):
    _set_status(ctx, list(ids), APPROVED)


@records_group.command("reject")
@click.argument("ids", nargs=-1, required=True)
@click.pass_context
def records_reject(ctx, ids):
    _set_status(ctx, list(ids), REJECTED)


@records_group.command("purge", help="Remove records past the retention window")
@click.pass_context
def records_purge(ctx):
    store = _store(ctx)
    try:
        n = store.purge()
    finally:
        store.close()
    click.secho(f"Evicted {n} expired record(s).", fg="green")


@records_group.command("clear", help="Delete all records")
@click.confirmation_option(prompt="Delete every saved record?")
@click.pass_context
def records_clear(ctx):
    store = _store(ctx)
    try:
        n = store.clear()
    finally:
        store.close()
    click.secho(f"Deleted {n} record(s).", fg="yellow")


# ---------- Config ----------
@cli.group("config", help="Configuration")
def config_group():
    pass


@config_group.command("get")
@click.pass_context
def config_get(ctx):
    conn = connect_db(ctx.obj["db"])
    try:
        click.echo(json.dumps(get_config(conn), indent=2))
    finally:
        conn.close()


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set_cmd(ctx, key, value):
    conn = connect_db(ctx.obj["db"])
    try:
        if key in ("inter_item_delay", "backoff_base", "extract_timeout_seconds"):
            value = str(parse_duration(value))
        set_config(conn, key, value)
        click.secho(f"Config updated: {key}={value}", fg="green")
    except ValueError as e:
        click.secho(f"Error: {e}", fg="red")
        raise SystemExit(1)
    finally:
        conn.close()


def main():
    cli()


if __name__ == "__main__":
    main()
