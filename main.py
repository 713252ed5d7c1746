#!/usr/bin/env python3
"""
Tooling Workflow — CLI entry point.

Usage examples:
  python main.py check                              # Verify database and config files
  python main.py init                               # Restore config files, create the database
  python main.py import-suppliers data/suppliers.csv

  python main.py pending --role Spares              # Work waiting on one role
  python main.py pending --role Indentor --user ravi
  python main.py low-stock                          # Items at or below their reorder threshold
  python main.py spend --year 2024                  # Awarded value per supplier
  python main.py throughput --period month --year 2024
  python main.py stats --year 2024
  python main.py history PR-2024-001                # Audit trail for one entity
"""
import functools
import json
import logging
import sys
from pathlib import Path

import click

from bootstrap import ensure_config_files
from config import Config
from models import Actor, Role
from workflow import SqliteStore, WorkflowEngine, WorkflowError, queries
from workflow.store import Collection


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
        datefmt="%H:%M:%S",
    )


def _engine(config: Config) -> WorkflowEngine:
    config.ensure_output_dir()
    return WorkflowEngine(SqliteStore(config.db_path), config)


def _reports_errors(fn):
    """Print workflow errors as '✗ kind: message' and exit 1."""
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except WorkflowError as exc:
            click.echo(f"✗ {exc.kind}: {exc.message}", err=True)
            sys.exit(1)
    return wrapper


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Tooling Workflow — projects, PRs, handovers, inventory and spares."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config"] = Config()
    _setup_logging(verbose)


# --------------------------------------------------------------------
# setup commands
# --------------------------------------------------------------------

@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Verify that the database and config files are in place."""
    config: Config = ctx.obj["config"]

    click.echo("\n=== Workflow Setup Check ===\n")

    db_exists = config.db_path.exists()
    click.echo(f"  Database:                     {'✓' if db_exists else '✗'}  {config.db_path}")
    if db_exists:
        store = SqliteStore(config.db_path)
        for collection in Collection:
            click.echo(f"     {collection.value:<25} {store.count(collection)}")
    else:
        click.echo("     → Run: python main.py init")

    settings = config.config_dir / "workflow_settings.json"
    click.echo(f"  Settings file:                {'✓' if settings.exists() else '✗'}  {settings}")
    template = config.handover_template_path
    template_ok = bool(template and template.exists())
    click.echo(f"  Handover export template:     {'✓' if template_ok else '✗ (built-in default)'}")
    click.echo(f"  Suppliers CSV:                {'✓' if config.suppliers_csv.exists() else '✗'}  {config.suppliers_csv}")
    click.echo()
    click.echo(f"  Initial min stock policy:     {config.initial_min_stock_policy}")
    click.echo(f"  Supplier fuzzy threshold:     {config.supplier_fuzzy_threshold}")
    click.echo()


@cli.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Restore missing config files from defaults/ and create the database."""
    config: Config = ctx.obj["config"]
    restored = ensure_config_files(config.config_dir)
    _engine(config)
    click.echo(f"✓ Database ready: {config.db_path}")
    if restored:
        click.echo(f"✓ Restored: {', '.join(restored)}")


@cli.command("import-suppliers")
@click.argument("csv_path", type=click.Path(exists=True, dir_okay=False), required=False)
@click.option("--user", default="cli", show_default=True, help="User recorded in the audit trail")
@click.pass_context
@_reports_errors
def import_suppliers(ctx: click.Context, csv_path: str | None, user: str) -> None:
    """Create or update suppliers from a supplier master CSV."""
    config: Config = ctx.obj["config"]
    path = Path(csv_path) if csv_path else config.suppliers_csv
    engine = _engine(config)
    created, updated = engine.import_suppliers(Actor(user=user, role=Role.APPROVER), path)
    click.echo(f"✓ Suppliers imported from {path.name}: {created} created, {updated} updated")


# --------------------------------------------------------------------
# dashboards and reports
# --------------------------------------------------------------------

@cli.command()
@click.option("--role", "role_name", default=None, help="Only the counters this role sees")
@click.option("--user", default=None, help="Requester for the Indentor view")
@click.pass_context
def pending(ctx: click.Context, role_name: str | None, user: str | None) -> None:
    """Show work waiting on each role."""
    role = None
    if role_name:
        try:
            role = Role(role_name)
        except ValueError:
            raise click.BadParameter(f"unknown role {role_name!r}", param_hint="--role")
    counts = queries.pending_counts(_engine(ctx.obj["config"]).store, role, user)
    click.echo()
    for key, value in counts.items():
        click.echo(f"  {key.replace('_', ' '):<32} {value}")
    click.echo()


@cli.command("low-stock")
@click.pass_context
def low_stock(ctx: click.Context) -> None:
    """List Low Stock and Out of Stock items with a suggested reorder quantity."""
    suggestions = queries.reorder_suggestions(_engine(ctx.obj["config"]).store)
    if not suggestions:
        click.echo("✓ All inventory items are In Stock")
        return
    click.echo(f"\n⚠  {len(suggestions)} item(s) need replenishment:\n")
    for s in suggestions:
        click.echo(
            f"  {s.inventory_item_id:<16} {s.name:<28} {s.status.value:<13} "
            f"stock {s.stock_level}/{s.min_stock_level}  reorder {s.suggested_quantity}"
        )
    click.echo()


@cli.command()
@click.option("--year", type=int, default=None, help="Only PRs awarded in this year")
@click.pass_context
def spend(ctx: click.Context, year: int | None) -> None:
    """Awarded value per supplier."""
    rows = queries.spend_by_supplier(_engine(ctx.obj["config"]).store, year)
    if not rows:
        click.echo("No awarded PRs.")
        return
    click.echo()
    for row in rows:
        click.echo(
            f"  {row['supplier_name']:<32} {row['orders']:>4} order(s)  {row['total_spend']:>14,.2f}"
        )
    click.echo(f"\n  {'Total':<32} {sum(r['orders'] for r in rows):>4}            "
               f"{sum(r['total_spend'] for r in rows):>14,.2f}\n")


@cli.command()
@click.option("--period", type=click.Choice([queries.PERIOD_MONTH, queries.PERIOD_YEAR]),
              default=queries.PERIOD_MONTH, show_default=True)
@click.option("--year", type=int, default=None)
@click.pass_context
def throughput(ctx: click.Context, period: str, year: int | None) -> None:
    """PRs submitted, approved, awarded and rejected per period."""
    rows = queries.pr_throughput(_engine(ctx.obj["config"]).store, period, year)
    click.echo(f"\n  {'Period':<10} {'Submitted':>9} {'Approved':>9} {'Awarded':>9} {'Rejected':>9}")
    for row in rows:
        click.echo(
            f"  {row['period']:<10} {row['submitted']:>9} {row['approved']:>9} "
            f"{row['awarded']:>9} {row['rejected']:>9}"
        )
    click.echo()


@cli.command()
@click.option("--year", type=int, default=None)
@click.pass_context
def stats(ctx: click.Context, year: int | None) -> None:
    """Counts by status for every collection, as JSON."""
    store = _engine(ctx.obj["config"]).store
    click.echo(json.dumps({
        "dashboard": queries.dashboard_stats(store, year),
        "prs": queries.pr_summary(store, year),
        "inventory": queries.inventory_summary(store),
    }, indent=2))


@cli.command()
@click.argument("entity_id")
@click.pass_context
def history(ctx: click.Context, entity_id: str) -> None:
    """Show the audit trail for one entity."""
    entries = _engine(ctx.obj["config"]).history(entity_id)
    if not entries:
        click.echo(f"No history for {entity_id}")
        return
    for e in entries:
        detail = f"  {json.dumps(e.detail)}" if e.detail else ""
        click.echo(f"  {e.timestamp}  {e.action:<20} {e.actor} ({e.role or '-'}){detail}")


if __name__ == "__main__":
    cli()
