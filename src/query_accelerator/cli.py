#!/usr/bin/env python3
"""
Query Accelerator CLI
=====================

Operator commands for routing checks, MV catalog management and refreshes.
Every command prints JSON; domain errors go to stderr with a non-zero exit.
"""
import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from typing import Any, Optional

import click

from query_accelerator.acceleration.service import QueryAccelerator, create_query_accelerator
from query_accelerator.acceleration.signature import signature as compute_signature
from query_accelerator.core.config import Settings, get_settings
from query_accelerator.core.exceptions import BaseApplicationException, NotFoundException
from query_accelerator.data_access.models import MaterializedViewRecord
from query_accelerator.engines.selector import EngineType, choose_engine


def _echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


def _record_dict(record: MaterializedViewRecord) -> dict[str, Any]:
    return record.model_dump(mode="json")


def _run(settings: Settings, action: Callable[[QueryAccelerator], Awaitable[Any]]) -> Any:
    """Build an accelerator, run one action against it, and always close it."""
    async def runner():
        accelerator = await create_query_accelerator(settings)
        try:
            return await action(accelerator)
        finally:
            await accelerator.close()

    try:
        return asyncio.run(runner())
    except NotFoundException as e:
        click.echo(f"Not found: {e.message}", err=True)
        sys.exit(2)
    except BaseApplicationException as e:
        click.echo(f"Error: {json.dumps(e.to_dict(), default=str)}", err=True)
        sys.exit(1)


@click.group()
@click.option('--database-url', default=None, help='Catalog database URL (overrides DATABASE_URL)')
@click.pass_context
def cli(ctx: click.Context, database_url: Optional[str]):
    """Materialized view acceleration tools."""
    settings = get_settings()
    if database_url:
        settings = settings.model_copy(update={"database_url": database_url})
    ctx.obj = settings


@cli.command()
@click.argument('sql')
@click.option('--prefer-olap', is_flag=True, help='Force the analytical engine')
def classify(sql: str, prefer_olap: bool):
    """Show which engine a statement routes to."""
    _echo_json({"engine": choose_engine(sql, prefer_olap).value})


@cli.command()
@click.argument('sql')
def signature(sql: str):
    """Print the catalog signature of a statement."""
    _echo_json({"signature": compute_signature(sql)})


@cli.command()
@click.argument('tenant_id')
@click.argument('name')
@click.argument('definition_sql')
@click.option('--engine', type=click.Choice([e.value for e in EngineType]), default=EngineType.OLTP.value)
@click.option('--target-database', default=None, help='Analytical database (required for olap)')
@click.option('--target-table', default=None, help='Table holding the stored result')
@click.option('--enabled', is_flag=True, help='Allow rewrites onto this MV immediately')
@click.option('--refresh-interval-ms', type=int, default=None)
@click.pass_obj
def create(settings: Settings, tenant_id: str, name: str, definition_sql: str, engine: str,
           target_database: Optional[str], target_table: Optional[str], enabled: bool,
           refresh_interval_ms: Optional[int]):
    """Register a materialized view."""
    data = {
        "name": name,
        "definition_sql": definition_sql,
        "engine": engine,
        "target_database": target_database,
        "target_table": target_table,
        "enabled": enabled,
        "refresh_interval_ms": refresh_interval_ms,
    }
    record = _run(settings, lambda acc: acc.create_mv(tenant_id, data))
    _echo_json(_record_dict(record))


@cli.command(name="list")
@click.argument('tenant_id')
@click.option('--enabled/--disabled', default=None, help='Filter on the enabled flag')
@click.option('--proposed/--not-proposed', default=None, help='Filter on the proposed flag')
@click.pass_obj
def list_views(settings: Settings, tenant_id: str, enabled: Optional[bool], proposed: Optional[bool]):
    """List a tenant's materialized views."""
    records = _run(settings, lambda acc: acc.list_mvs(tenant_id, enabled=enabled, proposed=proposed))
    _echo_json([_record_dict(r) for r in records])


@cli.command()
@click.argument('tenant_id')
@click.argument('view_id')
@click.pass_obj
def approve(settings: Settings, tenant_id: str, view_id: str):
    """Enable a proposed materialized view."""
    record = _run(settings, lambda acc: acc.approve_mv(tenant_id, view_id))
    _echo_json(_record_dict(record))


@cli.command()
@click.argument('tenant_id')
@click.argument('view_id')
@click.pass_obj
def delete(settings: Settings, tenant_id: str, view_id: str):
    """Delete a materialized view."""
    _run(settings, lambda acc: acc.delete_mv(tenant_id, view_id))
    _echo_json({"id": view_id, "deleted": True})


@cli.command()
@click.argument('tenant_id')
@click.argument('view_id')
@click.pass_obj
def refresh(settings: Settings, tenant_id: str, view_id: str):
    """Refresh one materialized view now."""
    status = _run(settings, lambda acc: acc.refresh_once(tenant_id, view_id))
    _echo_json({"id": view_id, "status": status.value})
    if status.value != "success":
        sys.exit(1)


@cli.command()
@click.pass_obj
def sweep(settings: Settings):
    """Refresh every due materialized view once."""
    result = _run(settings, lambda acc: acc.run_sweep())
    _echo_json(result.to_dict())


@cli.command()
@click.option('--metrics-port', type=int, default=None, help='Expose Prometheus metrics on this port')
@click.pass_obj
def scheduler(settings: Settings, metrics_port: Optional[int]):
    """Run the periodic refresh sweep until interrupted."""
    async def action(acc: QueryAccelerator):
        if metrics_port:
            acc.observatory.start_metrics_server(metrics_port)
        if not acc.start_mv_scheduler():
            click.echo("Auto-refresh is disabled (set MV_AUTO_REFRESH_ENABLE=true)", err=True)
            return False
        await asyncio.Event().wait()
        return True

    try:
        started = _run(settings, action)
    except KeyboardInterrupt:
        click.echo("Scheduler stopped")
        return
    if not started:
        sys.exit(1)


def main():
    cli()


if __name__ == "__main__":
    main()
