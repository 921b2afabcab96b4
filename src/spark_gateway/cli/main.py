"""spark-gateway CLI.

Commands:
    gateway          Serve the Gateway
    manager          Serve the Manager for one cluster
    validate         Validate the config file and middleware chain
    ledger backfill  Insert ledger rows missing for Manager-visible applications
    ledger list      Show the most recent ledger rows
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import click

from spark_gateway import __version__
from spark_gateway.config import ConfigError, SparkGatewayConfig, load_config

LOG_LEVELS = ["debug", "info", "warning", "error"]


def _load(ctx: click.Context) -> SparkGatewayConfig:
    """Load the config named on the root group, exiting 1 on failure."""
    try:
        return load_config(ctx.obj.get("config"))
    except ConfigError as e:
        click.echo(click.style("FAIL", fg="red") + f"  config: {e}", err=True)
        sys.exit(1)


def _uvicorn() -> Any:
    try:
        import uvicorn
    except ImportError:
        click.echo("Serving requires uvicorn. Install with: pip install spark-gateway", err=True)
        sys.exit(1)
    return uvicorn


# --- Root group ---


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(dir_okay=False),
    help="Path to spark-gateway.yaml (default: $SPARK_GATEWAY_CONFIG or auto-discover)",
)
@click.option(
    "--log-level",
    default="info",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    help="Logging level",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, log_level: str) -> None:
    """Spark-Gateway: one API for Spark applications across Kubernetes clusters."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = config_path
    ctx.obj["log_level"] = log_level.lower()


# --- gateway command ---


@cli.command()
@click.option("--host", default=None, help="Bind address (default: gateway.host)")
@click.option("--port", default=None, type=int, help="Port number (default: gateway.port)")
@click.pass_context
def gateway(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Serve the Gateway API."""
    cfg = _load(ctx)
    uvicorn = _uvicorn()

    from spark_gateway.gateway.app import create_gateway_app
    from spark_gateway.middleware import MiddlewareConfigError

    try:
        app = create_gateway_app(cfg)
    except MiddlewareConfigError as e:
        click.echo(click.style("FAIL", fg="red") + f"  middleware: {e}", err=True)
        sys.exit(1)

    host = host or cfg.gateway.host
    port = port or cfg.gateway.port
    click.echo(f"Spark-Gateway {__version__} at http://{host}:{port}")
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level=ctx.obj["log_level"],
        timeout_graceful_shutdown=cfg.gateway.shutdown_grace_period,
    )


# --- manager command ---


@cli.command()
@click.option("--cluster", "cluster_name", required=True, help="Cluster name to manage")
@click.option("--host", default=None, help="Bind address (default: manager.host)")
@click.option("--port", default=None, type=int, help="Port number (default: manager.port)")
@click.pass_context
def manager(ctx: click.Context, cluster_name: str, host: str | None, port: int | None) -> None:
    """Serve the Manager for one cluster."""
    cfg = _load(ctx)
    cluster = cfg.get_cluster(cluster_name)
    if cluster is None:
        click.echo(f"Cluster '{cluster_name}' is not configured.", err=True)
        sys.exit(1)
    uvicorn = _uvicorn()

    from spark_gateway.manager.app import create_manager_app
    from spark_gateway.manager.kube import KubeClientError

    try:
        app = create_manager_app(cfg, cluster)
    except KubeClientError as e:
        click.echo(click.style("FAIL", fg="red") + f"  kubernetes: {e}", err=True)
        sys.exit(1)

    host = host or cfg.manager.host
    port = port or cfg.manager.port
    click.echo(f"Spark-Gateway Manager for {cluster.name} at http://{host}:{port}")
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level=ctx.obj["log_level"],
        timeout_graceful_shutdown=cfg.manager.shutdown_grace_period,
    )


# --- validate command ---


@cli.command()
@click.pass_context
def validate(ctx: click.Context) -> None:
    """Validate the config file and build the middleware chain."""
    from spark_gateway.middleware import MiddlewareConfigError, build_chain

    cfg = _load(ctx)
    where = cfg.config_path or "defaults"
    click.echo(
        click.style("OK", fg="green")
        + f"  config: {len(cfg.clusters)} cluster(s) loaded from {where}"
    )

    try:
        chain = build_chain(cfg.gateway.middleware)
    except MiddlewareConfigError as e:
        click.echo(click.style("FAIL", fg="red") + f"  middleware: {e}")
        sys.exit(1)
    click.echo(click.style("OK", fg="green") + f"  middleware: {len(chain)} filter(s) built")


# --- ledger group ---


@cli.group()
def ledger() -> None:
    """Submission ledger maintenance."""


@ledger.command("backfill")
@click.option(
    "--cluster",
    "cluster_names",
    multiple=True,
    help="Only backfill these clusters (repeatable; default: all)",
)
@click.pass_context
def ledger_backfill(ctx: click.Context, cluster_names: tuple[str, ...]) -> None:
    """Insert ledger rows for applications that exist on a cluster but not in the ledger."""
    from spark_gateway.errors import GatewayError
    from spark_gateway.gateway.backfill import backfill_ledger
    from spark_gateway.gateway.ledger import SubmissionLedger
    from spark_gateway.gateway.manager_client import HttpManagerClient

    cfg = _load(ctx)
    if not cfg.gateway.database.enable:
        click.echo("Ledger is disabled (gateway.database.enable: false).", err=True)
        sys.exit(1)

    clusters = list(cfg.clusters)
    if cluster_names:
        unknown = [n for n in cluster_names if cfg.get_cluster(n) is None]
        if unknown:
            click.echo(f"Unknown cluster(s): {', '.join(unknown)}", err=True)
            sys.exit(1)
        clusters = [c for c in clusters if c.name in cluster_names]

    store = SubmissionLedger.open(cfg.gateway.database.path)
    try:
        result = backfill_ledger(store, HttpManagerClient(cfg.gateway, clusters), clusters)
    except GatewayError as e:
        click.echo(click.style("FAIL", fg="red") + f"  backfill: {e}", err=True)
        sys.exit(1)
    finally:
        store.close()

    total = 0
    for name, inserted in result.items():
        total += len(inserted)
        click.echo(f"{name}: {len(inserted)} row(s) inserted")
        for gateway_id in inserted:
            click.echo(f"  {gateway_id}")
    click.echo(f"\n{total} ledger row(s) backfilled.")


@ledger.command("list")
@click.option("--cluster", "cluster_name", default=None, help="Only rows for this cluster")
@click.option("--limit", default=20, show_default=True, type=click.IntRange(min=1))
@click.pass_context
def ledger_list(ctx: click.Context, cluster_name: str | None, limit: int) -> None:
    """Show the most recent submissions recorded in the ledger."""
    from spark_gateway.errors import GatewayError
    from spark_gateway.gateway.ledger import SubmissionLedger

    cfg = _load(ctx)
    if not cfg.gateway.database.enable:
        click.echo("Ledger is disabled (gateway.database.enable: false).", err=True)
        sys.exit(1)

    store = SubmissionLedger.open(cfg.gateway.database.path)
    try:
        records = store.list(cluster=cluster_name, limit=limit)
        total = store.count(cluster=cluster_name)
    except GatewayError as e:
        click.echo(click.style("FAIL", fg="red") + f"  ledger: {e}", err=True)
        sys.exit(1)
    finally:
        store.close()

    if not records:
        click.echo("No submissions recorded.")
        return
    for r in records:
        created = r.creation_time.strftime("%Y-%m-%d %H:%M:%S")
        click.echo(f"{created}  {r.cluster:<12} {r.username:<16} {r.gateway_id}  {r.name}")
    click.echo(f"\nShowing {len(records)} of {total} submission(s).")
