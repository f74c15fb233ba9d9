#!/usr/bin/env python3
"""
CLI for the Vault plugin manager.

Vault plugin manager syncs plugins with an S3 bucket in a side-container of
each Vault instance.
"""

import asyncio
import json
import logging
from functools import wraps

import click
import yaml
from tabulate import tabulate

from config import (
    DEFAULT_SA_TOKEN_PATH,
    LOG_LEVELS,
    Config,
    get_config,
    parse_duration,
)
from main import Application, main, setup_logging, sync_once
from models import PluginSyncError

logger = logging.getLogger(__name__)

CONFIG_OPTIONS = (
    "bucket",
    "plugin_path",
    "interval",
    "region",
    "address",
    "auth_path",
    "auth_role",
    "max_retries",
    "token_path",
)


class DurationType(click.ParamType):
    """Duration option accepting seconds or strings like 90s, 3m, 1h30m."""

    name = "duration"

    def convert(self, value, param, ctx):
        try:
            return parse_duration(value)
        except ValueError as e:
            self.fail(str(e), param, ctx)


def sync_options(f):
    """Options shared by every command that talks to S3 and Vault."""
    options = [
        click.option(
            "--s3-bucket", "bucket", help="Bucket holding the plugins [S3_BUCKET]"
        ),
        click.option("--plugin-path", help="Vault plugin directory [/vault/plugins]"),
        click.option("--interval", type=DurationType(), help="Sync interval [180s]"),
        click.option("--region", help="AWS region [eu-central-1]"),
        click.option("--vault-addr", "address", help="Vault address [VAULT_ADDR]"),
        click.option(
            "--vault-auth-path",
            "auth_path",
            help="Vault auth mount, e.g. auth/kubernetes",
        ),
        click.option("--vault-auth-role", "auth_role", help="Vault auth role"),
        click.option(
            "--vault-max-retries", "max_retries", type=int, help="Vault max retries [8]"
        ),
        click.option(
            "--sa-token-path",
            "token_path",
            help=f"Service account token [{DEFAULT_SA_TOKEN_PATH}]",
        ),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def with_config(f):
    """Build the Config from the environment plus command line overrides."""

    @wraps(f)
    def wrapper(**options):
        overrides = {k: options.pop(k) for k in CONFIG_OPTIONS if k in options}
        try:
            config = get_config().override(**overrides)
            config.validate()
        except (PluginSyncError, ValueError) as e:
            raise click.ClickException(str(e))
        return f(config, **options)

    return wrapper


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="INFO",
    envvar="LOG_LEVEL",
    help="Log level [LOG_LEVEL or INFO]",
)
def cli(log_level):
    """Vault plugin manager as side-container for each Vault instance"""
    setup_logging(log_level)


@cli.command()
@sync_options
@with_config
def run(config: Config):
    """Sync plugins every interval until SIGTERM"""
    try:
        asyncio.run(main(config))
    except PluginSyncError as e:
        logger.critical(str(e))
        raise click.ClickException(str(e))


@cli.command()
@sync_options
@with_config
def sync(config: Config):
    """Run a single sync cycle and exit"""
    try:
        report = asyncio.run(sync_once(config))
    except PluginSyncError as e:
        raise click.ClickException(str(e))

    if report is None:
        raise click.ClickException("Sync cycle aborted, see log for details")

    for result in report.results:
        click.echo(f"{result.descriptor}: {result.action.value}")
    for plugin, error in report.failures:
        click.echo(f"{plugin}: failed ({error})", err=True)

    if not report.succeeded:
        raise click.ClickException(f"{len(report.failures)} plugin(s) failed to sync")


async def _collect_status(config: Config):
    app = Application(config)
    async with app.build_session() as session:
        return await session.status()


@cli.command()
@sync_options
@click.option(
    "--output", "-o", type=click.Choice(["table", "json", "yaml"]), default="table"
)
@with_config
def status(config: Config, output):
    """Show how each published plugin compares to disk and Vault (read-only)"""
    try:
        statuses = asyncio.run(_collect_status(config))
    except PluginSyncError as e:
        raise click.ClickException(str(e))

    rows = [s.to_dict() for s in statuses]
    if output == "json":
        click.echo(json.dumps(rows, indent=2))
    elif output == "yaml":
        click.echo(yaml.safe_dump(rows, default_flow_style=False, sort_keys=False))
    else:
        headers = ["Name", "Type", "S3", "Local", "Vault", "Action"]
        table = [
            [
                row["name"],
                row["type"],
                _short(row["remote_sha256"]),
                _short(row["local_sha256"]),
                _short(row["catalog_sha256"]),
                "✓" if row["action"] == "none" else row["action"],
            ]
            for row in rows
        ]
        click.echo(tabulate(table, headers=headers, tablefmt="grid"))


def _short(digest):
    return digest[:12] if digest else "-"


if __name__ == "__main__":
    cli()
