"""CLI main entry point."""

import asyncio
import json
import shutil
import sys
from pathlib import Path

import click
import yaml

from . import kubeconfig
from .config import Kbb8Config, load_config
from .environment import Environment, run
from .errors import Kbb8Error, ProviderStartupError
from .shared.logging import configure_logging


def _load(ctx: click.Context) -> Kbb8Config:
    try:
        return load_config(ctx.obj["config_path"])
    except Kbb8Error as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)


@click.group()
@click.option("-c", "--config", type=click.Path(), help="Config file path")
@click.option("-v", "--verbose", count=True, help="Increase verbosity")
@click.option("--log-file", type=click.Path(), help="Write kbb8's own log (JSON) to a file")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: int, log_file: str | None) -> None:
    """Bootstrap a local control plane with Cluster API providers."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    configure_logging(
        level="debug" if verbose else "info",
        log_file=log_file,
        json_output=log_file is not None,
    )


@cli.command()
@click.option("--kubeconfig", "kubeconfig_path", type=click.Path(), help="Kubeconfig to publish credentials to")
@click.option("--timeout", type=float, help="Overall startup timeout in seconds")
@click.pass_context
def start(ctx: click.Context, kubeconfig_path: str | None, timeout: float | None) -> None:
    """Start etcd, the API server and every provider; stop them on Ctrl-C."""
    config = _load(ctx)
    if kubeconfig_path:
        config.kubeconfig = Path(kubeconfig_path)
    if timeout is not None:
        if timeout <= 0:
            click.echo("Error: --timeout must be positive", err=True)
            sys.exit(1)
        config.startup_timeout = timeout

    def on_ready(environment: Environment) -> None:
        click.echo(f"Environment ready, kubeconfig context: {environment.context}")
        click.echo("Press Ctrl-C to stop.")

    environment = Environment(config)
    try:
        asyncio.run(run(environment, startup_timeout=config.startup_timeout, on_ready=on_ready))
    except ProviderStartupError as e:
        click.echo(f"Error: {e.message}", err=True)
        for failure in e.failures:
            click.echo(f"  ✗ {failure.name}: {failure.error}", err=True)
        sys.exit(1)
    except Kbb8Error as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    click.echo("Environment stopped.")


@cli.command()
@click.option("--kubeconfig", "kubeconfig_path", type=click.Path(), help="Kubeconfig to remove credentials from")
@click.option("--purge", is_flag=True, help="Also delete the work directory")
@click.pass_context
def cleanup(ctx: click.Context, kubeconfig_path: str | None, purge: bool) -> None:
    """Remove the credentials entry left behind by an interrupted run."""
    config = _load(ctx)
    explicit = Path(kubeconfig_path) if kubeconfig_path else config.kubeconfig

    try:
        changed = kubeconfig.remove(config.cluster_name, explicit, prefix=config.key_prefix)
    except Kbb8Error as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    context = kubeconfig.context_key(config.cluster_name, config.key_prefix)
    if changed:
        for path in changed:
            click.echo(f"✓ Removed {context} from {path}")
    else:
        click.echo(f"No credentials for {context} found.")

    if purge and config.work_dir.exists():
        try:
            shutil.rmtree(config.work_dir)
        except OSError as e:
            click.echo(f"Error: unable to delete {config.work_dir}: {e}", err=True)
            sys.exit(1)
        click.echo(f"✓ Deleted {config.work_dir}")


@cli.group("config")
def config_group() -> None:
    """Inspect configuration."""
    pass


@config_group.command("show")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--sources", is_flag=True, help="Show where each value came from")
@click.pass_context
def config_show(ctx: click.Context, json_output: bool, sources: bool) -> None:
    """Show the effective configuration."""
    config = _load(ctx)
    data = config.to_dict()
    if sources:
        data = {key: {"value": value, "source": config.get_source(key)} for key, value in data.items()}

    if json_output:
        click.echo(json.dumps(data, indent=2))
    else:
        click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False), nl=False)


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
