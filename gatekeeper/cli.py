"""CLI entrypoint for Gatekeeper."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

import click
import yaml

from gatekeeper.core.exceptions import GatekeeperError

logger = logging.getLogger("gatekeeper.cli")


def _logging_settings(config_dir: Optional[Path], env: Optional[str]) -> tuple[str, str]:
    """Level name and format from the same config cascade the commands load."""
    from gatekeeper.core.config import load_config

    try:
        config = load_config(config_dir=config_dir, env=env)
        return config.logging.level, config.logging.format
    except Exception:
        return "INFO", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _setup_logging(
    verbose: bool = False,
    config_dir: Optional[Path] = None,
    env: Optional[str] = None,
) -> None:
    level_name, fmt = _logging_settings(config_dir, env)
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format=fmt, stream=sys.stderr)


def _load_request(path: Optional[Path]) -> dict[str, Any]:
    if path is None:
        return {}
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in {".yaml", ".yml"}:
        data = yaml.safe_load(text)
    else:
        data = json.loads(text)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise click.ClickException("Request must be a JSON/YAML object.")
    return data


def _load_config(config_dir: Optional[Path], env: Optional[str]):
    from gatekeeper.core.config import load_config

    try:
        return load_config(config_dir=config_dir, env=env)
    except GatekeeperError as exc:
        raise click.ClickException(str(exc)) from exc


def _echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


@click.group()
@click.option("--verbose", is_flag=True, default=False, help="Enable verbose (DEBUG) logging.")
@click.option(
    "--config-dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Directory holding default.yaml and rules.yaml.",
)
@click.option("--env", default=None, help="Environment overlay name (loads config/{env}.yaml).")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_dir: Optional[Path], env: Optional[str]) -> None:
    """Gatekeeper command line interface."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_dir"] = config_dir
    ctx.obj["env"] = env
    _setup_logging(verbose=verbose, config_dir=config_dir, env=env)


@cli.command("call")
@click.argument("method")
@click.option(
    "--request",
    "request_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to JSON or YAML request body.",
)
@click.option(
    "--state",
    "state_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to JSON host snapshot (state and elements).",
)
@click.pass_context
def call(
    ctx: click.Context,
    method: str,
    request_path: Optional[Path],
    state_path: Optional[Path],
) -> None:
    """Run one entry point against a host snapshot and print the response."""
    from gatekeeper.core.factory import ComponentFactory
    from gatekeeper.core.host import SnapshotHost
    from gatekeeper.methods.handlers import default_registry

    request = _load_request(request_path)
    try:
        host = SnapshotHost.from_file(state_path) if state_path else SnapshotHost()
    except GatekeeperError as exc:
        raise click.ClickException(str(exc)) from exc

    config_dir = ctx.obj.get("config_dir")
    config = _load_config(config_dir, ctx.obj.get("env"))
    try:
        context = ComponentFactory.create(
            executor=host, host_reader=host, config=config, config_dir=config_dir,
        )
    except GatekeeperError as exc:
        raise click.ClickException(str(exc)) from exc

    try:
        response = default_registry().call(context, method, request)
    finally:
        context.close()

    _echo_json(response)
    if not response.get("success", False):
        sys.exit(1)


@cli.command("methods")
def methods() -> None:
    """List registered entry points."""
    from gatekeeper.methods.handlers import default_registry

    registry = default_registry()
    for name in registry.names():
        entry = registry.get(name)
        gate = "" if entry.requires_enabled else " (always available)"
        detail = f"  {entry.description}" if entry.description else ""
        click.echo(f"{name}{gate}{detail}")


@cli.command("config")
@click.pass_context
def show_config(ctx: click.Context) -> None:
    """Print the effective configuration after the YAML/env cascade."""
    config = _load_config(ctx.obj.get("config_dir"), ctx.obj.get("env"))
    payload = config.model_dump(mode="json")
    payload["database"]["password"] = "***"
    click.echo(yaml.safe_dump(payload, sort_keys=False))


@cli.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Apply the PostgreSQL schema used by the postgres store."""
    from gatekeeper.db.engine import DatabaseEngine

    config = _load_config(ctx.obj.get("config_dir"), ctx.obj.get("env"))
    engine = DatabaseEngine(config.database)
    try:
        engine.initialize_schema()
    except GatekeeperError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        engine.close()
    click.echo(
        f"Schema applied to {config.database.host}:{config.database.port}/{config.database.dbname}"
    )


def main() -> None:
    """Entry point used by `gatekeeper` console script."""
    from dotenv import load_dotenv
    load_dotenv(Path(__file__).parent.parent / ".env", override=True)
    cli()


if __name__ == "__main__":
    main()
