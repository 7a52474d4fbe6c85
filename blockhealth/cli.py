"""CLI entrypoint for blockhealth."""

import logging
import sys
from pathlib import Path

import click

from . import __version__
from .config import Config, build_orchestrator, load_config
from .models import Identity
from .orchestrator import RecordOrchestrator


def _configure_logging(verbose: int) -> None:
    from rich.logging import RichHandler

    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _identity_option(value: str | None) -> Identity | None:
    if value is None:
        return None
    try:
        return Identity(value)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--identity") from e


def _orchestrator(ctx: click.Context) -> RecordOrchestrator:
    cfg: Config = ctx.obj["config"]
    try:
        return build_orchestrator(cfg)
    except ValueError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.version_option(__version__, prog_name="blockhealth")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, dir_okay=False, path_type=Path),
    default=None,
    help="Path to blockhealth.toml (defaults to ./blockhealth.toml if present)",
)
@click.option("--verbose", "-v", count=True, help="Increase log verbosity (-v info, -vv debug)")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: int) -> None:
    """blockhealth - Patient records on a content store and pointer ledger.

    The connected identity is read from BLOCKHEALTH_IDENTITY and its secret
    from BLOCKHEALTH_SECRET unless the config says otherwise.
    """
    ctx.ensure_object(dict)
    _configure_logging(verbose)
    try:
        ctx.obj["config"] = load_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        raise click.ClickException(str(e)) from e


@cli.command()
@click.option("--name", required=True, help="Patient name")
@click.option(
    "--field",
    "fields",
    multiple=True,
    metavar="KEY=VALUE",
    help="Additional profile field (repeatable), e.g. --field bloodgroup=O+",
)
@click.pass_context
def register(ctx: click.Context, name: str, fields: tuple[str, ...]) -> None:
    """Create the first record for the connected identity."""
    from .commands.records_cmd import run_register

    profile: dict[str, str] = {"name": name}
    for item in fields:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"expected KEY=VALUE, got {item!r}", param_hint="--field")
        profile[key.strip()] = value.strip()

    sys.exit(run_register(_orchestrator(ctx), profile))


@cli.group()
def history() -> None:
    """Read and extend the medical history."""


@history.command("show")
@click.option("--identity", "identity_value", default=None, help="Identity to read (defaults to the connected one)")
@click.option("--json", "output_json", is_flag=True, help="Output the full record as JSON")
@click.pass_context
def history_show(ctx: click.Context, identity_value: str | None, output_json: bool) -> None:
    """Show the medical history table."""
    from .commands.records_cmd import run_history_show

    sys.exit(
        run_history_show(
            _orchestrator(ctx),
            identity=_identity_option(identity_value),
            output_json=output_json,
        )
    )


@history.command("add")
@click.option("--disease", default=None, help="Disease name")
@click.option("--date", "diagnosed_date", default=None, metavar="YYYY-MM-DD", help="Diagnosed date")
@click.option(
    "--status",
    type=click.Choice(["Treated", "Ongoing"]),
    default=None,
    help="Treatment status",
)
@click.pass_context
def history_add(
    ctx: click.Context,
    disease: str | None,
    diagnosed_date: str | None,
    status: str | None,
) -> None:
    """Append one entry to the connected identity's medical history."""
    from .commands.records_cmd import run_history_add

    sys.exit(
        run_history_add(
            _orchestrator(ctx),
            disease=disease,
            diagnosed_date=diagnosed_date,
            status=status,
        )
    )


@cli.command()
@click.option("--identity", "identity_value", default=None, help="Identity to resolve (defaults to the connected one)")
@click.pass_context
def pointer(ctx: click.Context, identity_value: str | None) -> None:
    """Show the ledger's current record address."""
    from .commands.records_cmd import run_pointer

    sys.exit(run_pointer(_orchestrator(ctx), identity=_identity_option(identity_value)))


@cli.command()
@click.option("--last", "last_n", type=click.IntRange(min=1), default=None, help="Only show the last N entries")
@click.pass_context
def audit(ctx: click.Context, last_n: int | None) -> None:
    """Show the audit log of record writes."""
    from .commands.records_cmd import run_audit

    sys.exit(run_audit(ctx.obj["config"], last_n=last_n))


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
