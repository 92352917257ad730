"""CLI entrypoint for stackgraph."""

import sys
from pathlib import Path

import click

from . import __version__
from .config import find_config, load_config
from .observability import setup_logging

STACK_FILES = click.argument(
    "files",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)


@click.group()
@click.version_option(__version__, prog_name="stackgraph")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to stackgraph.toml (defaults to auto-detected ./stackgraph.toml)",
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default=None,
    help="Override the configured log level",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, log_level: str | None) -> None:
    """stackgraph - resource graph builder and policy resolver.

    Loads declarative stack files, validates references and dependencies,
    and emits a staged provisioning plan with its network policy.
    """
    ctx.ensure_object(dict)
    if config_path is None:
        config_path = find_config(Path.cwd())

    try:
        config = load_config(config_path)
    except ValueError as exc:
        raise click.ClickException(f"Invalid configuration: {exc}") from exc

    setup_logging(log_level or config.log.level, config.log.format)
    ctx.obj["config"] = config


@cli.command()
@STACK_FILES
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["json", "md", "rich"]),
    default="json",
    help="Output format",
)
@click.option(
    "--out",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Output file path (default: stdout)",
)
@click.pass_context
def plan(ctx: click.Context, files: tuple[Path, ...], output_format: str, out: Path | None) -> None:
    """Build the staged provisioning plan.

    Files load in order as composition layers.

    Examples:

        stackgraph plan network.toml services.toml

        stackgraph plan stack.yaml --format md --out PLAN.md
    """
    from .commands.plan_cmd import run_plan

    exit_code = run_plan(files, fmt=output_format, out=out, config=ctx.obj["config"])
    sys.exit(exit_code)


@cli.command()
@click.argument(
    "files",
    nargs=-1,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--fail-on",
    type=click.Choice(["error", "warning"]),
    default=None,
    help="Exit with error if this level or higher found (default from config)",
)
@click.option(
    "--json",
    "output_json",
    is_flag=True,
    help="Output findings as JSON",
)
@click.option(
    "--explain",
    "explain_rule",
    type=str,
    default=None,
    metavar="RULE_ID",
    help="Explain a specific rule and exit (e.g., --explain unused-secret-key)",
)
@click.pass_context
def check(
    ctx: click.Context,
    files: tuple[Path, ...],
    fail_on: str | None,
    output_json: bool,
    explain_rule: str | None,
) -> None:
    """Validate stack files and report findings.

    A build failure (duplicate id, unknown resource, reference cycle,
    structural cycle, bad port) is always fatal. Findings such as unused
    secret keys are reported by level.
    """
    from .commands.check_cmd import run_check, run_explain

    if explain_rule:
        sys.exit(run_explain(explain_rule))

    if not files:
        raise click.UsageError("Missing argument 'FILES...'.")

    config = ctx.obj["config"]
    exit_code = run_check(
        files,
        fail_on=fail_on or config.checks.fail_on,
        output_json=output_json,
        config=config,
    )
    sys.exit(exit_code)


@cli.command()
@STACK_FILES
@click.option(
    "--edges",
    type=click.Choice(["structural", "network_allow", "attribute"]),
    default="structural",
    help="Edge kind to export",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["dot", "json"]),
    default="dot",
    help="Output format",
)
@click.option(
    "--out",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Output file path (default: stdout)",
)
@click.pass_context
def graph(
    ctx: click.Context,
    files: tuple[Path, ...],
    edges: str,
    output_format: str,
    out: Path | None,
) -> None:
    """Export one edge kind of the relationship graph."""
    from .commands.graph_cmd import run_graph

    exit_code = run_graph(files, edges=edges, fmt=output_format, out=out, config=ctx.obj["config"])
    sys.exit(exit_code)


@cli.command()
@STACK_FILES
@click.option(
    "--destination",
    "-d",
    type=str,
    default=None,
    help="Only show rules for this destination resource",
)
@click.option(
    "--json",
    "output_json",
    is_flag=True,
    help="Output policy as JSON",
)
@click.pass_context
def policy(ctx: click.Context, files: tuple[Path, ...], destination: str | None, output_json: bool) -> None:
    """Print the compiled network policy (deny by default)."""
    from .commands.policy_cmd import run_policy

    exit_code = run_policy(files, destination=destination, output_json=output_json, config=ctx.obj["config"])
    sys.exit(exit_code)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
