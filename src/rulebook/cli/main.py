"""
Rulebook CLI Main Entry Point

Inspect rule files and confront them with data files.
"""

import sys
from pathlib import Path
from typing import Optional, Tuple

import click
import pandas as pd
from rich.console import Console
from rich.table import Table

from rulebook.exceptions import RulebookError
from rulebook.loader import read_rules
from rulebook.logging import LoggingSettings, setup_logging

console = Console()


def _read_data(path: Path) -> pd.DataFrame:
    """Read a CSV or parquet file."""
    suffix = path.suffix.lower()
    if suffix in (".parquet", ".pq"):
        return pd.read_parquet(path)
    if suffix in (".csv", ".txt"):
        return pd.read_csv(path)
    raise click.BadParameter(f"unsupported data file type '{suffix}' (use .csv or .parquet)")


def _parse_refs(refs: Tuple[str, ...]) -> dict:
    reference = {}
    for item in refs:
        name, sep, location = item.partition("=")
        if not sep or not name or not location:
            raise click.BadParameter(f"expected NAME=PATH, got '{item}'", param_hint="--ref")
        reference[name] = _read_data(Path(location))
    return reference


def _fail(error: RulebookError) -> None:
    console.print(f"[red]✗ {error}[/red]")
    sys.exit(1)


@click.group()
@click.version_option(package_name="rulebook", prog_name="rulebook")
@click.option("--log-level", default=None, help="Log level (default: RULEBOOK_LOG_LEVEL or WARNING)")
@click.option("--log-format", type=click.Choice(["text", "json"]), default=None, help="Log output format")
def cli(log_level: Optional[str], log_format: Optional[str]):
    """
    Rulebook - data validation rules for tabular data

    Declare rules in YAML files, inspect them and confront them with data.
    """
    if log_level or log_format:
        from rulebook.config import get_settings

        env = get_settings()
        setup_logging(
            LoggingSettings(
                level=log_level or env.log_level,
                log_format=log_format or env.log_format,
                log_file=env.log_file,
            ),
            force=True,
        )
    else:
        setup_logging()


@cli.command()
@click.argument("rules_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--ignore-unknown-options", is_flag=True, help="Drop option keys the engine does not know")
def check(rules_file: Path, ignore_unknown_options: bool):
    """
    Parse a rule file and list its rules and blocks.

    \b
    Examples:
      rulebook check rules.yaml
    """
    try:
        rules = read_rules(rules_file, ignore_unknown=ignore_unknown_options)
    except RulebookError as e:
        _fail(e)
        return

    table = Table(title=f"Rules in {rules_file}")
    table.add_column("Name", style="cyan")
    table.add_column("Kind")
    table.add_column("Variables")
    table.add_column("Expression", style="dim")
    for rule in rules:
        table.add_row(rule.name, str(rule.kind), ", ".join(rule.variables), str(rule.expression))
    console.print(table)

    blocks = Table(title="Blocks")
    blocks.add_column("Block", justify="right")
    blocks.add_column("Rules")
    blocks.add_column("Variables")
    for block in rules.blocks():
        blocks.add_row(str(block.index), ", ".join(block.rules), ", ".join(block.variables))
    console.print(blocks)

    console.print(f"\n[green]✓[/green] {len(rules)} rules in {len(rules.blocks())} blocks")


@cli.command()
@click.argument("rules_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("data_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--ref", "refs", multiple=True, metavar="NAME=PATH", help="Reference dataset (repeatable)")
@click.option(
    "--raise",
    "raise_policy",
    type=click.Choice(["none", "errors", "all"]),
    default=None,
    help="Failure policy (overrides the rule file)",
)
@click.option("--workers", type=int, default=None, help="Threads for independent blocks")
@click.option("--timeout", type=float, default=None, help="Per-rule deadline in seconds")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the summary to this CSV file",
)
@click.option("--fail-on-violation", is_flag=True, help="Exit with status 1 if any rule fails or errors")
@click.option("--ignore-unknown-options", is_flag=True, help="Drop option keys the engine does not know")
def confront(
    rules_file: Path,
    data_file: Path,
    refs: Tuple[str, ...],
    raise_policy: Optional[str],
    workers: Optional[int],
    timeout: Optional[float],
    output: Optional[Path],
    fail_on_violation: bool,
    ignore_unknown_options: bool,
):
    """
    Confront a data file with the rules of a rule file.

    \b
    Examples:
      rulebook confront rules.yaml survey.csv
      rulebook confront rules.yaml survey.csv --ref codes=codes.csv -o summary.csv
      rulebook confront rules.yaml survey.parquet --raise errors --fail-on-violation
    """
    runtime = {"raise": raise_policy} if raise_policy else None
    try:
        rules = read_rules(rules_file, ignore_unknown=ignore_unknown_options)
        data = _read_data(data_file)
        reference = _parse_refs(refs)
        result = rules.confront(data, reference, options=runtime, workers=workers, timeout=timeout)
    except RulebookError as e:
        _fail(e)
        return

    summary = result.summary()
    table = Table(title=f"Confronting {data_file.name} ({result.nrows} records)")
    table.add_column("Name", style="cyan")
    for column in ("Items", "Passes", "Fails", "NA"):
        table.add_column(column, justify="right")
    table.add_column("Error")
    table.add_column("Warning")
    table.add_column("Expression", style="dim")
    for row in summary.itertuples(index=False):
        fails = f"[red]{row.fails}[/red]" if row.fails else str(row.fails)
        table.add_row(
            row.name,
            str(row.items),
            str(row.passes),
            fails,
            str(row.nNA),
            "[red]yes[/red]" if row.error else "",
            "[yellow]yes[/yellow]" if row.warning else "",
            row.expression,
        )
    console.print(table)

    for name, messages in result.errors().items():
        for message in messages:
            console.print(f"[red]✗ {name}:[/red] {message}")
    for name, messages in result.warnings().items():
        for message in messages:
            console.print(f"[yellow]⚠ {name}:[/yellow] {message}")

    if output:
        summary.to_csv(output, index=False)
        console.print(f"[green]✓[/green] Summary written to {output}")

    violated = bool(summary["fails"].any() or summary["error"].any())
    if violated:
        console.print("\n[bold yellow]⚠ Some rules failed (see above)[/bold yellow]")
    else:
        console.print("\n[bold green]✓ All rules passed[/bold green]")
    if fail_on_violation and violated:
        sys.exit(1)


if __name__ == "__main__":
    cli()
