from pathlib import Path

import typer
from rich import print
from rich.markup import escape
from rich.table import Table

from ..errors import (
    DiffInputError,
    InvalidSelectorError,
    MalformedKeyError,
    ValidityRuleError,
)
from ..filekey import ALL_CATEGORIES
from ..props.reader import load_file
from ..validity.diff import Strategy, write_validity
from ..validity.timeline import ValidityTimeline

app = typer.Typer()


def _error(e: Exception):
    print(f"[b][red]Error:[/red][/b] {escape(str(e))}")
    raise typer.Exit(code=1)


def _timeline(directory: Path) -> ValidityTimeline:
    try:
        tl = ValidityTimeline.load(directory)
    except ValidityRuleError as e:
        _error(e)
    if tl is None:
        _error(ValueError(f"No validity rules in {directory}"))
    return tl


@app.command("show")
def show(directory: Path = typer.Argument(..., help="Governed directory.")):
    """List the validity rules of a directory."""
    tab = Table("valid_from", "category", "mode", "apply")
    for r in _timeline(directory).rules:
        apply = ", ".join(r.apply)
        tab.add_row(str(r.valid_from), str(r.category), r.mode.value, apply)
    print(tab)


@app.command("resolve")
def resolve(
    directory: Path = typer.Argument(..., help="Governed directory."),
    timestamp: str = typer.Argument(..., help="Timestamp or file key."),
    category: str = typer.Option(str(ALL_CATEGORIES), help="Data category."),
):
    """Show the fragments active at a point in time."""
    tl = _timeline(directory)
    try:
        if "-" in timestamp:
            names = tl.select(timestamp)
        else:
            names = tl.resolve(timestamp, category)
    except (InvalidSelectorError, MalformedKeyError) as e:
        _error(e)
    for name in names:
        typer.echo(name)


@app.command("write")
def write(
    directory: Path = typer.Argument(..., help="Governed directory or rule file."),
    rows_file: Path = typer.Argument(..., help="YAML/JSON list of validity rows."),
    strategy: Strategy = typer.Option(Strategy.diff, help="Row interpretation."),
    category: str = typer.Option(str(ALL_CATEGORIES), help="Rule category."),
    skipped: bool = typer.Option(False, help="Merge into the existing rules."),
    collapse: bool = typer.Option(True, help="Write changes as replace rules."),
):
    """Generate validity rules from fragment assignments."""
    try:
        rules = write_validity(
            directory,
            load_file(rows_file) or [],
            skipped=skipped,
            strategy=strategy,
            category=category,
            collapse=collapse,
        )
    except (DiffInputError, ValidityRuleError) as e:
        _error(e)
    print(f"Wrote {len(rules)} rules.")
