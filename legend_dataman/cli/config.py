from pathlib import Path
from typing import List, Optional

import typer
from rich import print
from rich.markup import escape

from ..dataconfig import LegendDataConfig, load_config
from ..errors import MissingEnvironmentError, PathNotConfiguredError

app = typer.Typer()


def _load(config_files: Optional[List[Path]]) -> LegendDataConfig:
    if config_files:
        # first file takes precedence, as in $LEGEND_DATA_CONFIG
        return load_config(list(reversed(config_files)))
    return LegendDataConfig.from_env()


@app.command("resolve")
def resolve(
    setup: str = typer.Argument(..., help="Experimental setup, e.g. l200."),
    components: List[str] = typer.Argument(..., help="Path components."),
    config_files: Optional[List[Path]] = typer.Option(
        None, "--config", "-c", help="Configuration file (default: from environment)."
    ),
):
    """Resolve a path in the data configuration of a setup."""
    try:
        path = _load(config_files)[setup].resolve(*components)
    except (PathNotConfiguredError, MissingEnvironmentError) as e:
        print(f"[b][red]Error:[/red][/b] {escape(str(e))}")
        raise typer.Exit(code=1)
    typer.echo(str(path))
