"""legend-dataman CLI for keys, data configuration and validity rules."""
import logging

import typer

from . import config, general, keys, validity

app = typer.Typer()
app.add_typer(general.app, name="self")
app.add_typer(keys.app, name="key")
app.add_typer(config.app, name="config")
app.add_typer(validity.app, name="validity")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress.")):
    """Data management for LEGEND-style experiments."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
