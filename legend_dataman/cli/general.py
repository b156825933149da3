import platform

import typer
from rich import print

from legend_dataman import __version__

app = typer.Typer()


@app.command("info")
def info():
    """Show information about the system and Python environment."""
    un = platform.uname()
    print(f"[b]System:[/b] {un.system} {un.release} {un.version}")
    py_impl = platform.python_implementation()
    print(f"[b]Python:[/b] {platform.python_version()} ({py_impl})")
    print("[b]Env:[/b]")
    print("legend-dataman", __version__)
