import typer
from rich import print
from rich.markup import escape

from ..errors import MalformedKeyError
from ..filekey import FileKey

app = typer.Typer()


@app.command("parse")
def parse(key: str = typer.Argument(..., help="File key or file name.")):
    """Show the components of a file key."""
    try:
        fk = FileKey.parse(key)
    except MalformedKeyError as e:
        print(f"[b][red]Error:[/red][/b] {escape(str(e))}")
        raise typer.Exit(code=1)
    print(f"[b]Setup:[/b] {fk.setup}")
    print(f"[b]Period:[/b] {fk.period}")
    print(f"[b]Run:[/b] {fk.run}")
    print(f"[b]Category:[/b] {fk.category}")
    print(f"[b]Time:[/b] {fk.time} ({fk.time.datetime.isoformat()})")
