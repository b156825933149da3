"""Read and write property trees stored as JSON or YAML files."""
import json
from pathlib import Path
from typing import Any, Dict, Iterable, Union

import yaml

from ..util import deep_merge

PROPS_SUFFIXES = (".json", ".yaml", ".yml")
"""File suffixes recognized as property files."""

PathLike = Union[str, Path]


def is_props_file(path: Path) -> bool:
    return path.suffix in PROPS_SUFFIXES


def load_file(path: PathLike) -> Any:
    """Parse a single JSON, JSON lines or YAML file."""
    path = Path(path)
    with open(path, "r") as f:
        if path.suffix == ".json":
            return json.load(f)
        if path.suffix == ".jsonl":
            return [json.loads(line) for line in f if line.strip()]
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(f)
    raise ValueError(f"{path}: unsupported property file format")


def read_props(paths: Union[PathLike, Iterable[PathLike]]) -> Dict[str, Any]:
    """Read one or more property files, later files are merged into earlier ones.

    Empty files yield an empty tree.
    """
    if isinstance(paths, (str, Path)):
        paths = [paths]
    ret: Dict[str, Any] = {}
    for path in paths:
        tree = load_file(path)
        if tree is None:
            continue
        if not isinstance(tree, dict):
            raise ValueError(f"{path}: expected a mapping at the top level")
        ret = deep_merge(ret, tree)
    return ret


def dump_yaml(obj: Any) -> str:
    return yaml.safe_dump(
        obj, sort_keys=False, default_flow_style=False, allow_unicode=True
    )


def write_props(path: PathLike, tree: Any):
    """Write a property tree to a JSON or YAML file (chosen by suffix)."""
    path = Path(path)
    if path.suffix == ".json":
        path.write_text(json.dumps(tree, indent=4) + "\n")
    elif path.suffix in (".yaml", ".yml"):
        path.write_text(dump_yaml(tree))
    else:
        raise ValueError(f"{path}: unsupported property file format")
