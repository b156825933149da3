import sys
from functools import lru_cache
from typing import Any, Dict, Iterable, List, TypeVar

T = TypeVar("T")

cache = lru_cache(maxsize=None)


def eprint(*args, **kwargs):
    """Print to error stream."""
    print(*args, file=sys.stderr, **kwargs)


def is_public_name(n: str):
    """Return whether a name is public (does not start with _)."""
    return n[0] != "_"


def unique(it: Iterable[T]) -> List[T]:
    """Return list of elements without duplicates, in order of first appearance."""
    return list(dict.fromkeys(it))


def deep_merge(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    """Return a new dict with `update` recursively merged into `base`.

    Nested dicts are merged, any other value in `update` overrides.
    """
    ret = dict(base)
    for k, v in update.items():
        if isinstance(v, dict) and isinstance(ret.get(k), dict):
            ret[k] = deep_merge(ret[k], v)
        else:
            ret[k] = v
    return ret
