"""Property trees with physical units and uncertainties.

Leaf objects of the form `{val, unit, err}` (any combination with `val` and
at least one of `unit`/`err`) are turned into pint quantities and
uncertainties values, and back.
"""
import math
from pathlib import Path
from typing import Any, Union

from pint import Measurement, Quantity
from uncertainties import UFloat, ufloat

from .reader import read_props, write_props

_LEAF_KEYS = {"val", "unit", "err"}


def _is_leaf(d: dict) -> bool:
    keys = set(d.keys())
    return "val" in keys and keys <= _LEAF_KEYS and len(keys) > 1


def _elementwise(f, val, *args):
    """Apply `f` to a scalar, or pairwise over lists (scalar arguments broadcast)."""
    if isinstance(val, list):
        return [
            _elementwise(f, v, *(a[i] if isinstance(a, list) else a for a in args))
            for i, v in enumerate(val)
        ]
    return f(val, *args)


def _to_leaf(d: dict) -> Any:
    val, unit, err = d["val"], d.get("unit"), d.get("err")
    if unit is not None and err is not None:
        def measurement(v, u, e):
            return Quantity(v, u).plus_minus(e)

        return _elementwise(measurement, val, unit, err)
    if unit is not None:
        return _elementwise(Quantity, val, unit)
    return _elementwise(ufloat, val, err)


def to_lprops(tree: Any) -> Any:
    """Convert `{val, unit, err}` leaves of a property tree to quantities."""
    if isinstance(tree, dict):
        if _is_leaf(tree):
            return _to_leaf(tree)
        if set(tree.keys()) == {"unit"}:
            return Quantity(math.nan, tree["unit"])
        return {k: to_lprops(v) for k, v in tree.items()}
    if isinstance(tree, list):
        return [to_lprops(x) for x in tree]
    return tree


def _unit_str(q: Quantity) -> str:
    return f"{q.units:~C}"


def from_lprops(tree: Any) -> Any:
    """Convert quantities and uncertainty values back to `{val, unit, err}` leaves."""
    if isinstance(tree, Measurement):
        return {
            "val": tree.value.magnitude,
            "err": tree.error.magnitude,
            "unit": _unit_str(tree),
        }
    if isinstance(tree, Quantity):
        mag = tree.magnitude
        if isinstance(mag, float) and math.isnan(mag):
            return {"unit": _unit_str(tree)}
        return {"val": mag, "unit": _unit_str(tree)}
    if isinstance(tree, UFloat):
        return {"val": tree.nominal_value, "err": tree.std_dev}
    if isinstance(tree, dict):
        return {k: from_lprops(v) for k, v in tree.items()}
    if isinstance(tree, list):
        return [from_lprops(x) for x in tree]
    return tree


def get_values(tree: Any) -> Any:
    """Strip uncertainties, keeping units."""
    if isinstance(tree, Measurement):
        return tree.value
    if isinstance(tree, UFloat):
        return tree.nominal_value
    if isinstance(tree, dict):
        return {k: get_values(v) for k, v in tree.items()}
    if isinstance(tree, list):
        return [get_values(x) for x in tree]
    return tree


def get_uncertainties(tree: Any) -> Any:
    """Return uncertainties in place of values (with units, where present)."""
    if isinstance(tree, Measurement):
        return tree.error
    if isinstance(tree, UFloat):
        return tree.std_dev
    if isinstance(tree, dict):
        return {k: get_uncertainties(v) for k, v in tree.items()}
    if isinstance(tree, list):
        return [get_uncertainties(x) for x in tree]
    return tree


def read_lprops(paths: Union[str, Path, list]) -> Any:
    return to_lprops(read_props(paths))


def write_lprops(path: Union[str, Path], tree: Any):
    write_props(path, from_lprops(tree))
