"""Property trees and the directory-backed property database."""
from .db import Leaf, Props, PropsDB, SubNode
from .lprops import (
    from_lprops,
    get_uncertainties,
    get_values,
    read_lprops,
    to_lprops,
    write_lprops,
)
from .reader import read_props, write_props

__all__ = [
    "Leaf",
    "Props",
    "PropsDB",
    "SubNode",
    "from_lprops",
    "get_uncertainties",
    "get_values",
    "read_lprops",
    "to_lprops",
    "write_lprops",
    "read_props",
    "write_props",
]
