"""Directory-backed, validity-aware property database.

A `PropsDB` presents a directory of JSON/YAML files and sub-directories as a
nested dictionary of properties. Directories containing validity rules
(see `legend_dataman.validity`) are resolved for a selected point in time:

```python
db = PropsDB("/path/to/metadata")
db.hardware.detectors.germanium.diodes["V99000A"]
db.hardware(filekey).configuration.channelmaps
db.hardware.configuration.channelmaps("20221226T194007Z", "cal")
```
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from ..errors import (
    InvalidDatabaseRootError,
    InvalidSelectorError,
    PropertyNotFoundError,
)
from ..filekey import DataSelector
from ..util import is_public_name
from ..validity.rules import VALIDITY_FILENAMES
from ..validity.timeline import ValiditySelection, ValidityTimeline
from .lprops import to_lprops
from .reader import PROPS_SUFFIXES, read_props

PropKey = Union[str, DataSelector]


def _dotted(*parts: str) -> str:
    return ".".join(p for p in parts if p)


class Props(dict):
    """Dictionary of properties with attribute access.

    Nested dictionaries are returned as `Props` as well. Missing keys raise
    `PropertyNotFoundError` naming the full dotted path of the lookup.
    """

    def __init__(self, data=(), path: str = ""):
        super().__init__(data)
        self._path = path

    @property
    def path(self) -> str:
        """Dotted path of this tree within its database."""
        return self._path

    def __getitem__(self, key: PropKey):
        if not super().__contains__(key):
            key = str(key)
        if not super().__contains__(key):
            raise PropertyNotFoundError(_dotted(self._path, key))
        val = super().__getitem__(key)
        if isinstance(val, dict) and not isinstance(val, Props):
            return Props(val, _dotted(self._path, key))
        return val

    def __getattr__(self, name: str):
        if not is_public_name(name):
            raise AttributeError(name)
        return self[name]

    def __contains__(self, key):
        return super().__contains__(key) or super().__contains__(str(key))

    def __dir__(self):
        return list(super().__dir__()) + list(self.keys())

    def get_path(self, dotted: str) -> Any:
        """Look up a dotted path, e.g. `"V99000A.characterization.mass"`."""
        ret: Any = self
        for part in dotted.split("."):
            if not isinstance(ret, Props):
                raise PropertyNotFoundError(_dotted(self._path, dotted))
            ret = ret[part]
        return ret

    def to_dict(self) -> Dict[str, Any]:
        """Return a plain nested dict."""
        return {k: v.to_dict() if isinstance(v, Props) else v for k, v in self.items()}


@dataclass(frozen=True)
class SubNode:
    """Lookup result: a sub-directory of a database."""

    value: PropsDB


@dataclass(frozen=True)
class Leaf:
    """Lookup result: a property tree read from file(s)."""

    value: Props


class PropsDB:
    """Property database presenting a directory as nested properties.

    Property names are sub-directories and property files (`.json`, `.yaml`,
    `.yml`, the suffix is dropped). A directory is governed by validity if
    its own or an inherited rule file refers to files inside of it. Content
    of a governed directory can only be accessed with a selection.
    """

    __slots__ = ("_base_path", "_rel_path", "_selection", "_inherited", "_lprops")

    def __init__(
        self,
        base_path: Union[str, Path],
        rel_path: Sequence[str] = (),
        selection: Optional[ValiditySelection] = None,
        *,
        lprops: bool = True,
        _inherited: Optional[ValidityTimeline] = None,
    ):
        base_path = Path(base_path)
        if not base_path.is_dir():
            msg = f"PropsDB base path {base_path} is not a directory"
            raise InvalidDatabaseRootError(msg)
        self._base_path = base_path
        self._rel_path: Tuple[str, ...] = tuple(rel_path)
        self._selection = selection
        self._inherited = _inherited
        self._lprops = lprops

    # ---- introspection ----

    @property
    def base_path(self) -> Path:
        return self._base_path

    @property
    def rel_path(self) -> Tuple[str, ...]:
        return self._rel_path

    @property
    def data_path(self) -> Path:
        """Directory represented by this database node."""
        return self._base_path.joinpath(*self._rel_path)

    @property
    def selection(self) -> Optional[ValiditySelection]:
        return self._selection

    @property
    def validity(self) -> Optional[ValidityTimeline]:
        """Rules of this directory, or the inherited ones if it has none."""
        return ValidityTimeline.load(self.data_path) or self._inherited

    @property
    def is_governed(self) -> bool:
        """Return whether content of this node depends on a validity selection."""
        validity = self.validity
        if not validity:
            return False
        return any((self.data_path / f).is_file() for f in validity.fragments())

    @property
    def needs_selection(self) -> bool:
        return self._selection is None and self.is_governed

    def __repr__(self):
        path = _dotted(*self._rel_path)
        sel = f", selection={self._selection}" if self._selection else ""
        return f"PropsDB({str(self._base_path)!r}{'.' if path else ''}{path}{sel})"

    def __eq__(self, other):
        if not isinstance(other, PropsDB):
            return NotImplemented
        return (self._base_path, self._rel_path, self._selection) == (
            other._base_path,
            other._rel_path,
            other._selection,
        )

    def __hash__(self):
        return hash((self._base_path, self._rel_path, self._selection))

    # ---- property access ----

    def _guard_access(self):
        if self.needs_selection:
            msg = f"Content of {self.data_path} requires a validity selection"
            raise InvalidSelectorError(msg)

    def _entry_names(self) -> Dict[str, Path]:
        ret: Dict[str, Path] = {}
        for p in sorted(self.data_path.iterdir()):
            if p.name.startswith("."):
                continue
            if p.is_dir():
                ret[p.name] = p
            elif p.suffix in PROPS_SUFFIXES and p.name not in VALIDITY_FILENAMES:
                ret.setdefault(p.stem, p)
        return ret

    def keys(self) -> List[str]:
        self._guard_access()
        return list(self._entry_names().keys())

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self):
        return len(self.keys())

    def __bool__(self):
        return True

    def __contains__(self, name: PropKey):
        return str(name) in self.keys()

    def __dir__(self):
        names = self.keys() if not self.needs_selection else []
        return list(super().__dir__()) + names

    def _read(self, paths: List[Path], prop_path: str) -> Props:
        tree = read_props(paths)
        return Props(to_lprops(tree) if self._lprops else tree, prop_path)

    def _resolve(self, selection: ValiditySelection) -> Props:
        validity = self.validity
        if validity is None:
            raise InvalidSelectorError(f"{self.data_path} has no validity rules")
        names = validity.select(selection)
        return self._read([self.data_path / n for n in names], _dotted(*self._rel_path))

    def _child(self, name: str) -> PropsDB:
        return PropsDB(
            self._base_path,
            self._rel_path + (name,),
            self._selection,
            lprops=self._lprops,
            _inherited=self.validity,
        )

    def get(self, name: PropKey) -> Union[SubNode, Leaf]:
        """Look up a property by name.

        Returns a `SubNode` for directories and a `Leaf` for property files
        and for governed directories that are resolved via the selection.
        """
        self._guard_access()
        name = str(name)
        prop_path = _dotted(*self._rel_path, name)
        entry = self._entry_names().get(name)
        if entry is None:
            raise PropertyNotFoundError(prop_path)

        if entry.is_dir():
            child = self._child(name)
            if child._selection is not None and child.is_governed:
                return Leaf(child._resolve(child._selection))
            return SubNode(child)
        return Leaf(self._read([entry], prop_path))

    def __getitem__(self, name: PropKey) -> Union[PropsDB, Props]:
        return self.get(name).value

    def __getattr__(self, name: str) -> Union[PropsDB, Props]:
        if not is_public_name(name):
            raise AttributeError(name)
        return self[name]

    # ---- selection ----

    def select(self, *selector: Any) -> Union[PropsDB, Props]:
        """Select validity-dependent content.

        The selector is a `FileKey` (or file key string), a
        `ValiditySelection` or a timestamp and a category. On a governed
        node, returns the resolved properties, otherwise returns this node
        with the selection attached (it is passed down to sub-nodes).
        """
        if len(selector) == 1:
            sel = ValiditySelection.parse(selector[0])
        elif len(selector) == 2:
            sel = ValiditySelection.parse(tuple(selector))
        else:
            raise InvalidSelectorError(f"Unsupported validity selection: {selector!r}")

        if self.is_governed:
            return self._resolve(sel)
        return PropsDB(
            self._base_path,
            self._rel_path,
            sel,
            lprops=self._lprops,
            _inherited=self._inherited,
        )

    def __call__(self, *selector: Any) -> Union[PropsDB, Props]:
        return self.select(*selector)
