"""Resolve the set of active fragments at a point in time."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Hashable, Iterable, List, Optional, Set, Tuple

from ..errors import InvalidSelectorError, MalformedKeyError
from ..filekey import ALL_CATEGORIES, DataCategory, FileKey, Timestamp
from ..util import unique
from ..util.cache import Cache
from .rules import ValidityMode, ValidityRule, read_rules, rule_files

timeline_cache: Cache[ValidityTimeline] = Cache("validity timelines")
"""Loaded rule files, keyed by directory and rule file signature."""

resolve_cache: Cache[Tuple[str, ...]] = Cache("validity selections")
"""Resolved fragment lists, keyed by timeline and selection."""


def clear_caches():
    """Drop all loaded validity rules and resolved selections."""
    timeline_cache.clear()
    resolve_cache.clear()


@dataclass(frozen=True)
class ValiditySelection:
    """Point in time and data category to select validity-dependent content for."""

    timestamp: Timestamp
    category: DataCategory = ALL_CATEGORIES

    def __post_init__(self):
        object.__setattr__(self, "timestamp", Timestamp.parse(self.timestamp))
        object.__setattr__(self, "category", DataCategory.parse(self.category))

    def __str__(self):
        return f"{self.timestamp} ({self.category})"

    @classmethod
    def parse(cls, value: Any) -> ValiditySelection:
        """Create a selection from a file key or a (timestamp, category) pair."""
        if isinstance(value, cls):
            return value
        try:
            if isinstance(value, FileKey) or isinstance(value, str):
                fk = FileKey.parse(value)
                return cls(fk.time, fk.category)
            if isinstance(value, tuple) and len(value) == 2:
                return cls(*value)
        except MalformedKeyError as e:
            msg = f"Invalid validity selection {value!r}: {e}"
            raise InvalidSelectorError(msg) from e
        raise InvalidSelectorError(f"Unsupported validity selection: {value!r}")


def replay(
    rules: Iterable[ValidityRule], timestamp: Timestamp, category: DataCategory
) -> List[str]:
    """Apply all rules valid at `timestamp` for `category`, in order.

    Returns the active fragment names in order of activation.
    """
    active: List[str] = []
    for rule in rules:
        if rule.valid_from > timestamp:
            break
        if not rule.category.matches(category):
            continue

        if rule.mode == ValidityMode.reset:
            active = unique(rule.apply)
        elif rule.mode == ValidityMode.append:
            active = unique(active + list(rule.apply))
        elif rule.mode == ValidityMode.remove:
            active = [x for x in active if x not in rule.apply]
        elif rule.mode == ValidityMode.replace:
            # listed active fragments are superseded, the others come in
            superseded = set(rule.apply) & set(active)
            incoming = [x for x in rule.apply if x not in superseded]
            active = unique([x for x in active if x not in superseded] + incoming)
    return active


class ValidityTimeline:
    """Time-ordered validity rules of one directory."""

    def __init__(self, rules: Iterable[ValidityRule], key: Optional[Hashable] = None):
        self._rules: Tuple[ValidityRule, ...] = tuple(
            sorted(rules, key=lambda r: r.valid_from)
        )
        self._key = key

    def __repr__(self):
        return f"ValidityTimeline({len(self)} rules)"

    def __len__(self):
        return len(self._rules)

    def __bool__(self):
        return bool(self._rules)

    def __eq__(self, other):
        if not isinstance(other, ValidityTimeline):
            return NotImplemented
        return self._rules == other._rules

    @property
    def rules(self) -> Tuple[ValidityRule, ...]:
        return self._rules

    @property
    def timestamps(self) -> List[Timestamp]:
        """Distinct rule times, in ascending order."""
        return unique(r.valid_from for r in self._rules)

    def fragments(self) -> Set[str]:
        """Return all fragment names referenced by any rule."""
        return {x for r in self._rules for x in r.apply}

    @classmethod
    def load(cls, dir_path: Path) -> Optional[ValidityTimeline]:
        """Return the timeline of a directory, None if it has no rule files.

        Loaded timelines are cached until a rule file changes.
        """
        files = rule_files(dir_path)
        if not files:
            return None
        stats = [f.stat() for f in files]
        key = (
            str(dir_path.resolve()),
            tuple((f.name, s.st_mtime_ns, s.st_size) for f, s in zip(files, stats)),
        )
        return timeline_cache.get_or_compute(key, lambda: cls(read_rules(files), key))

    def resolve(self, timestamp: Any, category: Any = ALL_CATEGORIES) -> List[str]:
        """Return the fragments active at `timestamp` for `category`.

        The result is empty if `timestamp` precedes all rules.
        """
        sel = ValiditySelection(timestamp, category)
        if self._key is None:
            return replay(self._rules, sel.timestamp, sel.category)
        ret = resolve_cache.get_or_compute(
            (self._key, sel),
            lambda: tuple(replay(self._rules, sel.timestamp, sel.category)),
        )
        return list(ret)

    def resolve_one(self, timestamp: Any, category: Any = ALL_CATEGORIES) -> str:
        """Return the single fragment active at `timestamp` for `category`."""
        ret = self.resolve(timestamp, category)
        if len(ret) != 1:
            sel = ValiditySelection(timestamp, category)
            msg = f"Expected one active fragment for {sel}, found: {ret}"
            raise InvalidSelectorError(msg)
        return ret[0]

    def select(self, selection: Any) -> List[str]:
        sel = ValiditySelection.parse(selection)
        return self.resolve(sel.timestamp, sel.category)
