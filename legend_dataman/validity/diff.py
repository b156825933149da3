"""Generate validity rules from a table of fragment assignments.

Each input row states that, from the time of a file key on, a target object
(e.g. a detector) is described by a fragment file. The generated rules
reproduce the assignments when replayed by `ValidityTimeline`.

Two strategies are offered:

* `full`: every timestamp lists all active targets, targets absent at a
  timestamp are removed.
* `diff`: rows only state changes, absent targets keep their fragment.

At each later timestamp, changes are written as a `remove` rule followed by
an `append` rule, or as a single `replace` rule if the same targets lost and
gained fragments.
"""
from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from ..errors import DiffInputError
from ..filekey import (
    ALL_CATEGORIES,
    DataCategory,
    DataPeriod,
    DataRun,
    FileKey,
    Timestamp,
)
from ..util import unique
from .rules import (
    VALIDITY_FILENAME,
    ValidityMode,
    ValidityRule,
    read_rules,
    rule_files,
    save_rules,
)
from .timeline import replay

logger = logging.getLogger(__name__)

TargetFragments = Dict[str, FrozenSet[str]]
"""Active fragments per target object."""


class Strategy(str, Enum):
    """Interpretation of the rows at one timestamp."""

    full = "full"
    diff = "diff"


class ValidityRow(BaseModel):
    """Assignment of a fragment to a target object, starting at a file key."""

    model_config = ConfigDict(frozen=True)

    filekey: FileKey
    """File key whose time the assignment starts at."""

    target: str = Field(min_length=1)
    """Object described by the fragment, e.g. a detector name."""

    fragment: str = Field(
        min_length=1, validation_alias=AliasChoices("fragment", "validity")
    )
    """Name of the fragment file, relative to the governed directory."""

    period: Optional[DataPeriod] = None
    run: Optional[DataRun] = None

    @property
    def ordinal(self) -> Tuple[int, int, int]:
        """Chronological position: period, run, then time."""
        period = self.period or self.filekey.period
        run = self.run or self.filekey.run
        return (period.no, run.no, self.filekey.time.unixtime)

    @classmethod
    def parse(cls, value: Any) -> ValidityRow:
        if isinstance(value, cls):
            return value
        try:
            return cls.model_validate(value)
        except ValidationError as e:
            raise DiffInputError(f"Invalid validity row {value!r}: {e}") from e


def _groups(rows: Iterable[ValidityRow]):
    """Group rows by time, in chronological order."""
    groups: Dict[Timestamp, Dict[str, List[str]]] = {}
    last: Optional[ValidityRow] = None
    for row in sorted(rows, key=lambda r: r.ordinal):
        if last is not None and row.filekey.time < last.filekey.time:
            raise DiffInputError(
                f"Row {row.filekey} is ordered after {last.filekey} by period and "
                "run, but is earlier in time"
            )
        last = row
        tgt = groups.setdefault(row.filekey.time, {}).setdefault(row.target, [])
        tgt.append(row.fragment)
    return list(groups.items())


def _check_unique(time: Timestamp, mapping: TargetFragments):
    owner: Dict[str, str] = {}
    for target, frags in mapping.items():
        for frag in frags:
            if owner.setdefault(frag, target) != target:
                raise DiffInputError(
                    f"{time}: fragment {frag} assigned to {owner[frag]} and {target}"
                )


def snapshots(
    rows: Iterable[Any], strategy: Union[str, Strategy] = Strategy.diff
) -> List[Tuple[Timestamp, TargetFragments]]:
    """Return the fragments active per target at each input timestamp."""
    strategy = Strategy(strategy)
    ret: List[Tuple[Timestamp, TargetFragments]] = []
    state: TargetFragments = {}
    for time, group in _groups(map(ValidityRow.parse, rows)):
        curr = {k: frozenset(v) for k, v in group.items()}
        state = curr if strategy == Strategy.full else {**state, **curr}
        _check_unique(time, state)
        ret.append((time, state))
    return ret


class TimestampChanges(BaseModel):
    """Fragments that stopped and started to be active at one time."""

    time: Timestamp
    removed: Dict[str, FrozenSet[str]] = {}
    added: Dict[str, FrozenSet[str]] = {}

    @classmethod
    def compare(
        cls, time: Timestamp, prev: TargetFragments, curr: TargetFragments
    ) -> TimestampChanges:
        removed, added = {}, {}
        for target in sorted(set(prev) | set(curr)):
            old, new = prev.get(target, frozenset()), curr.get(target, frozenset())
            if old - new:
                removed[target] = old - new
            if new - old:
                added[target] = new - old
        return cls(time=time, removed=removed, added=added)

    @property
    def is_empty(self) -> bool:
        return not self.removed and not self.added

    def _fragments(self, d: Dict[str, FrozenSet[str]]) -> List[str]:
        return sorted(x for v in d.values() for x in v)

    def rules(
        self, category: DataCategory, collapse: bool = True
    ) -> List[ValidityRule]:
        old, new = self._fragments(self.removed), self._fragments(self.added)

        def rule(mode: ValidityMode, apply: List[str]) -> ValidityRule:
            return ValidityRule(
                valid_from=self.time, apply=apply, category=category, mode=mode
            )

        # replace toggles its fragments, so old and new must not overlap
        same_targets = set(self.removed) == set(self.added)
        if collapse and old and same_targets and not set(old) & set(new):
            return [rule(ValidityMode.replace, sorted(old + new))]

        ret = []
        if old:
            ret.append(rule(ValidityMode.remove, old))
        if new:
            ret.append(rule(ValidityMode.append, new))
        return ret


def generate_rules(
    rows: Iterable[Any],
    strategy: Union[str, Strategy] = Strategy.diff,
    *,
    category: Any = ALL_CATEGORIES,
    collapse: bool = True,
    initial_mode: Union[str, ValidityMode] = ValidityMode.reset,
) -> List[ValidityRule]:
    """Compute the validity rules reproducing the given fragment assignments.

    Args:
        rows: `ValidityRow` objects or mappings with the same fields
        strategy: whether rows of a timestamp are complete (`full`) or changes (`diff`)
        category: category the rules apply to
        collapse: merge removal and addition for the same targets into `replace`
        initial_mode: mode of the first rule (`append` for supplementary batches)
    """
    category = DataCategory.parse(category)
    initial_mode = ValidityMode(initial_mode)

    ret: List[ValidityRule] = []
    prev: Optional[TargetFragments] = None
    for time, curr in snapshots(rows, strategy):
        if prev is None:
            apply = sorted(x for v in curr.values() for x in v)
            first = ValidityRule(
                valid_from=time, apply=apply, category=category, mode=initial_mode
            )
            ret.append(first)
        else:
            ret += TimestampChanges.compare(time, prev, curr).rules(category, collapse)
        prev = curr
    return ret


def merge_rules(
    existing: Iterable[ValidityRule], batch: Iterable[ValidityRule]
) -> List[ValidityRule]:
    """Merge rules of a supplementary batch into existing rules.

    Fragments of the batch that are active before an existing `reset` rule
    are appended again right after it, for every category the reset hides
    them from.
    """
    existing, batch = list(existing), list(batch)
    if not batch:
        return existing
    start = min(r.valid_from for r in batch)

    ret: List[ValidityRule] = []
    for r in existing:
        ret.append(r)
        if r.mode != ValidityMode.reset or r.valid_from < start:
            continue
        # state of the batch before its own rules at this time apply
        before = Timestamp(r.valid_from.unixtime - 1)
        for cat in unique(b.category for b in batch):
            if not (r.category.matches(cat) or cat.matches(r.category)):
                continue
            # a wildcard batch is hidden only from the categories of the reset
            query = r.category if cat.is_wildcard else cat
            active = replay(batch, before, query)
            if active:
                ret.append(
                    ValidityRule(
                        valid_from=r.valid_from,
                        apply=sorted(active),
                        category=query,
                        mode=ValidityMode.append,
                    )
                )
    return sorted(unique(ret + batch), key=lambda r: r.valid_from)


def _rule_file(path: Path) -> Path:
    if not path.is_dir():
        return path
    files = rule_files(path)
    return files[0] if len(files) == 1 else path / VALIDITY_FILENAME


def write_validity(
    path: Union[str, Path],
    rows: Iterable[Any],
    *,
    skipped: bool = False,
    strategy: Union[str, Strategy] = Strategy.diff,
    category: Any = ALL_CATEGORIES,
    collapse: bool = True,
) -> List[ValidityRule]:
    """Generate rules from rows and write them to a governed directory.

    With `skipped`, the rows are a supplementary batch whose rules are merged
    into the existing rule file instead of replacing it.

    Args:
        path: governed directory or rule file
        rows: fragment assignments, see `ValidityRow`
        skipped: merge into existing rules
        strategy: see `generate_rules`
        category: category the rules apply to
        collapse: see `generate_rules`

    Returns:
        The rules written to the file.
    """
    rows = list(rows)
    rule_file = _rule_file(Path(path))
    merge = skipped and rule_file.is_file()

    mode = ValidityMode.append if merge else ValidityMode.reset
    rules = generate_rules(
        rows, strategy, category=category, collapse=collapse, initial_mode=mode
    )
    if not rules:
        logger.info("No validity rules generated for %s", rule_file)
        return []
    if merge:
        rules = merge_rules(read_rules([rule_file]), rules)

    save_rules(rule_file, rules)
    return rules
