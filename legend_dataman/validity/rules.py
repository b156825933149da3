"""Validity rules and their on-disk representation.

A validity rule file is a YAML list (or, in the legacy format, JSON lines)
of records like:

```yaml
- valid_from: 20230311T235840Z
  apply:
  - B00000A/calgroup001a.yaml
  category: all
  mode: reset
```
"""
from __future__ import annotations

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Tuple, Union

import yaml
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)
from typing_extensions import Final

from ..errors import ValidityRuleError
from ..filekey import ALL_CATEGORIES, DataCategory, Timestamp

logger = logging.getLogger(__name__)

VALIDITY_FILENAME: Final[str] = "validity.yaml"
"""Name of the rule file written for a governed directory."""

VALIDITY_FILENAMES: Final[Tuple[str, ...]] = (
    "validity.yaml",
    "validity.yml",
    "validity.jsonl",
)
"""Recognized rule file names (the JSON lines variant is the legacy format)."""


class ValidityMode(str, Enum):
    """How the fragments of a rule change the active set."""

    reset = "reset"
    append = "append"
    remove = "remove"
    replace = "replace"


class ValidityRule(BaseModel):
    """Fragments to apply, starting at a point in time."""

    model_config = ConfigDict(frozen=True)

    valid_from: Timestamp
    """Time from which on the rule applies."""

    apply: Tuple[str, ...]
    """Names of the fragment files the rule refers to."""

    category: DataCategory = Field(
        ALL_CATEGORIES, validation_alias=AliasChoices("category", "select")
    )
    """Data category the rule applies to, `all` for every category."""

    mode: ValidityMode = ValidityMode.reset
    """How the fragments change the active set."""

    @field_validator("apply", mode="before")
    @classmethod
    def _single_fragment(cls, v):
        return [v] if isinstance(v, str) else v

    def to_props(self) -> Dict[str, Any]:
        """Return record with fixed key order, as written to rule files."""
        return {
            "valid_from": str(self.valid_from),
            "apply": list(self.apply),
            "category": str(self.category),
            "mode": self.mode.value,
        }


def parse_rules(
    records: Any, source: Union[str, Path] = "<input>"
) -> List[ValidityRule]:
    """Validate a list of rule records and sort them by time (stable)."""
    if records is None:
        return []
    if not isinstance(records, list):
        raise ValidityRuleError(f"{source}: expected a list of validity rules")
    ret = []
    for i, rec in enumerate(records):
        try:
            ret.append(ValidityRule.model_validate(rec))
        except ValidationError as e:
            raise ValidityRuleError(f"{source}: invalid rule #{i+1}: {e}") from e
    return sorted(ret, key=lambda r: r.valid_from)


def rule_files(dir_path: Path) -> List[Path]:
    """Return the rule files present in a directory."""
    return [dir_path / n for n in VALIDITY_FILENAMES if (dir_path / n).is_file()]


def _read_rule_records(path: Path) -> Any:
    with open(path, "r") as f:
        if path.suffix == ".jsonl":
            try:
                return [json.loads(line) for line in f if line.strip()]
            except json.JSONDecodeError as e:
                raise ValidityRuleError(f"{path}: line {e.lineno}: {e.msg}") from e
        try:
            return yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValidityRuleError(f"{path}: {e}") from e


def read_rules(paths: Iterable[Path]) -> List[ValidityRule]:
    """Read and combine the rules of one or more rule files."""
    ret: List[ValidityRule] = []
    for path in paths:
        ret += parse_rules(_read_rule_records(Path(path)), path)
    return sorted(ret, key=lambda r: r.valid_from)


def dump_rules(rules: Iterable[ValidityRule]) -> str:
    """Serialize rules in YAML rule file format, one block per rule."""
    return "\n".join(
        yaml.safe_dump([r.to_props()], sort_keys=False, default_flow_style=False)
        for r in rules
    )


def save_rules(path: Union[str, Path], rules: Iterable[ValidityRule]):
    path = Path(path)
    rules = list(rules)
    if path.suffix == ".jsonl":
        path.write_text("".join(json.dumps(r.to_props()) + "\n" for r in rules))
    else:
        path.write_text(dump_rules(rules))
    logger.info("Wrote %d validity rules to %s", len(rules), path)


def add_rule(path: Union[str, Path], rule: ValidityRule):
    """Add a single rule to a rule file.

    Rules in the file with the same time and category are replaced.
    """
    path = Path(path)
    rules = read_rules([path]) if path.is_file() else []
    rules = [
        r
        for r in rules
        if (r.valid_from, r.category) != (rule.valid_from, rule.category)
    ]
    save_rules(path, sorted(rules + [rule], key=lambda r: r.valid_from))
