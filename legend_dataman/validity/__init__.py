"""Time-dependent selection of configuration fragments."""
from .diff import Strategy, ValidityRow, generate_rules, merge_rules, write_validity
from .rules import (
    VALIDITY_FILENAME,
    ValidityMode,
    ValidityRule,
    add_rule,
    read_rules,
    save_rules,
)
from .timeline import ValiditySelection, ValidityTimeline, clear_caches, replay

__all__ = [
    "Strategy",
    "ValidityRow",
    "generate_rules",
    "merge_rules",
    "write_validity",
    "VALIDITY_FILENAME",
    "ValidityMode",
    "ValidityRule",
    "add_rule",
    "read_rules",
    "save_rules",
    "ValiditySelection",
    "ValidityTimeline",
    "clear_caches",
    "replay",
]
