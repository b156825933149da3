"""Tests for generating validity rules from fragment assignments."""
import pytest
import yaml
from hypothesis import given, settings
from hypothesis import strategies as st

from legend_dataman.errors import DiffInputError
from legend_dataman.filekey import ALL_CATEGORIES, DataCategory, Timestamp
from legend_dataman.validity import (
    ValidityMode,
    ValidityTimeline,
    generate_rules,
    read_rules,
    write_validity,
)
from legend_dataman.validity.diff import (
    Strategy,
    TimestampChanges,
    ValidityRow,
    merge_rules,
    snapshots,
)

from .conftest import rule

FK1 = "l200-p03-r000-cal-20230311T235840Z"
FK2 = "l200-p03-r002-cal-20230401T000000Z"
FK3 = "l200-p03-r003-cal-20230415T000000Z"


def row(filekey, target, fragment):
    return {"filekey": filekey, "target": target, "fragment": fragment}


EXAMPLE_ROWS = [
    row(FK1, "B00000A", "B00000A/a.yaml"),
    row(FK1, "C00ANG5", "C00ANG5/a.yaml"),
    row(FK1, "P00662B", "P00662B/a.yaml"),
    row(FK2, "C00ANG5", "C00ANG5/b.yaml"),
    row(FK2, "P00662B", "P00662B/b.yaml"),
    row(FK3, "C00ANG5", "C00ANG5/c.yaml"),
]


def mentioned(rules, time):
    return {
        f.split("/")[0]
        for r in rules
        if r.valid_from == Timestamp.parse(time)
        for f in r.apply
    }


def test_example_diff():
    rules = generate_rules(EXAMPLE_ROWS, "diff")
    first = rules[0]
    assert first.mode == ValidityMode.reset
    assert first.valid_from == Timestamp.parse(FK1)
    assert first.apply == ("B00000A/a.yaml", "C00ANG5/a.yaml", "P00662B/a.yaml")

    assert mentioned(rules, FK2) == {"C00ANG5", "P00662B"}
    assert mentioned(rules, FK3) == {"C00ANG5"}
    assert [r.mode for r in rules] == [ValidityMode.reset] + [ValidityMode.replace] * 2

    tl = ValidityTimeline(rules)
    assert tl.resolve(FK2) == ["B00000A/a.yaml", "C00ANG5/b.yaml", "P00662B/b.yaml"]
    assert sorted(tl.resolve(FK3)) == [
        "B00000A/a.yaml",
        "C00ANG5/c.yaml",
        "P00662B/b.yaml",
    ]


def test_example_no_collapse():
    rules = generate_rules(EXAMPLE_ROWS, "diff", collapse=False)
    modes = [(str(r.valid_from), r.mode) for r in rules]
    assert modes == [
        ("20230311T235840Z", ValidityMode.reset),
        ("20230401T000000Z", ValidityMode.remove),
        ("20230401T000000Z", ValidityMode.append),
        ("20230415T000000Z", ValidityMode.remove),
        ("20230415T000000Z", ValidityMode.append),
    ]
    assert rules[1].apply == ("C00ANG5/a.yaml", "P00662B/a.yaml")


def test_full_strategy_removes_absent_targets():
    rules = generate_rules(EXAMPLE_ROWS, "full")
    tl = ValidityTimeline(rules)
    assert tl.resolve(FK2) == ["C00ANG5/b.yaml", "P00662B/b.yaml"]
    assert tl.resolve(FK3) == ["C00ANG5/c.yaml"]


def test_changes():
    t = Timestamp.parse(FK2)
    prev = {"A": frozenset({"A/1"}), "B": frozenset({"B/1"})}
    curr = {"A": frozenset({"A/2"}), "C": frozenset({"C/1"})}
    ch = TimestampChanges.compare(t, prev, curr)
    assert ch.removed == {"A": {"A/1"}, "B": {"B/1"}}
    assert ch.added == {"A": {"A/2"}, "C": {"C/1"}}
    # targets differ, no replace rule
    assert [r.mode for r in ch.rules(ALL_CATEGORIES)] == [
        ValidityMode.remove,
        ValidityMode.append,
    ]
    assert TimestampChanges.compare(t, prev, prev).is_empty
    assert TimestampChanges.compare(t, prev, prev).rules(ALL_CATEGORIES) == []


def test_unchanged_timestamps_produce_no_rules():
    rows = [row(FK1, "A", "A/1"), row(FK2, "A", "A/1"), row(FK3, "A", "A/2")]
    rules = generate_rules(rows)
    expected = ["20230311T235840Z", "20230415T000000Z"]
    assert [str(r.valid_from) for r in rules] == expected


def test_rows_ordered_by_period_and_run():
    rows = [
        {**row(FK2, "A", "A/2"), "period": "p04", "run": "r000"},
        {**row(FK1, "A", "A/1"), "period": "p03", "run": "r005"},
    ]
    times = [t for t, _ in snapshots(rows)]
    assert times == [Timestamp.parse(FK1), Timestamp.parse(FK2)]


def test_rows_out_of_time_order():
    rows = [
        {**row(FK1, "A", "A/2"), "period": "p04", "run": "r000"},
        {**row(FK2, "A", "A/1"), "period": "p03", "run": "r000"},
    ]
    with pytest.raises(DiffInputError):
        snapshots(rows)
    with pytest.raises(DiffInputError):
        generate_rules(rows)


def test_several_fragments_per_target():
    rows = [row(FK1, "A", "A/1"), row(FK1, "A", "A/x"), row(FK2, "A", "A/2")]
    tl = ValidityTimeline(generate_rules(rows))
    assert tl.resolve(FK1) == ["A/1", "A/x"]
    assert tl.resolve(FK2) == ["A/2"]


def test_invalid_rows():
    with pytest.raises(DiffInputError):
        generate_rules([{"filekey": FK1, "target": "A"}])
    with pytest.raises(DiffInputError):
        generate_rules([row("not-a-filekey", "A", "A/1")])
    with pytest.raises(DiffInputError):
        generate_rules([row(FK1, "A", "shared.yaml"), row(FK1, "B", "shared.yaml")])
    assert generate_rules([]) == []


def test_legacy_row_fields():
    r = ValidityRow.parse({"filekey": FK1, "target": "A", "validity": "A/1.yaml"})
    assert r.fragment == "A/1.yaml"
    assert r.ordinal == (3, 0, Timestamp.parse(FK1).unixtime)


# ---- equivalence of strategies


targets = ["A", "B", "C"]
tables = st.lists(
    st.fixed_dictionaries(
        {t: st.one_of(st.none(), st.integers(0, 3)) for t in targets}
    ),
    min_size=1,
    max_size=6,
)


@settings(max_examples=50, deadline=None)
@given(tables)
def test_full_and_diff_equivalent(table):
    """Rules from both strategies reproduce the assignment table."""
    times = [
        f"l200-p01-r{i:03d}-cal-202301{i + 1:02d}T000000Z" for i in range(len(table))
    ]
    rows = []
    for fk, entry in zip(times, table):
        active = {t: f"{t}/{v}.yaml" for t, v in entry.items() if v is not None}
        rows += [row(fk, t, frag) for t, frag in active.items()]

    expected_full, expected_diff, carried = [], [], {}
    for entry in table:
        active = {t: f"{t}/{v}.yaml" for t, v in entry.items() if v is not None}
        carried = {**carried, **active}
        expected_full.append(sorted(active.values()))
        expected_diff.append(sorted(carried.values()))

    for collapse in [True, False]:
        full = ValidityTimeline(generate_rules(rows, "full", collapse=collapse))
        diff = ValidityTimeline(generate_rules(rows, "diff", collapse=collapse))
        for fk, exp_full, exp_diff in zip(times, expected_full, expected_diff):
            # in `diff` mode, absent targets keep their fragment
            assert sorted(diff.resolve(fk)) == exp_diff
            # timestamps without any rows are not part of a `full` table
            if exp_full:
                assert sorted(full.resolve(fk)) == exp_full


def test_diff_matches_full_for_complete_tables():
    rows = [
        row(FK1, "A", "A/1"),
        row(FK1, "B", "B/1"),
        row(FK2, "A", "A/2"),
        row(FK2, "B", "B/1"),
        row(FK3, "A", "A/2"),
        row(FK3, "B", "B/2"),
    ]
    full = ValidityTimeline(generate_rules(rows, Strategy.full))
    diff = ValidityTimeline(generate_rules(rows, Strategy.diff))
    for fk in [FK1, FK2, FK3]:
        assert sorted(full.resolve(fk)) == sorted(diff.resolve(fk))


# ---- writing


def test_write_validity(tmp_path):
    rules = write_validity(tmp_path, EXAMPLE_ROWS)
    assert read_rules([tmp_path / "validity.yaml"]) == rules
    assert write_validity(tmp_path, []) == []

    # rows of a category only
    rules = write_validity(tmp_path, EXAMPLE_ROWS[:3], category="cal")
    assert {r.category for r in rules} == {DataCategory("cal")}
    tl = ValidityTimeline.load(tmp_path)
    assert tl.resolve(FK2, "phy") == []
    assert len(tl.resolve(FK2, "cal")) == 3


def test_write_skipped_merges(tmp_path):
    path = tmp_path / "validity.yaml"
    path.write_text(
        yaml.safe_dump(
            [
                rule("20230311T235840Z", ["A/1.yaml"]),
                rule("20230415T000000Z", ["A/2.yaml"]),
            ]
        )
    )
    skipped = [row(FK2, "S", "S/1.yaml")]
    rules = write_validity(tmp_path, skipped, skipped=True)
    assert read_rules([path]) == rules

    tl = ValidityTimeline.load(tmp_path)
    assert tl.resolve(FK1) == ["A/1.yaml"]
    assert tl.resolve(FK2) == ["A/1.yaml", "S/1.yaml"]
    # the supplementary fragment survives the later reset
    assert tl.resolve(FK3) == ["A/2.yaml", "S/1.yaml"]


def test_write_skipped_merges_category_reset(tmp_path):
    path = tmp_path / "validity.yaml"
    path.write_text(
        yaml.safe_dump(
            [
                rule("20230311T235840Z", ["A/1.yaml"], category="cal"),
                rule("20230415T000000Z", ["A/2.yaml"], category="cal"),
            ]
        )
    )
    write_validity(tmp_path, [row(FK2, "S", "S/1.yaml")], skipped=True)

    tl = ValidityTimeline.load(tmp_path)
    assert tl.resolve(FK2, "cal") == ["A/1.yaml", "S/1.yaml"]
    # the `all` batch is not wiped by the later `cal` reset
    assert tl.resolve(FK3, "cal") == ["A/2.yaml", "S/1.yaml"]
    assert tl.resolve(FK3, "phy") == ["S/1.yaml"]

    appended = [r for r in tl.rules if str(r.valid_from) == "20230415T000000Z"]
    assert [(str(r.category), r.mode) for r in appended] == [
        ("cal", ValidityMode.reset),
        ("cal", ValidityMode.append),
    ]


def test_merge_rules_keeps_existing_without_batch():
    existing = generate_rules(EXAMPLE_ROWS)
    assert merge_rules(existing, []) == existing
