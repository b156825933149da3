"""Tests for the directory-backed property database."""
import pytest
from pint import Measurement, Quantity

from legend_dataman.errors import (
    InvalidDatabaseRootError,
    InvalidSelectorError,
    PropertyNotFoundError,
)
from legend_dataman.filekey import FileKey
from legend_dataman.props import Leaf, Props, PropsDB, SubNode
from legend_dataman.validity import ValiditySelection

from .conftest import FK_EARLY, FK_P01, FK_P02, FK_P02_PHY, T1


def test_invalid_root(tmp_path):
    with pytest.raises(InvalidDatabaseRootError):
        PropsDB(tmp_path / "missing")
    (tmp_path / "file.json").write_text("{}")
    with pytest.raises(InvalidDatabaseRootError):
        PropsDB(tmp_path / "file.json")


def test_keys_and_lookup(metadata_dir):
    db = PropsDB(metadata_dir)
    # hidden entries and non-property files are skipped
    assert db.keys() == ["dataprod", "hardware"]
    assert "hardware" in db and "README" not in db
    assert isinstance(db.get("hardware"), SubNode)

    diodes = db.hardware.detectors.germanium.diodes
    assert diodes.keys() == ["B00000A", "V99000A"]
    assert isinstance(diodes.get("V99000A"), Leaf)
    assert diodes["B00000A"] == {"name": "B00000A"}
    assert diodes.data_path == metadata_dir / "hardware/detectors/germanium/diodes"
    assert diodes.rel_path == ("hardware", "detectors", "germanium", "diodes")


def test_property_values(metadata_dir):
    det = PropsDB(metadata_dir).hardware.detectors.germanium.diodes.V99000A
    assert isinstance(det, Props)
    assert det.name == "V99000A"
    assert det.production.mass_in_g == 2000.5
    assert det.production.enrichment.nominal_value == 0.88
    assert det.characterization.depletion_voltage == Quantity(4000, "V")
    assert isinstance(det.characterization.resolution, Measurement)
    assert det.get_path("characterization.depletion_voltage").magnitude == 4000

    raw = PropsDB(metadata_dir, lprops=False)
    assert raw.hardware.detectors.germanium.diodes.V99000A.characterization[
        "depletion_voltage"
    ] == {"val": 4000, "unit": "V"}


def test_missing_property(metadata_dir):
    db = PropsDB(metadata_dir)
    with pytest.raises(PropertyNotFoundError) as e:
        db.hardware.nonexisting
    assert e.value.path == "hardware.nonexisting"

    det = db.hardware.detectors.germanium.diodes.V99000A
    with pytest.raises(PropertyNotFoundError) as e:
        det.production.nonexisting
    expected = "hardware.detectors.germanium.diodes.V99000A.production.nonexisting"
    assert e.value.path == expected
    assert "Property not found" in str(e.value)
    # KeyError and AttributeError-free lookups
    assert isinstance(e.value, KeyError)
    assert not hasattr(det, "_private")
    with pytest.raises(PropertyNotFoundError):
        det.get_path("name.first")


def test_governed_node(metadata_dir):
    db = PropsDB(metadata_dir)
    chmaps = db.hardware.configuration.channelmaps
    assert isinstance(chmaps, PropsDB)
    assert chmaps.is_governed and chmaps.needs_selection
    with pytest.raises(InvalidSelectorError):
        chmaps.keys()
    with pytest.raises(InvalidSelectorError):
        chmaps["l200-p01-r000-T%-all-config"]

    p01 = chmaps(FK_P01)
    assert p01.V99000A.daq.rawid == 1104000
    assert "S010" in p01
    p02 = chmaps.select(FileKey.parse(FK_P02))
    assert p02.V99000A.daq.rawid == 1104002
    assert "S010" not in p02
    assert chmaps(T1, "cal") == p02
    assert chmaps(ValiditySelection.parse(FK_P02)) == p02


def test_selection_passed_down(metadata_dir):
    db = PropsDB(metadata_dir)
    sel_db = db(FK_P01)
    assert isinstance(sel_db, PropsDB)
    assert sel_db.selection == ValiditySelection.parse(FK_P01)
    # a governed child is resolved with the attached selection
    chmap = sel_db.hardware.configuration.channelmaps
    assert isinstance(chmap, Props)
    assert chmap.B00000A.daq.fcid == 1
    # content that does not depend on validity is unaffected
    assert sel_db.hardware.detectors.germanium.diodes.B00000A.name == "B00000A"


def test_empty_before_first_rule(metadata_dir):
    chmaps = PropsDB(metadata_dir).hardware.configuration.channelmaps
    assert chmaps(FK_EARLY) == {}


def test_inherited_validity(metadata_dir):
    pars = PropsDB(metadata_dir).dataprod.pars
    # the fragments are in the sub-directories only
    assert not pars.is_governed
    assert pars.keys() == ["geds", "spms"]
    assert pars.geds.is_governed
    with pytest.raises(InvalidSelectorError):
        pars.geds.keys()

    assert pars(FK_P01).geds.gain.nominal_value == 1.0
    assert pars.spms(FK_P02).gain.nominal_value == 1.1
    phy = pars.geds(FK_P02_PHY)
    assert phy.cut == "geds > 0"
    assert phy.gain.nominal_value == 1.1


def test_invalid_selection(metadata_dir):
    chmaps = PropsDB(metadata_dir).hardware.configuration.channelmaps
    for sel in [(42,), ("20230101T000000Z", "cal", "x"), ("nonsense",)]:
        with pytest.raises(InvalidSelectorError):
            chmaps(*sel)


def test_equality(metadata_dir):
    a, b = PropsDB(metadata_dir), PropsDB(metadata_dir)
    assert a == b and hash(a) == hash(b)
    assert a.hardware == b.hardware
    assert a.hardware != a.dataprod
    assert a(FK_P01) != a
    assert "hardware" in repr(a.hardware)


def test_resolve_without_rules(tmp_path):
    (tmp_path / "a.yaml").write_text("x: 1\n")
    db = PropsDB(tmp_path)
    assert not db.is_governed
    with pytest.raises(InvalidSelectorError):
        db._resolve(ValiditySelection.parse(FK_P01))
