import json
from pathlib import Path

import h5py
import numpy as np
import pytest
import yaml

from legend_dataman.util.cache import clear_all

T0 = "20230101T000000Z"
T1 = "20230301T000000Z"

FK_EARLY = "l200-p01-r000-cal-20221201T000000Z"
FK_P01 = "l200-p01-r000-cal-20230115T120000Z"
FK_P02 = "l200-p02-r000-cal-20230315T120000Z"
FK_P02_PHY = "l200-p02-r000-phy-20230316T120000Z"


def write_yaml(path: Path, obj):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(obj, sort_keys=False))


def write_json(path: Path, obj):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(obj, indent=2))


def rule(valid_from, apply, category="all", mode="reset"):
    return dict(valid_from=valid_from, apply=apply, category=category, mode=mode)


@pytest.fixture(autouse=True)
def fresh_caches():
    """Make every test start without cached rules, selections and tables."""
    clear_all()
    yield
    clear_all()


@pytest.fixture
def metadata_dir(tmp_path) -> Path:
    """Create a small metadata tree with validity-governed directories."""
    root = tmp_path / "metadata"

    diodes = root / "hardware" / "detectors" / "germanium" / "diodes"
    write_yaml(
        diodes / "V99000A.yaml",
        {
            "name": "V99000A",
            "production": {
                "mass_in_g": 2000.5,
                "enrichment": {"val": 0.88, "err": 0.01},
            },
            "characterization": {
                "depletion_voltage": {"val": 4000, "unit": "V"},
                "resolution": {"val": 2.5, "unit": "keV", "err": 0.1},
            },
        },
    )
    write_json(diodes / "B00000A.json", {"name": "B00000A"})

    chmaps = root / "hardware" / "configuration" / "channelmaps"
    write_yaml(
        chmaps / "validity.yaml",
        [
            rule(T0, ["l200-p01-r000-T%-all-config.yaml"]),
            rule(T1, ["l200-p02-r000-T%-all-config.yaml"]),
        ],
    )
    write_yaml(
        chmaps / "l200-p01-r000-T%-all-config.yaml",
        {
            "V99000A": {"system": "geds", "daq": {"rawid": 1104000, "fcid": 0}},
            "B00000A": {"system": "geds", "daq": {"rawid": 1104001, "fcid": 1}},
            "S010": {"system": "spms", "daq": {"rawid": 1104003, "fcid": 3}},
        },
    )
    write_yaml(
        chmaps / "l200-p02-r000-T%-all-config.yaml",
        {
            "V99000A": {"system": "geds", "daq": {"rawid": 1104002, "fcid": 2}},
            "B00000A": {"system": "geds", "daq": {"rawid": 1104001, "fcid": 1}},
        },
    )

    analysis = root / "dataprod" / "config" / "analysis"
    config_rule = rule(T0, ["l200-p01-r000-T%-all-config.yaml"])
    write_yaml(analysis / "validity.yaml", [config_rule])
    # `on` is left unquoted on purpose, as in real metadata
    (analysis / "l200-p01-r000-T%-all-config.yaml").write_text(
        "V99000A:\n  processable: true\n  usability: on\n"
        "B00000A:\n  processable: true\n  usability: 'off'\n"
    )

    pars = root / "dataprod" / "pars"
    write_yaml(
        pars / "validity.yaml",
        [
            rule(T0, ["cal-p01.yaml"], category="cal"),
            rule(T1, ["cal-p02.yaml"], category="cal"),
            rule(T1, ["cal-p02.yaml", "phy-p02.yaml"], category="phy"),
        ],
    )
    for sub in ["geds", "spms"]:
        write_yaml(pars / sub / "cal-p01.yaml", {"gain": {"val": 1.0, "err": 0.1}})
        write_yaml(pars / sub / "cal-p02.yaml", {"gain": {"val": 1.1, "err": 0.1}})
        write_yaml(pars / sub / "phy-p02.yaml", {"cut": f"{sub} > 0"})

    (root / ".git").mkdir()
    (root / "README.md").write_text("not a property file\n")
    return root


@pytest.fixture
def data_dir(tmp_path, metadata_dir) -> Path:
    """Create a data production directory with a data configuration file."""
    write_yaml(
        tmp_path / "config.yaml",
        {
            "setups": {
                "l200": {
                    "paths": {
                        "metadata": "$_/metadata",
                        "tier": "$_/generated/tier",
                        "tier/raw": "$_/orig/raw",
                    }
                }
            }
        },
    )
    return tmp_path


@pytest.fixture
def config_file(data_dir) -> Path:
    return data_dir / "config.yaml"


@pytest.fixture
def legend_data(config_file):
    from legend_dataman.dataconfig import load_config
    from legend_dataman.legend_data import LegendData

    return LegendData.from_config(load_config([config_file]), "l200")


def write_lh5(path: Path, channels):
    """Write a minimal LH5 file with `{channel: {tier: {column: values}}}`."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with h5py.File(path, "w") as f:
        for ch, tiers in channels.items():
            for tier, cols in tiers.items():
                grp = f.require_group(f"{ch}/{tier}")
                for name, values in cols.items():
                    grp.create_dataset(name, data=np.asarray(values))


@pytest.fixture
def dsp_files(legend_data):
    """Create `dsp` tier files for the two calibration file keys."""
    write_lh5(
        legend_data.tier["dsp", FK_P01],
        {
            "ch1104000": {"dsp": {"energy": [1.0, 2.0, 3.0], "evt": [0, 1, 2]}},
            "ch1104001": {"dsp": {"energy": [10.0], "evt": [0]}},
        },
    )
    write_lh5(
        legend_data.tier["dsp", FK_P02],
        {"ch1104002": {"dsp": {"energy": [4.0, 5.0], "evt": [3, 4]}}},
    )
    return [FK_P01, FK_P02]
