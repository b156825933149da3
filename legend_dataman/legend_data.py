"""Access to the data and metadata of an experimental setup.

Data tier files are located at

    tier/<tier>/<category>/<period>/<run>/<filekey>-tier_<tier>.lh5

relative to the configured `tier` path prefixes, e.g.
`tier/raw/cal/p02/r006/l200-p02-r006-cal-20221226T200846Z-tier_raw.lh5`.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, List, NamedTuple, Union

from .dataconfig import LegendDataConfig, PathComponent, SetupConfig
from .errors import AmbiguousOrMissingChannelError
from .filekey import ChannelId, DataTier, DetectorId, ExpSetup, FileKey
from .props.db import PropsDB
from .util.cache import Cache
from .validity.timeline import ValiditySelection

channelinfo_cache: Cache[List["ChannelInfo"]] = Cache("channel info")
"""Channel tables, keyed by metadata location and selection."""


def clear_channelinfo_cache():
    channelinfo_cache.clear()


class ChannelInfo(NamedTuple):
    """Row of the channel table of a data file."""

    detector: DetectorId
    channel: ChannelId
    fcid: int
    system: str
    processable: bool
    usability: bool


class LegendData:
    """Data and metadata of an experimental setup."""

    def __init__(self, config: SetupConfig, setup: Union[None, str, ExpSetup] = None):
        self.config = config
        self.setup = ExpSetup.parse(setup) if setup is not None else None

    def __repr__(self):
        return f"LegendData({self.setup or ''})"

    @classmethod
    def from_config(
        cls, config: LegendDataConfig, setup: Union[str, ExpSetup]
    ) -> LegendData:
        return cls(config[setup], setup)

    @classmethod
    def from_env(cls, setup: Union[str, ExpSetup]) -> LegendData:
        """Create for a setup configured in `$LEGEND_DATA_CONFIG`."""
        return cls.from_config(LegendDataConfig.from_env(), setup)

    def data_path(self, *components: PathComponent) -> Path:
        return self.config.resolve(*components)

    @property
    def metadata(self) -> PropsDB:
        return PropsDB(self.data_path("metadata"))

    @property
    def tier(self) -> LegendTierData:
        return LegendTierData(self)

    def channelinfo(self, filekey: Union[str, FileKey]) -> List[ChannelInfo]:
        """Return the channel table for a file key.

        Combines the hardware channel map with the processing configuration.
        Only detectors present in both are listed.
        """
        filekey = FileKey.parse(filekey)
        sel = ValiditySelection.parse(filekey)
        key = (str(self.data_path("metadata").resolve()), sel)
        return channelinfo_cache.get_or_compute(key, lambda: self._channelinfo(filekey))

    def _channelinfo(self, filekey: FileKey) -> List[ChannelInfo]:
        meta = self.metadata(filekey)
        chmap = meta.hardware.configuration.channelmaps
        dpcfg = meta.dataprod.config.analysis
        ret = []
        for det in dpcfg.keys():
            if det not in chmap:
                continue
            ch, cfg = chmap[det], dpcfg[det]
            ret.append(
                ChannelInfo(
                    detector=DetectorId(det),
                    channel=ChannelId(int(ch.daq.rawid)),
                    fcid=int(ch.daq.fcid),
                    system=str(ch.system),
                    processable=bool(cfg.processable),
                    # unquoted `on` is read as True by YAML
                    usability=cfg.usability in ("on", True),
                )
            )
        return ret

    def detector2channel(
        self, filekey: Union[str, FileKey], detector: Any
    ) -> ChannelId:
        det = DetectorId.parse(detector)
        found = [c.channel for c in self.channelinfo(filekey) if c.detector == det]
        if len(found) != 1:
            msg = f"Detector {det} maps to {len(found)} channels in {filekey}"
            raise AmbiguousOrMissingChannelError(msg)
        return found[0]

    def channel2detector(
        self, filekey: Union[str, FileKey], channel: Any
    ) -> DetectorId:
        ch = ChannelId.parse(channel)
        found = [c.detector for c in self.channelinfo(filekey) if c.channel == ch]
        if len(found) != 1:
            msg = f"Channel {ch} maps to {len(found)} detectors in {filekey}"
            raise AmbiguousOrMissingChannelError(msg)
        return found[0]


class LegendTierData:
    """Locations of data tier files.

    Supports `tier_data[tier]`, `tier_data[tier, filekey]` and
    `tier_data[tier, category, period, run]`.
    """

    def __init__(self, data: LegendData):
        self.data = data

    def __getitem__(self, key) -> Path:
        if not isinstance(key, tuple):
            key = (key,)
        tier = DataTier.parse(key[0])
        if len(key) == 1:
            return self.data.data_path("tier", tier)
        if len(key) == 2:
            fk = FileKey.parse(key[1])
            return self.data.data_path(
                "tier",
                tier,
                fk.category,
                fk.period,
                fk.run,
                f"{fk}-tier_{tier}.lh5",
            )
        if len(key) == 4:
            return self.data.data_path("tier", *key)
        raise TypeError(f"Unsupported tier data key: {key!r}")


def search_disk(path: Union[str, Path], pattern: str = "*") -> List[FileKey]:
    """Return the sorted, distinct file keys of files found below a directory."""
    found = set()
    for p in Path(path).rglob(pattern):
        if p.is_file() and FileKey.can_parse(p.name):
            found.add(FileKey.parse(p.name))
    return sorted(found)
