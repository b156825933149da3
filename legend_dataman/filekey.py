"""Structured keys that address metadata and data files.

All keys are immutable value objects with a canonical string form.
`Key.parse` accepts an instance, the canonical string and (where it makes
sense) an integer, and is the exact inverse of `str(key)`.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, ClassVar, Dict, Iterable, List, Tuple, Union

from phantom.re import FullMatch
from pydantic_core import core_schema

from .errors import MalformedKeyError


class TimestampStr(FullMatch, pattern=r"[0-9]{8}T[0-9]{6}Z"):
    """String in canonical timestamp format, e.g. `20221226T200846Z`."""


class FileKeyStr(
    FullMatch,
    pattern=r"[a-z][a-z0-9]*-p[0-9]{2}-r[0-9]{3}-[a-z]+-[0-9]{8}T[0-9]{6}Z",
):
    """Canonical file key string, e.g. `l200-p02-r006-cal-20221226T200846Z`."""


def is_timestamp_string(s: Any) -> bool:
    """Return whether `s` is a string in canonical timestamp format."""
    return isinstance(s, TimestampStr)


def is_filekey_string(s: Any) -> bool:
    """Return whether `s` is a string in canonical file key format."""
    return isinstance(s, FileKeyStr) and _try(FileKey.parse, s)


def _try(f, v) -> bool:
    try:
        f(v)
    except MalformedKeyError:
        return False
    return True


class DataSelector:
    """Base class of all structured keys."""

    field_name: ClassVar[str] = "key"

    def _sort_key(self) -> Tuple:
        raise NotImplementedError

    @classmethod
    def parse(cls, value: Any):
        raise NotImplementedError

    @classmethod
    def can_parse(cls, value: Any) -> bool:
        try:
            cls.parse(value)
        except (MalformedKeyError, TypeError):
            return False
        return True

    @classmethod
    def _malformed(cls, value: Any, msg=None) -> MalformedKeyError:
        return MalformedKeyError(cls.field_name, value, msg)

    def _cmp_key(self, other):
        if type(self) is not type(other):
            return NotImplemented
        return other._sort_key()

    def __lt__(self, other):
        k = self._cmp_key(other)
        return k if k is NotImplemented else self._sort_key() < k

    def __le__(self, other):
        k = self._cmp_key(other)
        return k if k is NotImplemented else self._sort_key() <= k

    def __gt__(self, other):
        k = self._cmp_key(other)
        return k if k is NotImplemented else self._sort_key() > k

    def __ge__(self, other):
        k = self._cmp_key(other)
        return k if k is NotImplemented else self._sort_key() >= k

    def __repr__(self):
        return f"{type(self).__name__}({str(self)!r})"

    @classmethod
    def __get_pydantic_core_schema__(cls, source, handler):
        # validate via parse, serialize as canonical string
        return core_schema.no_info_plain_validator_function(
            cls.parse, serialization=core_schema.to_string_ser_schema()
        )


def _parse_label(cls, value):
    if isinstance(value, cls):
        return value
    if not isinstance(value, str):
        raise cls._malformed(value, f"Expected {cls.field_name} string, got {value!r}")
    return cls(value)


def _check_label(obj, regex: re.Pattern, minlen: int, maxlen: int):
    label = obj.label
    if not isinstance(label, str) or not regex.fullmatch(label):
        raise obj._malformed(label)
    if not (minlen <= len(label) <= maxlen):
        msg = f"{obj.field_name} {label!r} must have {minlen} to {maxlen} characters"
        raise obj._malformed(label, msg)


def _parse_ordinal(cls, value, regex: re.Pattern):
    if isinstance(value, cls):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return cls(value)
    if isinstance(value, str):
        if m := regex.fullmatch(value):
            return cls(int(m.group(1)))
    raise cls._malformed(value)


def _check_ordinal(obj, maxval: int):
    no = obj.no
    if isinstance(no, bool) or not isinstance(no, int) or not (0 <= no <= maxval):
        raise obj._malformed(no)


# ----


@dataclass(frozen=True)
class ExpSetup(DataSelector):
    """Experimental setup, e.g. `l200`."""

    label: str

    field_name: ClassVar[str] = "setup"
    _regex: ClassVar[re.Pattern] = re.compile(r"[a-z][a-z0-9]*")

    def __post_init__(self):
        _check_label(self, self._regex, 3, 8)

    def __str__(self):
        return self.label

    def _sort_key(self):
        return (self.label,)

    @classmethod
    def parse(cls, value) -> ExpSetup:
        return _parse_label(cls, value)


@dataclass(frozen=True)
class DataTier(DataSelector):
    """Data processing tier, e.g. `raw` or `dsp`."""

    label: str

    field_name: ClassVar[str] = "tier"
    _regex: ClassVar[re.Pattern] = re.compile(r"[a-z]+")

    def __post_init__(self):
        _check_label(self, self._regex, 3, 6)

    def __str__(self):
        return self.label

    def _sort_key(self):
        return (self.label,)

    @classmethod
    def parse(cls, value) -> DataTier:
        return _parse_label(cls, value)


@dataclass(frozen=True)
class DataCategory(DataSelector):
    """Data category, e.g. `cal` or `phy`. The label `all` is the wildcard."""

    label: str

    field_name: ClassVar[str] = "category"
    _regex: ClassVar[re.Pattern] = re.compile(r"[a-z]{3,6}")

    def __post_init__(self):
        _check_label(self, self._regex, 3, 6)

    def __str__(self):
        return self.label

    def _sort_key(self):
        return (self.label,)

    @property
    def is_wildcard(self) -> bool:
        return self.label == "all"

    def matches(self, other: DataCategory) -> bool:
        """Return whether this category (possibly `all`) applies to `other`."""
        return self.is_wildcard or self == other

    @classmethod
    def parse(cls, value) -> DataCategory:
        return _parse_label(cls, value)


ALL_CATEGORIES = DataCategory("all")


@dataclass(frozen=True)
class DataPeriod(DataSelector):
    """Data taking period, rendered as `pNN`."""

    no: int

    field_name: ClassVar[str] = "period"
    _regex: ClassVar[re.Pattern] = re.compile(r"p([0-9]{2})")

    def __post_init__(self):
        _check_ordinal(self, 99)

    def __str__(self):
        return f"p{self.no:02d}"

    def __int__(self):
        return self.no

    def _sort_key(self):
        return (self.no,)

    @classmethod
    def parse(cls, value) -> DataPeriod:
        return _parse_ordinal(cls, value, cls._regex)


@dataclass(frozen=True)
class DataRun(DataSelector):
    """Data taking run within a period, rendered as `rNNN`."""

    no: int

    field_name: ClassVar[str] = "run"
    _regex: ClassVar[re.Pattern] = re.compile(r"r([0-9]{3})")

    def __post_init__(self):
        _check_ordinal(self, 999)

    def __str__(self):
        return f"r{self.no:03d}"

    def __int__(self):
        return self.no

    def _sort_key(self):
        return (self.no,)

    @classmethod
    def parse(cls, value) -> DataRun:
        return _parse_ordinal(cls, value, cls._regex)


@dataclass(frozen=True)
class DataPartition(DataSelector):
    """Partition of runs, e.g. `calpartition001a`.

    Partitions are ordered by category, then number, then set.
    """

    no: int
    set: str = "a"
    category: DataCategory = DataCategory("cal")

    field_name: ClassVar[str] = "partition"
    # longer categories need a separator, e.g. `calibpartition001a`
    _regex: ClassVar[re.Pattern] = re.compile(
        r"(?:([a-z]{3,6}?)(?=partition|group|part)|([a-z]{3})(?![a-z]))?"
        r"(?:partition|group|part)?([0-9]{2,3})([A-Za-z])?"
    )

    def __post_init__(self):
        _check_ordinal(self, 999)
        if not isinstance(self.set, str) or not re.fullmatch("[A-Za-z]", self.set):
            raise self._malformed(self.set, f"Invalid partition set: {self.set!r}")
        object.__setattr__(self, "category", DataCategory.parse(self.category))

    def __str__(self):
        return f"{self.category}partition{self.no:03d}{self.set}"

    def _sort_key(self):
        return (self.category.label, self.no, self.set)

    @classmethod
    def parse(cls, value) -> DataPartition:
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            if m := cls._regex.fullmatch(value):
                long_cat, cat, no, pset = m.groups()
                cat = long_cat or cat
                return cls(int(no), pset or "a", DataCategory(cat or "cal"))
        raise cls._malformed(value)


_MIN_UNIXTIME = int(datetime.min.replace(tzinfo=timezone.utc).timestamp())
_MAX_UNIXTIME = int(datetime.max.replace(tzinfo=timezone.utc).timestamp())


@dataclass(frozen=True)
class Timestamp(DataSelector):
    """Point in time with second precision, rendered as `YYYYMMDDThhmmssZ` (UTC)."""

    unixtime: int

    field_name: ClassVar[str] = "timestamp"
    _format: ClassVar[str] = "%Y%m%dT%H%M%SZ"

    def __post_init__(self):
        if isinstance(self.unixtime, bool) or not isinstance(self.unixtime, int):
            raise self._malformed(self.unixtime)
        if not _MIN_UNIXTIME <= self.unixtime <= _MAX_UNIXTIME:
            msg = f"Timestamp out of range (years 1 to 9999): {self.unixtime}"
            raise self._malformed(self.unixtime, msg)

    def __str__(self):
        # strftime does not pad years before 1000
        dt = self.datetime
        return (
            f"{dt.year:04d}{dt.month:02d}{dt.day:02d}"
            f"T{dt.hour:02d}{dt.minute:02d}{dt.second:02d}Z"
        )

    def __int__(self):
        return self.unixtime

    def _sort_key(self):
        return (self.unixtime,)

    @property
    def datetime(self) -> datetime:
        return datetime.fromtimestamp(self.unixtime, tz=timezone.utc)

    @classmethod
    def from_datetime(cls, dt: datetime) -> Timestamp:
        if dt.tzinfo is None:
            raise cls._malformed(dt, f"Timestamp needs a timezone-aware datetime: {dt}")
        return cls(int(dt.timestamp()))

    @classmethod
    def parse(cls, value) -> Timestamp:
        if isinstance(value, cls):
            return value
        if isinstance(value, FileKey):
            return value.time
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(value)
        if isinstance(value, datetime):
            return cls.from_datetime(value)
        if is_timestamp_string(value):
            try:
                dt = datetime.strptime(value, cls._format)
            except ValueError as e:
                raise cls._malformed(value, f"Invalid timestamp {value!r}: {e}") from e
            return cls.from_datetime(dt.replace(tzinfo=timezone.utc))
        if is_filekey_string(value):
            return FileKey.parse(value).time
        raise cls._malformed(value)


@dataclass(frozen=True)
class ChannelId(DataSelector):
    """Hardware channel, rendered as `ch%03d` or `ch%07d`."""

    no: int

    field_name: ClassVar[str] = "channel"
    _regex: ClassVar[re.Pattern] = re.compile(
        r"ch([0-9]{3}|(?:0[1-9]|[1-9][0-9])[0-9]{5})"
    )

    def __post_init__(self):
        _check_ordinal(self, 9999999)
        if 1000 <= self.no < 1000000:
            raise self._malformed(self.no, f"Invalid channel number: {self.no}")

    def __str__(self):
        return f"ch{self.no:03d}" if self.no < 1000 else f"ch{self.no:07d}"

    def __int__(self):
        return self.no

    def _sort_key(self):
        return (self.no,)

    @classmethod
    def parse(cls, value) -> ChannelId:
        return _parse_ordinal(cls, value, cls._regex)


# ----
# detector ids, with the numeric encoding used in raw data:
# 4 bit type code, 20 bit serial number, 4 bit sub-serial number

_DETID_SPECIAL = {"C00ANG": 0xF1000, "C000RG": 0xF2000}

_DETID_FAMILIES = [
    (re.compile(r"(C00ANG|C000RG)([0-9])"), 0x1),
    (re.compile(r"([BCPV])([0-9]{5})([A-P])"), None),
    (re.compile(r"(S)([0-9]{3})"), 0x9),
    (re.compile(r"(PMT)([0-9]{3})"), 0xA),
    (re.compile(r"(PULS)([0-9]{2})(ANA)?"), 0xB),
    (re.compile(r"(AUX)([0-9]{2})"), 0xC),
    (re.compile(r"(DUMMY)([0-9]{1,2})"), 0xD),
    (re.compile(r"(BSLN)([0-9]{2})"), 0xE),
    (re.compile(r"(MUON)([0-9]{2})"), 0xF),
]

_HPGE_TYPES = {"C": 0x1, "B": 0x2, "P": 0x3, "V": 0x4}
_PREFIXES = {
    0x9: "S",
    0xA: "PMT",
    0xB: "PULS",
    0xC: "AUX",
    0xD: "DUMMY",
    0xE: "BSLN",
    0xF: "MUON",
}
_DIGITS = {0x9: 3, 0xA: 3}


def _encode_detid(label: str) -> int:
    for regex, type_code in _DETID_FAMILIES:
        if m := regex.fullmatch(label):
            break
    else:
        msg = f"Unknown detector id family: {label!r}"
        raise MalformedKeyError("detector", label, msg)

    prefix, serial = m.group(1), int(m.group(2))
    sub = 0
    if prefix in _DETID_SPECIAL:
        serial += _DETID_SPECIAL[prefix]
    elif prefix in _HPGE_TYPES:
        type_code = _HPGE_TYPES[prefix]
        sub = ord(m.group(3)) - ord("A")
    elif prefix == "PULS":
        sub = 1 if m.group(3) else 0
    return (type_code << 24) | (serial << 4) | sub


def _decode_detid(value: int) -> str:
    type_code, serial, sub = (value >> 24) & 0xF, (value >> 4) & 0xFFFFF, value & 0xF
    if type_code in _HPGE_TYPES.values():
        if type_code == 0x1:
            for prefix, base in _DETID_SPECIAL.items():
                if base <= serial < base + 10:
                    return f"{prefix}{serial - base}"
        t = next(k for k, v in _HPGE_TYPES.items() if v == type_code)
        return f"{t}{serial:05d}{chr(ord('A') + sub)}"
    if type_code in _PREFIXES:
        digits = _DIGITS.get(type_code, 2)
        suffix = "ANA" if type_code == 0xB and sub == 1 else ""
        return f"{_PREFIXES[type_code]}{serial:0{digits}d}{suffix}"
    msg = f"Invalid detector type code: {type_code}"
    raise MalformedKeyError("detector", value, msg)


@dataclass(frozen=True)
class DetectorId(DataSelector):
    """Detector name, e.g. `V99000A`. Case is preserved."""

    label: str

    field_name: ClassVar[str] = "detector"
    _regex: ClassVar[re.Pattern] = re.compile(r"[A-Za-z][A-Za-z0-9_]*")

    def __post_init__(self):
        if not isinstance(self.label, str) or not self._regex.fullmatch(self.label):
            raise self._malformed(self.label)

    def __str__(self):
        return self.label

    def __int__(self):
        """Return numeric encoding of known detector families."""
        return _encode_detid(self.label)

    def _sort_key(self):
        return (self.label,)

    @classmethod
    def from_int(cls, value: int) -> DetectorId:
        return cls(_decode_detid(value))

    @classmethod
    def parse(cls, value) -> DetectorId:
        if isinstance(value, cls):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return cls.from_int(value)
        if isinstance(value, str):
            return cls(value)
        raise cls._malformed(value)


# ----


@dataclass(frozen=True)
class FileKey(DataSelector):
    """Key of a single data file, e.g. `l200-p02-r006-cal-20221226T200846Z`.

    File keys are ordered by time first.
    """

    setup: ExpSetup
    period: DataPeriod
    run: DataRun
    category: DataCategory
    time: Timestamp

    field_name: ClassVar[str] = "filekey"
    _regex: ClassVar[re.Pattern] = re.compile(
        r"(?<![a-z0-9])([a-z][a-z0-9]*)-(p[0-9]{2})-(r[0-9]{3})-"
        r"([a-z]+)-([0-9]{8}T[0-9]{6}Z)"
    )

    def __post_init__(self):
        parsers = [ExpSetup, DataPeriod, DataRun, DataCategory, Timestamp]
        fields = ["setup", "period", "run", "category", "time"]
        for name, p in zip(fields, parsers):
            object.__setattr__(self, name, p.parse(getattr(self, name)))

    def __str__(self):
        return f"{self.setup}-{self.period}-{self.run}-{self.category}-{self.time}"

    def _sort_key(self):
        return (
            self.time.unixtime,
            self.setup.label,
            self.period.no,
            self.run.no,
            self.category.label,
        )

    @classmethod
    def parse(cls, value) -> FileKey:
        """Parse a file key string, or extract one from a file name or path."""
        if isinstance(value, cls):
            return value
        if isinstance(value, Path):
            value = value.name
        if not isinstance(value, str):
            raise cls._malformed(value)
        if isinstance(value, FileKeyStr):
            m = cls._regex.fullmatch(value)
        else:
            m = cls._regex.search(re.split(r"[/\\]", value)[-1])
        if m is None:
            raise cls._malformed(value)
        return cls(*m.groups())


DataSelectorLike = Union[DataSelector, str, int]

SELECTOR_TYPES: Dict[str, type] = {
    t.field_name: t
    for t in [
        ExpSetup,
        DataTier,
        DataPeriod,
        DataRun,
        DataCategory,
        DataPartition,
        Timestamp,
        ChannelId,
        DetectorId,
        FileKey,
    ]
}
"""Key types by their field name."""


def read_filekeys(path: Union[str, Path]) -> List[FileKey]:
    """Read file keys from a text file, one per line.

    Empty lines and everything after a `#` are ignored.
    """
    ret = []
    for line in Path(path).read_text().splitlines():
        line = line.split("#", 1)[0].strip()
        if line:
            ret.append(FileKey.parse(line))
    return ret


def write_filekeys(path: Union[str, Path], filekeys: Iterable[FileKey]):
    """Write file keys to a text file, one per line."""
    Path(path).write_text("".join(f"{FileKey.parse(k)}\n" for k in filekeys))
