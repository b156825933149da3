"""Read per-channel columns from LH5 data tier files.

Columns of a channel are stored as datasets at `/<channel>/<tier>/<column>`
of an HDF5 file, e.g. `/ch1084803/dsp/trapEmax`.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

import h5py
import numpy as np

from .errors import AmbiguousOrMissingChannelError
from .expressions import Predicate, compile_predicate
from .filekey import ChannelId, DataTier, DetectorId, FileKey

logger = logging.getLogger(__name__)

Columns = Dict[str, np.ndarray]
"""Equal-length columns by name."""

PredicateLike = Union[None, str, Predicate, Callable[[Columns], Any]]


def _predicate(predicate: PredicateLike) -> Optional[Callable[[Columns], Any]]:
    if isinstance(predicate, str):
        return compile_predicate(predicate)
    return predicate


def _length(cols: Columns) -> int:
    return len(next(iter(cols.values()))) if cols else 0


def _subsample(cols: Columns, n_rows: int, rng: np.random.Generator) -> Columns:
    length = _length(cols)
    if n_rows >= length:
        return cols
    # keep original row order
    idx = np.sort(rng.choice(length, size=n_rows, replace=False))
    return {k: v[idx] for k, v in cols.items()}


def read_channel_columns(
    path: Union[str, Path],
    channel: Any,
    tier: Any,
    columns: Optional[Sequence[str]] = None,
    predicate: PredicateLike = None,
    n_rows: Optional[int] = None,
    rng: Optional[np.random.Generator] = None,
) -> Columns:
    """Read columns of one channel from a data file.

    Args:
        path: LH5 file
        channel: channel ID (or string)
        tier: data tier of the columns
        columns: columns to return (default: all of the channel and tier)
        predicate: row filter, expression string or callable on the columns
        n_rows: return at most this many rows, chosen at random
        rng: random generator used for `n_rows`
    """
    channel, tier = ChannelId.parse(channel), DataTier.parse(tier)
    pred = _predicate(predicate)
    grp_name = f"{channel}/{tier}"
    if not Path(path).is_file():
        raise FileNotFoundError(f"No such data file: {path}")
    with h5py.File(path, "r") as f:
        if grp_name not in f:
            msg = f"No data for channel {channel} ({tier}) in {path}"
            raise AmbiguousOrMissingChannelError(msg)
        grp = f[grp_name]
        names = list(columns) if columns is not None else sorted(grp.keys())
        if pred is None:
            needed = set(names)
        elif isinstance(pred, Predicate):
            needed = set(names) | set(pred.fields)
        else:
            # plain callables may use any column
            needed = set(grp.keys())
        cols = {k: grp[k][()] for k in sorted(needed) if k in grp}

    missing = [k for k in names if k not in cols]
    if missing:
        raise KeyError(f"Columns {missing} not found for {channel} in {path}")

    if pred is not None:
        mask = np.broadcast_to(np.asarray(pred(cols), dtype=bool), (_length(cols),))
        cols = {k: v[mask] for k, v in cols.items()}
    cols = {k: cols[k] for k in names}
    if n_rows is not None:
        cols = _subsample(cols, n_rows, rng or np.random.default_rng())
    return cols


def read_ldata(
    data,
    tier: Any,
    filekeys: Iterable[Any],
    channel: Any,
    columns: Optional[Sequence[str]] = None,
    predicate: PredicateLike = None,
    n_rows: Optional[int] = None,
    ignore_missing: bool = False,
    max_workers: Optional[int] = None,
    seed: Optional[int] = None,
) -> Columns:
    """Read and concatenate columns of a channel from the files of several keys.

    Files are read in parallel, results keep the order of `filekeys`. A
    `DetectorId` is mapped to its channel separately for each file key.

    Args:
        data: `LegendData` instance locating the files
        tier: data tier
        filekeys: file keys of the files to read
        channel: channel ID or detector ID
        columns: see `read_channel_columns`
        predicate: see `read_channel_columns`
        n_rows: return at most this many rows per file, chosen at random
        ignore_missing: skip files (or channels) that do not exist
        max_workers: size of the thread pool
        seed: seed of the random row selection
    """
    tier = DataTier.parse(tier)
    filekeys = [FileKey.parse(fk) for fk in filekeys]
    det = channel if isinstance(channel, DetectorId) else None
    if det is None and not ChannelId.can_parse(channel):
        det = DetectorId.parse(channel)
    pred = _predicate(predicate)
    seeds = np.random.SeedSequence(seed).spawn(len(filekeys))

    def read_one(fk: FileKey, ss: np.random.SeedSequence) -> Optional[Columns]:
        rng = np.random.default_rng(ss)
        try:
            ch = data.detector2channel(fk, det) if det is not None else channel
            path = data.tier[tier, fk]
            return read_channel_columns(path, ch, tier, columns, pred, n_rows, rng)
        except (AmbiguousOrMissingChannelError, FileNotFoundError) as e:
            if not ignore_missing:
                raise
            logger.warning("Skipping %s: %s", fk, e)
            return None

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        results = list(pool.map(read_one, filekeys, seeds))
    parts: List[Columns] = [p for p in results if p is not None]

    if not parts:
        return {k: np.array([]) for k in columns or []}
    names = list(parts[0].keys())
    return {k: np.concatenate([p[k] for p in parts]) for k in names}
