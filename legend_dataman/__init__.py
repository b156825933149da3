"""legend_dataman package."""
import importlib_metadata
from typing_extensions import Final

from .dataconfig import LegendDataConfig, SetupConfig, load_config
from .filekey import (
    ChannelId,
    DataCategory,
    DataPartition,
    DataPeriod,
    DataRun,
    DataTier,
    DetectorId,
    ExpSetup,
    FileKey,
    Timestamp,
)
from .legend_data import LegendData, search_disk
from .props import Props, PropsDB
from .validity import ValiditySelection, ValidityTimeline

# Set version, will use version from pyproject.toml if defined
__version__: Final[str] = importlib_metadata.version(__package__ or __name__)

__all__ = [
    "LegendDataConfig",
    "SetupConfig",
    "load_config",
    "ChannelId",
    "DataCategory",
    "DataPartition",
    "DataPeriod",
    "DataRun",
    "DataTier",
    "DetectorId",
    "ExpSetup",
    "FileKey",
    "Timestamp",
    "LegendData",
    "search_disk",
    "Props",
    "PropsDB",
    "ValiditySelection",
    "ValidityTimeline",
]
