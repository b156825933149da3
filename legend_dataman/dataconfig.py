"""Data location configuration: map symbolic path prefixes to directories.

A configuration document looks like this (JSON or YAML):

```yaml
setups:
  l200:
    paths:
      tier/raw: /data/raw        # hierarchical key
      metadata: $_/metadata      # `$_` is the directory of this document
      tier_dsp: ${PRODENV}/dsp   # legacy key, environment variable
```
"""
from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Tuple, Union

from pydantic import BaseModel, ConfigDict

from .errors import MissingEnvironmentError, PathNotConfiguredError
from .filekey import DataSelector, ExpSetup
from .props.reader import load_file
from .util import deep_merge

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "LEGEND_DATA_CONFIG"

PathPrefix = Tuple[str, ...]
PathComponent = Union[str, Path, DataSelector]
ConfigSource = Union[str, Path, Mapping[str, Any]]


def _split_config_key(key: str) -> PathPrefix:
    key = key.replace("\\", "/")
    # legacy format uses underscores between the components
    return tuple(key.split("/") if "/" in key else key.split("_"))


def _split_query(components: Iterable[PathComponent]) -> PathPrefix:
    ret: List[str] = []
    for c in components:
        ret += [s for s in str(c).replace("\\", "/").split("/") if s]
    return tuple(ret)


class SetupConfig(BaseModel):
    """Data paths of one experimental setup."""

    model_config = ConfigDict(frozen=True)

    paths: List[Tuple[PathPrefix, str]]
    """Path prefixes and their target directories, sorted by prefix."""

    @classmethod
    def from_props(cls, props: Mapping[str, Any]) -> SetupConfig:
        """Create from the `paths` mapping of a configuration document."""
        paths_props = props.get("paths")
        if not isinstance(paths_props, Mapping):
            raise PathNotConfiguredError("paths")
        paths = [(_split_config_key(str(k)), str(v)) for k, v in paths_props.items()]
        return cls(paths=sorted(paths))

    def _match(self, query: PathPrefix):
        for prefix, target in reversed(self.paths):
            if query[: len(prefix)] == prefix:
                return prefix, target
        return None

    def resolve(self, *components: PathComponent) -> Path:
        """Return the absolute location of a path given as a list of components.

        Components can be single path segments or `/`-separated paths.
        """
        query = _split_query(components)
        found = self._match(query)
        if found is None and len(query) == 1 and "_" in query[0]:
            query = tuple(query[0].split("_"))
            found = self._match(query)
        if found is None:
            raise PathNotConfiguredError("/".join(query))

        prefix, target = found
        return Path(target, *query[len(prefix) :])


_SUBST_RE = re.compile(r"\$(?:\{([A-Za-z_][A-Za-z0-9_]*)\}|([A-Za-z_][A-Za-z0-9_]*))")


def _substitute(value: Any, config_dir: str) -> Any:
    """Expand `$_` and environment variables in all strings of a tree."""
    if isinstance(value, dict):
        return {k: _substitute(v, config_dir) for k, v in value.items()}
    if isinstance(value, list):
        return [_substitute(v, config_dir) for v in value]
    if not isinstance(value, str):
        return value

    def repl(m: re.Match) -> str:
        name = m.group(1) or m.group(2)
        if name == "_":
            return config_dir
        if name not in os.environ:
            msg = f"Environment variable {name} used in configuration is not set"
            raise MissingEnvironmentError(name, msg)
        return os.environ[name]

    return _SUBST_RE.sub(repl, value)


def _read_source(source: ConfigSource) -> Dict[str, Any]:
    if isinstance(source, Mapping):
        return _substitute(dict(source), os.getcwd())
    path = Path(source).resolve()
    logger.debug("Reading data configuration from %s", path)
    return _substitute(load_file(path), str(path.parent))


class LegendDataConfig(BaseModel):
    """Data configuration for several experimental setups."""

    model_config = ConfigDict(frozen=True)

    setups: Dict[ExpSetup, SetupConfig] = {}

    def __getitem__(self, setup: Union[str, ExpSetup]) -> SetupConfig:
        key = ExpSetup.parse(setup)
        if key not in self.setups:
            raise PathNotConfiguredError(f"setup {key}")
        return self.setups[key]

    @classmethod
    def from_props(cls, props: Mapping[str, Any]) -> LegendDataConfig:
        setups = props.get("setups") or {}
        return cls(
            setups={
                ExpSetup.parse(k): SetupConfig.from_props(v) for k, v in setups.items()
            }
        )

    @classmethod
    def from_env(cls) -> LegendDataConfig:
        """Load the configuration files listed in `$LEGEND_DATA_CONFIG`.

        The variable holds a colon-separated list of files,
        files listed first take precedence.
        """
        value = os.environ.get(CONFIG_ENV_VAR, "")
        files = [f for f in value.split(":") if f]
        if not files:
            raise MissingEnvironmentError(CONFIG_ENV_VAR)
        return load_config(list(reversed(files)))


def load_config(sources: Iterable[ConfigSource]) -> LegendDataConfig:
    """Load and merge configuration sources, later sources override earlier ones."""
    props: Dict[str, Any] = {}
    for source in sources:
        props = deep_merge(props, _read_source(source))
    return LegendDataConfig.from_props(props)
