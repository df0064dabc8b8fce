"""Where mirrorsync settings come from.

Sources, lowest precedence first:

1. Defaults declared in ``config_schema``
2. ``~/.mirrorsync/config.toml``
3. The file named by ``MIRRORSYNC_CONFIG``, or else the nearest
   ``.mirrorsync/config.toml`` at or above the project directory
4. ``MIRRORSYNC_<SECTION>_<FIELD>`` environment variables, e.g.
   ``MIRRORSYNC_CLONE_FULL_CLONE=true`` or ``MIRRORSYNC_GIT_NO_VERIFY=push``

Any file may hold per-repository tables::

    [repositories."org/repo"]
    clone = { full_clone = true }

When a repository name is passed to ``load_config`` its table is merged over
the rest of that same file.
"""

from __future__ import annotations

import os
import sys
import threading
import typing
import warnings
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from pydantic import BaseModel, ValidationError

from .config_schema import MirrorConfig


CONFIG_FILENAME = "config.toml"
CONFIG_DIRNAME = ".mirrorsync"
ENV_PREFIX = "MIRRORSYNC_"
ENV_CONFIG_FILE = "MIRRORSYNC_CONFIG"
REPOSITORIES_TABLE = "repositories"


class ConfigError(Exception):
    """Invalid configuration file, environment value or setting."""


def _env_bindings() -> Dict[str, Tuple[str, str, Any]]:
    """``MIRRORSYNC_<SECTION>_<FIELD>`` -> (section, field, annotation), from the schema."""
    bindings: Dict[str, Tuple[str, str, Any]] = {}
    for section, section_field in MirrorConfig.model_fields.items():
        model = section_field.annotation
        if not (isinstance(model, type) and issubclass(model, BaseModel)):
            continue
        for name, field in model.model_fields.items():
            env_var = f"{ENV_PREFIX}{section}_{name}".upper()
            bindings[env_var] = (section, name, field.annotation)
    return bindings


ENV_BINDINGS = _env_bindings()


def _parse_env_value(raw: str, annotation: Any) -> Any:
    """Turn an environment string into the shape the schema field expects.

    Lists are comma separated; mappings are ``key=value`` pairs separated by
    commas. Scalars are left as strings for pydantic to coerce.
    """
    origin = typing.get_origin(annotation)
    items = [item.strip() for item in raw.split(",") if item.strip()]
    if origin is list:
        return items
    if origin is dict:
        pairs: Dict[str, str] = {}
        for item in items:
            key, sep, value = item.partition("=")
            if not sep:
                raise ConfigError(f"Expected key=value in {raw!r}")
            pairs[key.strip()] = value.strip()
        return pairs
    return raw


def _user_config_path() -> Path:
    return Path.home() / CONFIG_DIRNAME / CONFIG_FILENAME


def _project_config_path(project_path: Optional[Path] = None) -> Optional[Path]:
    """The config file that applies to ``project_path`` (default: cwd), if any."""
    explicit = os.getenv(ENV_CONFIG_FILE)
    if explicit:
        path = Path(explicit).expanduser()
        if not path.is_file():
            raise ConfigError(f"{ENV_CONFIG_FILE} points to a missing file: {path}")
        return path

    start = (project_path or Path.cwd()).resolve()
    user_dir = _user_config_path().parent
    for directory in (start, *start.parents):
        config_dir = directory / CONFIG_DIRNAME
        if config_dir == user_dir:
            continue
        candidate = config_dir / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def _read_toml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return ``base`` updated with ``override``; nested tables merge, lists replace."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def _file_layer(data: Dict[str, Any], repository: Optional[str]) -> Dict[str, Any]:
    """A parsed file with its matching repository table folded in."""
    data = dict(data)
    tables = data.pop(REPOSITORIES_TABLE, {}) or {}
    if not isinstance(tables, dict):
        raise ConfigError(f"[{REPOSITORIES_TABLE}] must be a table")
    if repository and repository in tables:
        data = _deep_merge(data, tables[repository])
    return data


def _env_layer(environ: Optional[typing.Mapping[str, str]] = None) -> Dict[str, Any]:
    environ = os.environ if environ is None else environ
    layer: Dict[str, Any] = {}
    for env_var, (section, name, annotation) in ENV_BINDINGS.items():
        raw = environ.get(env_var)
        if raw is None:
            continue
        layer.setdefault(section, {})[name] = _parse_env_value(raw, annotation)
    return layer


def load_config(
    project_path: Optional[Path] = None,
    skip_env: bool = False,
    repository: Optional[str] = None,
) -> MirrorConfig:
    """Build the effective configuration.

    An unreadable user file only warns, since it is shared by every project;
    a broken project file or environment value is an error.

    Raises:
        ConfigError: Invalid project file, environment value or setting
    """
    merged: Dict[str, Any] = {}

    user_path = _user_config_path()
    if user_path.is_file():
        try:
            merged = _deep_merge(merged, _file_layer(_read_toml(user_path), repository))
        except ConfigError as e:
            warnings.warn(f"Skipping invalid user config at {user_path}: {e}", UserWarning)

    project_file = _project_config_path(project_path)
    if project_file is not None:
        merged = _deep_merge(merged, _file_layer(_read_toml(project_file), repository))

    if not skip_env:
        merged = _deep_merge(merged, _env_layer())

    try:
        return MirrorConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(f"Config validation failed:\n{e}") from e


_cache: Dict[Tuple[Optional[Path], Optional[str]], MirrorConfig] = {}
_cache_lock = threading.Lock()


def get_config(
    project_path: Optional[Path] = None,
    force_reload: bool = False,
    repository: Optional[str] = None,
) -> MirrorConfig:
    """Process-wide cached ``load_config`` keyed by project path and repository."""
    key = (project_path.resolve() if project_path else None, repository)
    with _cache_lock:
        if force_reload or key not in _cache:
            _cache[key] = load_config(project_path, repository=repository)
        return _cache[key]


def clear_config_cache() -> None:
    with _cache_lock:
        _cache.clear()
