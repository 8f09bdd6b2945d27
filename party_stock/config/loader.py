"""
Configuration loader with 3-tier parameter precedence.

Session configuration is resolved from, highest priority first:
1. Overrides passed when the session is created
2. The session's entry in ``config/sessions.yaml`` (or its ``default`` entry)
3. The dataclass defaults in ``defaults.py``
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from ..errors import InvalidConfigError
from .defaults import DefaultConfig, config_to_dict, get_default_config

CONFIG_DIR_ENV = "PARTY_STOCK_CONFIG_DIR"
SESSIONS_FILE = "sessions.yaml"
DEFAULT_ENTRY = "default"


@dataclass(frozen=True)
class ConfigLoader:
    """Resolves per-session configuration dictionaries."""

    config_dir: Path
    defaults: DefaultConfig
    # (mtime, parsed entries) of the last sessions.yaml read
    _cache: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def create(cls, config_dir: Optional[Union[str, Path]] = None) -> "ConfigLoader":
        """
        Create a loader.

        Without an explicit directory, ``$PARTY_STOCK_CONFIG_DIR`` is used,
        then the repository's ``config/`` directory.
        """
        if config_dir is None:
            config_dir = os.environ.get(CONFIG_DIR_ENV) or Path(__file__).parent.parent.parent / "config"

        return cls(config_dir=Path(config_dir), defaults=get_default_config())

    @property
    def sessions_file(self) -> Path:
        return self.config_dir / SESSIONS_FILE

    def session_entries(self) -> dict[str, dict[str, Any]]:
        """
        All entries of sessions.yaml, re-read when the file changes.

        Raises:
            InvalidConfigError: the file is not valid YAML or not a mapping
        """
        try:
            mtime = self.sessions_file.stat().st_mtime
        except FileNotFoundError:
            return {}

        if self._cache.get("mtime") == mtime:
            return self._cache["entries"]

        try:
            with open(self.sessions_file) as f:
                document = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise InvalidConfigError(f"{self.sessions_file}: {e}") from e

        entries = document.get("sessions") if isinstance(document, dict) else None
        if not isinstance(entries, dict):
            raise InvalidConfigError(f"{self.sessions_file}: expected a 'sessions' mapping")

        self._cache.update(mtime=mtime, entries=entries)
        return entries

    def load_session_config(self, session_id: str) -> dict[str, Any]:
        """Overrides for one session, falling back to the default entry."""
        entries = self.session_entries()
        return entries.get(session_id) or entries.get(DEFAULT_ENTRY) or {}

    def merge_config(
        self,
        session_id: str,
        overrides: Optional[dict[str, Any]] = None
    ) -> dict[str, Any]:
        """Merged configuration dictionary for a session."""
        config = config_to_dict(self.defaults)
        config = deep_merge(config, self.load_session_config(session_id))
        if overrides:
            config = deep_merge(config, overrides)
        return config


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into a copy of base; non-dict values replace."""
    result = dict(base)
    for key, value in override.items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = value
    return result
