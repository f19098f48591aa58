"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration of the ``oauthspa``
command-line host:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.oauthspa/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_data_dir`, :func:`get_profiles_dir`, :func:`get_storage_dir`.
* **Global config** -- A single :class:`~oauthspa.models.GlobalConfig`
  JSON file storing defaults.
* **Profiles** -- One JSON file per provider, each deserialised into a
  :class:`~oauthspa.models.Profile` holding a
  :class:`~oauthspa.models.ClientConfig`.
* **Token storage** -- :func:`open_token_storage` returns the
  :class:`~oauthspa.storage.FileStore` a profile's tokens live in.
* **Precedence resolution** -- :func:`resolve_profile` picks the active
  profile from the CLI flag, ``OAUTHSPA_PROFILE``, the global default, or
  the only profile there is.

All config writes use an atomic temp-file-then-rename strategy
(:func:`~oauthspa.storage.atomic_write`).
"""

from __future__ import annotations

import json
import os
import platform
from pathlib import Path
from typing import Optional

from oauthspa.exceptions import ConfigError
from oauthspa.models import GlobalConfig, Profile
from oauthspa.storage import FileStore, atomic_write

_APP_NAME = "oauthspa"
_CONFIG_FILENAME = "config.json"
PROFILE_ENV_VAR = "OAUTHSPA_PROFILE"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/oauthspa/`` (default ``~/.config/oauthspa/``).
    On macOS/Windows: ``~/.oauthspa/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (token storage, crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/oauthspa/`` (default ``~/.local/share/oauthspa/``).
    On macOS/Windows: ``~/.oauthspa/data/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_profiles_dir() -> Path:
    path = get_config_dir() / "profiles"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_storage_dir() -> Path:
    path = get_data_dir() / "storage"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Global config ---


def _global_config_path() -> Path:
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Load the global configuration.

    Returns:
        The stored :class:`~oauthspa.models.GlobalConfig`, or a default
        instance when no file exists.

    Raises:
        ConfigError: If the file contains invalid JSON or fails validation.
    """
    path = _global_config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    data = config.model_dump(mode="json")
    atomic_write(_global_config_path(), json.dumps(data, indent=2) + "\n")


# --- Profiles ---


def _profile_path(name: str) -> Path:
    return get_profiles_dir() / f"{name}.json"


def list_profiles() -> list[str]:
    """Return all profile names, sorted alphabetically."""
    return sorted(p.stem for p in get_profiles_dir().glob("*.json") if p.is_file())


def load_profile(name: str) -> Profile:
    """Load and validate a profile from disk.

    Raises:
        ConfigError: If the profile does not exist, contains invalid JSON,
            or fails validation (e.g. two user-info resources).
    """
    path = _profile_path(name)
    if not path.is_file():
        raise ConfigError(f"Profile '{name}' not found at {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return Profile.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid profile '{name}' at {path}: {exc}") from exc


def save_profile(profile: Profile) -> None:
    data = profile.model_dump(mode="json")
    atomic_write(_profile_path(profile.name), json.dumps(data, indent=2) + "\n")


def delete_profile(name: str) -> None:
    """Delete a profile and its token storage.

    Raises:
        ConfigError: If the profile does not exist.
    """
    path = _profile_path(name)
    if not path.is_file():
        raise ConfigError(f"Profile '{name}' not found at {path}")
    path.unlink()
    open_token_storage(name).clear()


def profile_exists(name: str) -> bool:
    return _profile_path(name).is_file()


def open_token_storage(profile_name: str) -> FileStore:
    """Return the token store file for *profile_name*."""
    return FileStore(get_storage_dir() / f"{profile_name}.json")


# --- Precedence resolution ---


def resolve_profile(cli_profile: Optional[str] = None) -> Profile:
    """Resolve the active profile.

    Precedence (high to low):
        1. CLI flag (``cli_profile``)
        2. Environment variable ``OAUTHSPA_PROFILE``
        3. ``default_profile`` in the global config
        4. The only existing profile, if ``auto_select_single_profile``

    Raises:
        ConfigError: If no profile can be determined or it fails to load.
    """
    global_cfg = load_global_config()

    resolved: Optional[str] = global_cfg.default_profile
    env_profile = os.environ.get(PROFILE_ENV_VAR)
    if env_profile:
        resolved = env_profile
    if cli_profile is not None:
        resolved = cli_profile

    if resolved is None and global_cfg.auto_select_single_profile:
        profiles = list_profiles()
        if len(profiles) == 1:
            resolved = profiles[0]

    if resolved is None:
        raise ConfigError(
            "No profile selected. Pass --profile, set OAUTHSPA_PROFILE, "
            "or create one with 'oauthspa profile add'."
        )
    return load_profile(resolved)
