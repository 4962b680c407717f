# Copyright 2023, Collabora, Ltd.
#
# SPDX-License-Identifier: GPL-3.0-only
"""Configuration directory and the profile registry."""
from dataclasses import dataclass, field
import os
import sys
from pathlib import Path

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from scm_errors import ConfigurationDirNotFound, ConfigurationError, ProfileNotFound

APP_NAME = "scm"
CONFIG_FILENAME = "scm.yml"
CONFIG_DIR_ENV = "SCM_CONFIG_DIR"


def _platform_config_dir() -> Path:
    try:
        home = Path.home()
    except RuntimeError as err:
        raise ConfigurationDirNotFound() from err

    if sys.platform == "darwin":
        return home / "Library" / "Application Support"
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        if not appdata:
            raise ConfigurationDirNotFound()
        return Path(appdata)
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg and os.path.isabs(xdg):
        return Path(xdg)
    return home / ".config"


def check_profile_name(name: str):
    """Reject profile names that cannot be used as a directory under the config dir."""
    separators = {"/", os.sep, os.altsep} - {None}
    if name in ("", ".", "..") or any(sep in name for sep in separators):
        raise ConfigurationError(f"Invalid profile name '{name}'")


def config_dir() -> Path:
    """
    Compute the configuration directory, and ensure it exists.

    SCM_CONFIG_DIR takes precedence over the platform configuration directory.
    """
    override = os.environ.get(CONFIG_DIR_ENV)
    path = Path(override) if override else _platform_config_dir() / APP_NAME
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as err:
        raise ConfigurationError(
            f"Failed to create config directory at {path}"
        ) from err
    return path


@dataclass
class Profile:
    """Where a root CA's certificate and key live."""

    cert: Path
    key: Path


@dataclass
class Config:
    """Registry of named root CA profiles."""

    profiles: dict[str, Profile] = field(default_factory=dict)

    @classmethod
    def load(cls, path) -> "Config":
        """Load the registry from a YAML file; a missing file is an empty registry."""
        path = Path(path)
        if not path.exists():
            return cls()

        yaml = YAML(typ="safe")
        try:
            with open(path, "r", encoding="utf-8") as fp:
                data = yaml.load(fp.read())
        except (OSError, YAMLError) as err:
            raise ConfigurationError(f"Unable to read {path}") from err

        data = data or {}
        try:
            profiles = {
                str(name): Profile(cert=Path(entry["cert"]), key=Path(entry["key"]))
                for name, entry in (data.get("profiles") or {}).items()
            }
        except (AttributeError, KeyError, TypeError) as err:
            raise ConfigurationError(f"Malformed profile registry {path}") from err
        return cls(profiles=profiles)

    def save(self, path):
        """Write the registry to a YAML file, profiles sorted by name."""
        yaml = YAML(typ="safe")
        yaml.default_flow_style = False
        data = {
            "profiles": {
                name: {"cert": str(profile.cert), "key": str(profile.key)}
                for name, profile in sorted(self.profiles.items())
            }
        }
        try:
            with open(path, "w", encoding="utf-8") as fp:
                yaml.dump(data, fp)
        except OSError as err:
            raise ConfigurationError(f"Unable to write {path}") from err

    def get(self, name: str) -> Profile:
        """Look up a profile by name."""
        try:
            return self.profiles[name]
        except KeyError:
            raise ProfileNotFound(name) from None

    def insert(self, name: str, cert_path, key_path):
        """Record a profile, replacing any existing one with the same name."""
        self.profiles[name] = Profile(cert=Path(cert_path), key=Path(key_path))
