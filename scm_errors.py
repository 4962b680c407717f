# Copyright 2023, Collabora, Ltd.
#
# SPDX-License-Identifier: GPL-3.0-only
"""Errors raised by the local certificate authority."""


class Error(Exception):
    """Base class for exceptions raised by scm."""


class ConfigurationError(Error):
    """A problem with the configuration directory, the profile registry, or writing files."""


class ConfigurationDirNotFound(ConfigurationError):
    """The default configuration directory could not be determined."""

    def __init__(self):
        super().__init__("Unable to find the default configuration directory")


class ProfileNotFound(ConfigurationError):
    """No profile with the requested name exists in the registry."""

    def __init__(self, name: str):
        super().__init__(f"Profile '{name}' not found in the configuration")
        self.name = name


class CertificateError(Error):
    """Key generation, certificate construction, PEM parsing or signing failed."""


class KeychainError(Error):
    """Installing a certificate into the system trust store failed."""
