# Copyright 2023, Collabora, Ltd.
#
# SPDX-License-Identifier: GPL-3.0-only
"""Install a root certificate into the system trust store."""
import os
import subprocess
import sys
import tempfile

from scm_errors import KeychainError

SYSTEM_KEYCHAIN = "/Library/Keychains/System.keychain"


def install_ca_to_keychain(cert_der: bytes):
    """Add a DER-encoded certificate to the System keychain and always trust it."""
    if sys.platform != "darwin":
        raise KeychainError("Keychain install is only supported on macOS.")

    fd, der_path = tempfile.mkstemp(suffix=".der")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(cert_der)
        print(f"Adding certificate to {SYSTEM_KEYCHAIN}")
        try:
            result = subprocess.run(
                [
                    "security",
                    "add-trusted-cert",
                    "-d",
                    "-r",
                    "trustRoot",
                    "-k",
                    SYSTEM_KEYCHAIN,
                    der_path,
                ],
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as err:
            raise KeychainError("Unable to run the security tool") from err
    finally:
        os.unlink(der_path)

    if result.returncode != 0:
        raise KeychainError(
            f"security add-trusted-cert failed with status {result.returncode}: "
            f"{result.stderr.strip()}"
        )
