#!/usr/bin/env python3
# Copyright 2023, Collabora, Ltd.
#
# SPDX-License-Identifier: GPL-3.0-only
"""Manage local root CAs and sign development server certificates."""
import argparse
from pathlib import Path
import sys

from scm_cert_utils import Issuer, RootCA, load_cert_der
from scm_config import CONFIG_FILENAME, Config, check_profile_name, config_dir
from scm_errors import ConfigurationError, Error
from scm_keychain import install_ca_to_keychain


def _generate_root(config: Config, directory: Path, profile: str):
    """Generate a root CA, persist it and record it under profile."""
    check_profile_name(profile)
    identity = RootCA.generate(profile).into_identity()
    cert_dir = directory / profile
    cert_path, key_path = identity.persist(cert_dir)
    print(f"Root CA generated at {cert_dir}")
    config.insert(profile, cert_path, key_path)


def _install_root(config: Config, profile: str):
    """Install the root CA of profile into the system keychain."""
    cert_der = load_cert_der(config.get(profile).cert)
    install_ca_to_keychain(cert_der)
    print("CA installed and trusted in System keychain.")


def _sign(config: Config, root_ca: str, dns_names: list[str]):
    """Sign a server certificate for dns_names into the current directory."""
    profile = config.get(root_ca)
    issuer = Issuer.load(profile.cert, profile.key)
    identity = issuer.sign(dns_names)
    try:
        cwd = Path.cwd()
    except OSError as err:
        raise ConfigurationError(
            "Can't save certificate because current directory unknown"
        ) from err
    identity.persist(cwd)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    commands = parser.add_subparsers(dest="command", required=True)

    ca_parser = commands.add_parser("ca", help="CA management commands")
    ca_commands = ca_parser.add_subparsers(dest="ca_command", required=True)
    gen_parser = ca_commands.add_parser(
        "gen", help="Generate a root CA and store the certificate and key"
    )
    gen_parser.add_argument("profile", help="Name of the CA profile")
    install_parser = ca_commands.add_parser(
        "install",
        help="Install the CA to the system keychain and trust it (macOS only)",
    )
    install_parser.add_argument("profile", help="Name of the CA profile")

    sign_parser = commands.add_parser(
        "sign", help="Sign a certificate for a domain using a root CA"
    )
    sign_parser.add_argument("root_ca", help="Name of the root CA profile")
    sign_parser.add_argument(
        "--dns",
        action="append",
        default=[],
        help="DNS name to include in the certificate; may be repeated",
    )
    return parser


def _report(err: BaseException):
    print(f"Error: {err}", file=sys.stderr)
    cause = err.__cause__
    while cause is not None:
        print(f"  caused by: {cause}", file=sys.stderr)
        cause = cause.__cause__


def main(argv=None) -> int:
    """Command line entry point."""
    args = _make_parser().parse_args(argv)
    try:
        directory = config_dir()
        config_path = directory / CONFIG_FILENAME
        config = Config.load(config_path)

        if args.command == "ca" and args.ca_command == "gen":
            _generate_root(config, directory, args.profile)
        elif args.command == "ca" and args.ca_command == "install":
            _install_root(config, args.profile)
        elif args.command == "sign":
            _sign(config, args.root_ca, args.dns)

        config.save(config_path)
    except Error as err:
        _report(err)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
