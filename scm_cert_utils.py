# Copyright 2023, Collabora, Ltd.
#
# SPDX-License-Identifier: GPL-3.0-only
"""Root CA generation, persistence and leaf certificate signing."""
from dataclasses import dataclass
import datetime
import ipaddress
import os
import stat
from typing import Optional, Sequence, Union
from pathlib import Path

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa
from cryptography.hazmat.primitives import hashes

from scm_errors import CertificateError, ConfigurationError

LEAF_DURATION = 825
"""Number of days a signed leaf certificate stays valid."""

ROOT_NOT_BEFORE = datetime.datetime(1975, 1, 1, tzinfo=datetime.timezone.utc)
ROOT_NOT_AFTER = datetime.datetime(4096, 1, 1, tzinfo=datetime.timezone.utc)

CERT_FILENAME = "crt.pem"
KEY_FILENAME = "key.pem"

CERT_MODE = 0o644
KEY_MODE = 0o600

SigningKey = Union[
    ec.EllipticCurvePrivateKey, rsa.RSAPrivateKey, ed25519.Ed25519PrivateKey
]

_KEY_USAGE_CA = x509.KeyUsage(
    digital_signature=False,
    content_commitment=False,
    key_encipherment=False,
    data_encipherment=False,
    key_agreement=False,
    key_cert_sign=True,
    crl_sign=True,
    encipher_only=False,
    decipher_only=False,
)

_KEY_USAGE_SERVER = x509.KeyUsage(
    digital_signature=True,
    content_commitment=False,
    key_encipherment=True,
    data_encipherment=False,
    key_agreement=False,
    key_cert_sign=False,
    crl_sign=False,
    encipher_only=False,
    decipher_only=False,
)

_EXTENDED_KEY_USAGE_SERVER = x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH])


@dataclass(frozen=True)
class _PemPath:
    path: Path

    def __post_init__(self):
        object.__setattr__(self, "path", Path(self.path))

    def __fspath__(self) -> str:
        return os.fspath(self.path)

    def __str__(self) -> str:
        return str(self.path)


class CertPath(_PemPath):
    """Location of a PEM-encoded certificate."""


class KeyPath(_PemPath):
    """Location of a PEM-encoded private key."""


def make_x509_name(common_name: str) -> x509.Name:
    """Make a distinguished name holding only a common name."""
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def generate_private_key() -> ec.EllipticCurvePrivateKey:
    """Generate an ECDSA P-256 key."""
    return ec.generate_private_key(ec.SECP256R1())


def _signing_hash(key: SigningKey) -> Optional[hashes.HashAlgorithm]:
    # Ed25519 signs the message directly.
    if isinstance(key, ed25519.Ed25519PrivateKey):
        return None
    return hashes.SHA256()


def _public_key_der(public_key) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def _make_general_name(name: str) -> x509.GeneralName:
    """Make an IP address SAN for IP literals, a DNS name SAN otherwise."""
    if not isinstance(name, str):
        raise TypeError(f"SAN entries must be strings, not {type(name).__name__}")
    try:
        return x509.IPAddress(ipaddress.ip_address(name))
    except ValueError:
        return x509.DNSName(name)


def _compute_dates(
    default_days=LEAF_DURATION,
    not_before: Optional[datetime.datetime] = None,
) -> tuple[datetime.datetime, datetime.datetime]:
    if not_before is None:
        not_before = datetime.datetime.now(datetime.timezone.utc).replace(
            microsecond=0
        )
    return (not_before, not_before + datetime.timedelta(days=default_days))


def _write_pem(path: Path, data: bytes, mode: int):
    if os.name != "posix":
        # No permission bits to set here; the platform defaults apply.
        with open(path, "wb") as f:
            f.write(data)
        return

    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, "wb") as f:
        # The mode passed to os.open only applies to newly created files.
        if stat.S_IMODE(os.fstat(fd).st_mode) != mode:
            os.fchmod(fd, mode)
        f.write(data)


def load_cert_der(cert_path) -> bytes:
    """Read a PEM certificate file and return the DER encoding of the certificate."""
    try:
        pem = Path(cert_path).read_bytes()
    except OSError as err:
        raise ConfigurationError(f"Unable to read certificate {cert_path}") from err
    try:
        cert = x509.load_pem_x509_certificate(pem)
    except ValueError as err:
        raise CertificateError(f"{cert_path} is not a PEM certificate") from err
    return cert.public_bytes(serialization.Encoding.DER)


@dataclass
class Identity:
    """A certificate together with its private key."""

    cert: x509.Certificate
    key: SigningKey

    def cert_pem(self) -> bytes:
        """Serialize the certificate as PEM."""
        return self.cert.public_bytes(encoding=serialization.Encoding.PEM)

    def key_pem(self) -> bytes:
        """Serialize the private key as unencrypted PKCS#8 PEM."""
        return self.key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )

    def persist(self, directory) -> tuple[CertPath, KeyPath]:
        """
        Write crt.pem and key.pem into directory, creating it if needed.

        Existing files with those names are overwritten. On POSIX systems the
        certificate is created readable by everyone (0644) and the key readable
        by its owner only (0600). On other platforms both files get the default
        permissions.

        Nothing is rolled back: if writing the key fails, the certificate
        stays on disk.
        """
        directory = Path(directory)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as err:
            raise ConfigurationError(
                f"Unable to create directory {directory}"
            ) from err

        cert_path = directory / CERT_FILENAME
        key_path = directory / KEY_FILENAME
        for path, data, mode in (
            (cert_path, self.cert_pem(), CERT_MODE),
            (key_path, self.key_pem(), KEY_MODE),
        ):
            print(f"Writing {path}")
            try:
                _write_pem(path, data, mode)
            except OSError as err:
                raise ConfigurationError(f"Unable to write {path}") from err
        return CertPath(cert_path), KeyPath(key_path)


@dataclass
class RootCA:
    """A freshly generated, self-signed certificate authority."""

    cert: x509.Certificate
    key: SigningKey

    @classmethod
    def generate(
        cls,
        name: str,
        not_before: Optional[datetime.datetime] = None,
        not_after: Optional[datetime.datetime] = None,
    ) -> "RootCA":
        """Generate a private key and self-signed cert for a new root CA."""
        try:
            subject = make_x509_name(f"{name} Root CA")

            print("Generating private key")
            key = generate_private_key()

            # self signed
            # issuer = subject

            print(f"Making and signing certificate for {subject.rfc4514_string()}")
            basic_constraints = x509.BasicConstraints(ca=True, path_length=None)
            ski = x509.SubjectKeyIdentifier.from_public_key(key.public_key())

            if not_before is None:
                not_before = ROOT_NOT_BEFORE
            if not_after is None:
                not_after = ROOT_NOT_AFTER

            print(f"Not valid before {not_before}, not valid after {not_after}")
            cert = (
                x509.CertificateBuilder()
                .subject_name(subject)
                .issuer_name(subject)
                .public_key(key.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(not_before)
                .not_valid_after(not_after)
                .add_extension(ski, False)
                .add_extension(basic_constraints, True)
                .add_extension(_KEY_USAGE_CA, True)
            ).sign(key, algorithm=hashes.SHA256())
        except (ValueError, TypeError, UnsupportedAlgorithm) as err:
            raise CertificateError(f"Unable to generate root CA '{name}'") from err

        return cls(cert=cert, key=key)

    def into_identity(self) -> Identity:
        """Turn this CA into an Identity that can be persisted."""
        return Identity(cert=self.cert, key=self.key)


class Issuer:
    """A loaded certificate authority that signs server certificates."""

    def __init__(self, cert: x509.Certificate, key: SigningKey):
        self.cert = cert
        self.key = key

    @classmethod
    def load(cls, cert_path, key_path) -> "Issuer":
        """
        Load a CA from its PEM certificate and private key files.

        Raises CertificateError if a file cannot be read or parsed, if the key
        cannot sign, if it does not belong to the certificate, or if the
        certificate is not a CA certificate.
        """
        print(f"Loading CA certificate from {cert_path} and key from {key_path}")
        try:
            cert_pem = Path(cert_path).read_text(encoding="utf-8")
            key_pem = Path(key_path).read_text(encoding="utf-8")
        except (OSError, ValueError) as err:
            raise CertificateError(
                f"Unable to read {cert_path} or {key_path}"
            ) from err

        try:
            cert = x509.load_pem_x509_certificate(cert_pem.encode("utf-8"))
        except ValueError as err:
            raise CertificateError(f"{cert_path} is not a PEM certificate") from err
        try:
            key = serialization.load_pem_private_key(
                key_pem.encode("utf-8"), password=None
            )
        except (ValueError, TypeError, UnsupportedAlgorithm) as err:
            raise CertificateError(f"{key_path} is not a PEM private key") from err

        if not isinstance(
            key,
            (ec.EllipticCurvePrivateKey, rsa.RSAPrivateKey, ed25519.Ed25519PrivateKey),
        ):
            raise CertificateError(f"{key_path} does not hold a signing key")
        if _public_key_der(key.public_key()) != _public_key_der(cert.public_key()):
            raise CertificateError(f"{key_path} does not match {cert_path}")

        try:
            basic_constraints = cert.extensions.get_extension_for_class(
                x509.BasicConstraints
            ).value
        except x509.ExtensionNotFound:
            basic_constraints = None
        if basic_constraints is None or not basic_constraints.ca:
            raise CertificateError(f"{cert_path} is not a CA certificate")

        return cls(cert=cert, key=key)

    def _authority_key_identifier(self) -> x509.AuthorityKeyIdentifier:
        try:
            ski = self.cert.extensions.get_extension_for_class(
                x509.SubjectKeyIdentifier
            ).value
        except x509.ExtensionNotFound:
            return x509.AuthorityKeyIdentifier.from_issuer_public_key(
                self.key.public_key()
            )
        return x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ski)

    def sign(
        self,
        dns_names: Sequence[str],
        now: Optional[datetime.datetime] = None,
    ) -> Identity:
        """
        Issue a server certificate for dns_names with a brand-new key.

        The certificate has an empty subject; the names are carried, in order,
        as subject alternative names. It is valid from now for LEAF_DURATION
        days. now defaults to the current time.
        """
        if isinstance(dns_names, (str, bytes)):
            raise CertificateError(
                f"Expected a sequence of DNS names, not the single name {dns_names!r}"
            )
        dns_names = list(dns_names)
        print(f"Signing certificate for {', '.join(map(str, dns_names))}")
        try:
            general_names = [_make_general_name(name) for name in dns_names]
        except (ValueError, TypeError) as err:
            raise CertificateError(f"Invalid DNS name in {dns_names}") from err

        not_before, not_after = _compute_dates(LEAF_DURATION, not_before=now)
        print(f"Not valid before {not_before}, not valid after {not_after}")

        try:
            print("Generating private key")
            key = generate_private_key()
            public_key = key.public_key()

            builder = (
                x509.CertificateBuilder()
                .subject_name(x509.Name([]))
                .issuer_name(self.cert.subject)
                .public_key(public_key)
                # not a CA
                .add_extension(x509.BasicConstraints(ca=False, path_length=None), True)
                # server only
                .add_extension(_KEY_USAGE_SERVER, True)
                .add_extension(_EXTENDED_KEY_USAGE_SERVER, False)
                # subject key
                .add_extension(
                    x509.SubjectKeyIdentifier.from_public_key(public_key), False
                )
                # authority key
                .add_extension(self._authority_key_identifier(), False)
                .serial_number(x509.random_serial_number())
                .not_valid_before(not_before)
                .not_valid_after(not_after)
            )
            if general_names:
                # An empty subject makes the SAN extension critical.
                builder = builder.add_extension(
                    x509.SubjectAlternativeName(general_names), True
                )
            cert = builder.sign(self.key, algorithm=_signing_hash(self.key))
        except (ValueError, TypeError, UnsupportedAlgorithm) as err:
            raise CertificateError("Unable to sign certificate") from err

        return Identity(cert=cert, key=key)
