"""Placeholder TLS material for the proxy before a real certificate exists.

nginx refuses to start when ``ssl_certificate`` points at a missing file, so a
fresh stack gets a short-lived self-signed pair in the certificate directory.
The pair is tagged with a marker file; only tagged directories are ever
removed, which keeps operator-supplied and certbot-managed material safe.
"""
from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from .templates import write_atomic

LOGGER = logging.getLogger(__name__)

CERTIFICATE_NAME = "fullchain.pem"
PRIVATE_KEY_NAME = "privkey.pem"
PLACEHOLDER_MARKER = ".joplinctl-placeholder"
PLACEHOLDER_DAYS = 30


class TLSError(RuntimeError):
    """Raised when placeholder material cannot be written or removed."""


@dataclass(frozen=True, slots=True)
class CertificatePair:
    """Certificate and key paths inside one live directory."""

    directory: Path

    @property
    def certificate(self) -> Path:
        return self.directory / CERTIFICATE_NAME

    @property
    def private_key(self) -> Path:
        return self.directory / PRIVATE_KEY_NAME

    @property
    def marker(self) -> Path:
        return self.directory / PLACEHOLDER_MARKER

    def exists(self) -> bool:
        """Return ``True`` when both files are present."""
        return self.certificate.is_file() and self.private_key.is_file()

    def is_placeholder(self) -> bool:
        """Return ``True`` when the pair on disk is still the seeded one.

        The marker records the placeholder's fingerprint, so certificates an
        operator copies over the placeholder are not mistaken for it.
        """
        if not (self.marker.is_file() and self.certificate.is_file()):
            return False
        try:
            current = fingerprint(load_certificate(self.certificate))
        except (OSError, ValueError):
            return False
        return self.marker.read_text(encoding="utf-8").strip() == current


def _self_signed(domain: str, *, days: int, now: datetime) -> tuple[x509.Certificate, bytes]:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)])
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=days))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(domain)]), critical=False)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return cert, key_pem


def seed_placeholder(
    directory: Path,
    domain: str,
    *,
    days: int = PLACEHOLDER_DAYS,
    now: datetime | None = None,
) -> bool:
    """Write a self-signed pair into *directory* unless a pair already exists.

    Returns ``True`` when new material was written.
    """
    pair = CertificatePair(directory)
    if pair.exists():
        return False
    cert, key_pem = _self_signed(domain, days=days, now=now or datetime.now(UTC))
    cert_pem = cert.public_bytes(serialization.Encoding.PEM)
    try:
        directory.mkdir(parents=True, exist_ok=True)
        write_atomic(pair.private_key, key_pem.decode("ascii"), mode=0o600)
        write_atomic(pair.certificate, cert_pem.decode("ascii"), mode=0o644)
        write_atomic(pair.marker, f"{fingerprint(cert)}\n", mode=0o644)
    except OSError as exc:
        raise TLSError(f"Could not write placeholder certificate in {directory}: {exc}") from exc
    LOGGER.info("Seeded placeholder certificate for %s in %s", domain, directory)
    return True


def remove_placeholder(directory: Path) -> bool:
    """Delete *directory* when it holds placeholder material.

    Returns ``True`` when something was removed.
    """
    pair = CertificatePair(directory)
    if not pair.is_placeholder():
        return False
    try:
        shutil.rmtree(directory)
    except OSError as exc:
        raise TLSError(f"Could not remove placeholder certificate in {directory}: {exc}") from exc
    LOGGER.info("Removed placeholder certificate in %s", directory)
    return True


def load_certificate(path: Path) -> x509.Certificate:
    """Return the certificate stored at *path* (PEM or DER)."""
    data = path.read_bytes()
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError:
        return x509.load_der_x509_certificate(data)


def fingerprint(cert: x509.Certificate) -> str:
    """Return the SHA-256 fingerprint of *cert* as lowercase hex."""
    return cert.fingerprint(hashes.SHA256()).hex()


__all__ = [
    "CertificatePair",
    "TLSError",
    "fingerprint",
    "load_certificate",
    "remove_placeholder",
    "seed_placeholder",
]
