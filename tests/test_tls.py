"""Tests for placeholder certificate handling."""
from __future__ import annotations

import stat
from datetime import UTC, datetime, timedelta
from pathlib import Path

from cryptography import x509

from joplinctl.tls import (
    CertificatePair,
    fingerprint,
    load_certificate,
    remove_placeholder,
    seed_placeholder,
)


def test_seed_writes_self_signed_pair(tmp_path: Path) -> None:
    """A missing pair is created for the domain with a private key readable by root only."""
    live = tmp_path / "live" / "notes.example.com"
    now = datetime(2026, 1, 1, tzinfo=UTC)

    assert seed_placeholder(live, "notes.example.com", now=now) is True

    pair = CertificatePair(live)
    assert pair.exists()
    assert pair.is_placeholder()
    assert stat.S_IMODE(pair.private_key.stat().st_mode) == 0o600
    cert = load_certificate(pair.certificate)
    assert cert.subject == cert.issuer
    names = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    assert names.get_values_for_type(x509.DNSName) == ["notes.example.com"]
    assert cert.not_valid_after_utc == now + timedelta(days=30)


def test_seed_keeps_existing_pair(tmp_path: Path) -> None:
    """Existing material is never replaced."""
    live = tmp_path / "live" / "notes.example.com"
    seed_placeholder(live, "notes.example.com")
    before = (live / "fullchain.pem").read_bytes()

    assert seed_placeholder(live, "notes.example.com") is False
    assert (live / "fullchain.pem").read_bytes() == before


def test_remove_deletes_placeholder_directory(tmp_path: Path) -> None:
    """The whole live directory goes so certbot can claim the name."""
    live = tmp_path / "live" / "notes.example.com"
    seed_placeholder(live, "notes.example.com")

    assert remove_placeholder(live) is True
    assert not live.exists()
    assert remove_placeholder(live) is False


def test_replaced_certificate_is_not_a_placeholder(tmp_path: Path) -> None:
    """Copying a different certificate over the placeholder protects it."""
    live = tmp_path / "live" / "notes.example.com"
    other = tmp_path / "other"
    seed_placeholder(live, "notes.example.com")
    seed_placeholder(other, "notes.example.com")
    (live / "fullchain.pem").write_bytes((other / "fullchain.pem").read_bytes())

    assert CertificatePair(live).is_placeholder() is False
    assert remove_placeholder(live) is False
    assert live.is_dir()


def test_directory_without_marker_is_kept(tmp_path: Path) -> None:
    """A pair written by someone else is left alone."""
    live = tmp_path / "live" / "notes.example.com"
    seed_placeholder(live, "notes.example.com")
    (live / ".joplinctl-placeholder").unlink()

    assert remove_placeholder(live) is False


def test_fingerprint_is_sha256_hex(tmp_path: Path) -> None:
    """Fingerprints are 64 hex characters and recorded in the marker."""
    live = tmp_path / "live"
    seed_placeholder(live, "notes.example.com")
    value = fingerprint(load_certificate(live / "fullchain.pem"))

    assert len(value) == 64
    assert (live / ".joplinctl-placeholder").read_text().strip() == value
