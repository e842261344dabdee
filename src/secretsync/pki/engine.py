# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/secretsync/pki/engine.py

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, ExtensionOID, NameOID

from secretsync.errors import CertControllerError, CryptoError, FormatError
from secretsync.pki.models import (
    CertificateAuthority,
    CredentialRecord,
    LeafCertificate,
    RefreshPlan,
)

log = logging.getLogger("secretsync")

RSA_KEY_SIZE = 2048
# cryptography refuses a zero serial, so the CA takes 1 and the leaf 2.
CA_SERIAL = 1
LEAF_SERIAL = 2

CERT_VALIDITY = timedelta(days=10 * 365)
LOOKAHEAD_INTERVAL = timedelta(days=90)
BACKDATE = timedelta(hours=1)


class CertificateVerificationError(CertControllerError):
    """Base class for chain verification failures."""


class KeyMismatchError(CertificateVerificationError):
    """The private key does not belong to the certificate."""


class CertificateExpiredError(CertificateVerificationError):
    """A certificate in the chain is outside its validity window."""


class UnknownAuthorityError(CertificateVerificationError):
    """The certificate does not chain up to the trusted CA."""


class HostnameMismatchError(CertificateVerificationError):
    """The certificate is not valid for the requested DNS name."""


class UsageError(CertificateVerificationError):
    """Key usage or CA constraints forbid this chain."""


def _utc(at: datetime) -> datetime:
    if at.tzinfo is None:
        return at.replace(tzinfo=timezone.utc)
    return at.astimezone(timezone.utc)


def _now(now: Optional[datetime] = None) -> datetime:
    return _utc(now) if now is not None else datetime.now(timezone.utc)


def _generate_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=RSA_KEY_SIZE)


def _pem_encode(cert: x509.Certificate, key: rsa.RSAPrivateKey) -> tuple[bytes, bytes]:
    cert_pem = cert.public_bytes(serialization.Encoding.PEM)
    # PKCS#1 "RSA PRIVATE KEY" blocks
    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return cert_pem, key_pem


# ---------------------------------------------------------------------
# Issuance
# ---------------------------------------------------------------------
def create_ca_cert(
    begin: datetime,
    end: datetime,
    *,
    ca_name: str,
    organization: str = "",
) -> CertificateAuthority:
    """
    Create a self-signed CA valid in [begin, end].

    Raises CryptoError when the key cannot be generated or the certificate
    cannot be built (for example an inverted time window).
    """
    attrs = []
    if organization:
        attrs.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization))
    attrs.append(x509.NameAttribute(NameOID.COMMON_NAME, ca_name))

    try:
        key = _generate_key()
        name = x509.Name(attrs)
        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(CA_SERIAL)
            .not_valid_before(_utc(begin))
            .not_valid_after(_utc(end))
            .add_extension(x509.SubjectAlternativeName([x509.DNSName(ca_name)]), critical=False)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=True,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=True,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
            .sign(private_key=key, algorithm=hashes.SHA256())
        )
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise CryptoError(f"unable to create CA certificate: {exc}") from exc

    cert_pem, key_pem = _pem_encode(cert, key)
    return CertificateAuthority(cert=cert, key=key, cert_pem=cert_pem, key_pem=key_pem)


def create_leaf_cert(
    ca: CertificateAuthority,
    begin: datetime,
    end: datetime,
    *,
    dns_name: str,
) -> LeafCertificate:
    """Create a serving certificate for ``dns_name`` signed by ``ca``."""
    try:
        key = _generate_key()
        cert = (
            x509.CertificateBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, dns_name)]))
            .issuer_name(ca.cert.subject)
            .public_key(key.public_key())
            .serial_number(LEAF_SERIAL)
            .not_valid_before(_utc(begin))
            .not_valid_after(_utc(end))
            .add_extension(x509.SubjectAlternativeName([x509.DNSName(dns_name)]), critical=False)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=True,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(ca.key.public_key()),
                critical=False,
            )
            .sign(private_key=ca.key, algorithm=hashes.SHA256())
        )
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise CryptoError(f"unable to create serving certificate: {exc}") from exc

    cert_pem, key_pem = _pem_encode(cert, key)
    return LeafCertificate(cert_pem=cert_pem, key_pem=key_pem)


# ---------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------
def _load_certs(pem: Optional[bytes], what: str) -> List[x509.Certificate]:
    if not pem:
        raise FormatError(f"empty {what}")
    try:
        return x509.load_pem_x509_certificates(pem)
    except ValueError as exc:
        raise FormatError(f"bad {what}: {exc}") from exc


def _load_key(pem: Optional[bytes], what: str):
    if not pem:
        raise FormatError(f"empty {what}")
    try:
        return serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise FormatError(f"bad {what}: {exc}") from exc


def load_ca(ca_cert_pem: Optional[bytes], ca_key_pem: Optional[bytes]) -> CertificateAuthority:
    """Rebuild CA artifacts from stored PEM so a new leaf can be signed."""
    cert = _load_certs(ca_cert_pem, "CA certificate")[0]
    key = _load_key(ca_key_pem, "CA key")
    if not isinstance(key, rsa.RSAPrivateKey):
        raise FormatError("CA key is not an RSA key")
    return CertificateAuthority(cert=cert, key=key, cert_pem=ca_cert_pem, key_pem=ca_key_pem)


def certificate_not_after(pem: Optional[bytes]) -> datetime:
    """notAfter of the first certificate in ``pem``; FormatError when unreadable."""
    return _load_certs(pem, "certificate")[0].not_valid_after_utc


# ---------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------
def _spki(public_key) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def _issued_by(child: x509.Certificate, parent: x509.Certificate) -> bool:
    try:
        child.verify_directly_issued_by(parent)
    except (ValueError, TypeError, InvalidSignature, UnsupportedAlgorithm):
        return False
    return True


def _is_ca(cert: x509.Certificate) -> bool:
    try:
        bc = cert.extensions.get_extension_for_oid(ExtensionOID.BASIC_CONSTRAINTS).value
    except x509.ExtensionNotFound:
        return False
    return bc.ca


def _build_chain(
    leaf: x509.Certificate,
    intermediates: List[x509.Certificate],
    root: x509.Certificate,
) -> List[x509.Certificate]:
    """Walk leaf -> intermediates -> root, returning the path."""
    chain = [leaf]
    pool = list(intermediates)
    current = leaf
    while True:
        if current == root:
            return chain
        if _issued_by(current, root):
            chain.append(root)
            return chain
        parent = next((c for c in pool if _issued_by(current, c)), None)
        if parent is None:
            raise UnknownAuthorityError(
                f"certificate signed by unknown authority (issuer {current.issuer.rfc4514_string()})"
            )
        pool.remove(parent)
        chain.append(parent)
        current = parent


def _match_hostname(pattern: str, host: str) -> bool:
    pattern = pattern.lower().rstrip(".")
    host = host.lower().rstrip(".")
    if pattern == host:
        return True
    if pattern.startswith("*."):
        head, _, rest = host.partition(".")
        return bool(head) and rest == pattern[2:]
    return False


def _verify_hostname(cert: x509.Certificate, dns_name: str) -> None:
    try:
        san = cert.extensions.get_extension_for_oid(ExtensionOID.SUBJECT_ALTERNATIVE_NAME).value
        names = san.get_values_for_type(x509.DNSName)
    except x509.ExtensionNotFound:
        names = []
    if not names:
        raise HostnameMismatchError("certificate is not valid for any names")
    if not any(_match_hostname(n, dns_name) for n in names):
        raise HostnameMismatchError(
            f"certificate is valid for {', '.join(names)}, not {dns_name}"
        )


def _verify_usage(cert: x509.Certificate) -> None:
    try:
        eku = cert.extensions.get_extension_for_oid(ExtensionOID.EXTENDED_KEY_USAGE).value
    except x509.ExtensionNotFound:
        return
    allowed = {ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.ANY_EXTENDED_KEY_USAGE}
    if not allowed.intersection(eku):
        raise UsageError("certificate specifies an incompatible key usage")


def verify_chain(
    ca_pem: Optional[bytes],
    cert_pem: Optional[bytes],
    key_pem: Optional[bytes],
    dns_name: str,
    at: datetime,
) -> None:
    """
    Verify that ``cert_pem``/``key_pem`` form a key pair whose certificate
    chains to ``ca_pem`` and is valid for ``dns_name`` at time ``at``.

    ``cert_pem`` may carry intermediates after the leaf. Passing the CA as
    both ``ca_pem`` and ``cert_pem`` (with ``dns_name`` set to the CA name)
    self-checks the CA.

    Raises FormatError for missing or undecodable PEM and a
    CertificateVerificationError subclass when the chain is not valid.
    """
    roots = _load_certs(ca_pem, "CA certificate")
    certs = _load_certs(cert_pem, "certificate")
    key = _load_key(key_pem, "private key")

    leaf, intermediates = certs[0], certs[1:]
    if _spki(leaf.public_key()) != _spki(key.public_key()):
        raise KeyMismatchError("private key does not match public key")

    root = roots[0]
    at = _utc(at)
    chain = _build_chain(leaf, intermediates, root)

    for idx, cert in enumerate(chain):
        if at < cert.not_valid_before_utc or at > cert.not_valid_after_utc:
            raise CertificateExpiredError(
                f"certificate {cert.subject.rfc4514_string()} has expired or is not yet valid: "
                f"current time {at.isoformat()} is outside "
                f"[{cert.not_valid_before_utc.isoformat()}, {cert.not_valid_after_utc.isoformat()}]"
            )
        if idx > 0 and not _is_ca(cert):
            raise UsageError(f"issuer {cert.subject.rfc4514_string()} is not a CA")

    _verify_hostname(leaf, dns_name)
    _verify_usage(leaf)


def validate_chain(
    ca_pem: Optional[bytes],
    cert_pem: Optional[bytes],
    key_pem: Optional[bytes],
    dns_name: str,
    at: datetime,
) -> bool:
    """Boolean form of verify_chain; FormatError still propagates."""
    try:
        verify_chain(ca_pem, cert_pem, key_pem, dns_name, at)
    except CertificateVerificationError as exc:
        log.debug("certificate chain invalid for %s: %s", dns_name, exc)
        return False
    return True


# ---------------------------------------------------------------------
# Rotation
# ---------------------------------------------------------------------
def _stored_chain_valid(
    ca_pem: Optional[bytes],
    cert_pem: Optional[bytes],
    key_pem: Optional[bytes],
    dns_name: str,
    at: datetime,
) -> bool:
    if not (ca_pem and cert_pem and key_pem):
        return False
    try:
        return validate_chain(ca_pem, cert_pem, key_pem, dns_name, at)
    except FormatError as exc:
        log.warning("stored certificate material for %s is unreadable, regenerating: %s", dns_name, exc)
        return False


def needs_refresh(
    record: CredentialRecord,
    lookahead: timedelta = LOOKAHEAD_INTERVAL,
    *,
    ca_name: str,
    dns_name: str,
    now: Optional[datetime] = None,
) -> RefreshPlan:
    at = _now(now) + lookahead
    if not _stored_chain_valid(record.ca_cert, record.ca_cert, record.ca_key, ca_name, at):
        return RefreshPlan(refresh_ca=True)
    if not _stored_chain_valid(record.ca_cert, record.tls_cert, record.tls_key, dns_name, at):
        return RefreshPlan(refresh_leaf=True)
    return RefreshPlan()


def refresh_credentials(
    record: CredentialRecord,
    plan: RefreshPlan,
    *,
    ca_name: str,
    dns_name: str,
    organization: str = "",
    validity: timedelta = CERT_VALIDITY,
    now: Optional[datetime] = None,
) -> CredentialRecord:
    """Return ``record`` with material regenerated according to ``plan``."""
    if not plan.needed:
        return record

    now = _now(now)
    begin = now - BACKDATE
    end = now + validity
    if plan.refresh_ca:
        log.info("generating new CA %s valid until %s", ca_name, end.isoformat())
        ca = create_ca_cert(begin, end, ca_name=ca_name, organization=organization)
    else:
        ca = load_ca(record.ca_cert, record.ca_key)

    log.info("generating serving certificate for %s", dns_name)
    leaf = create_leaf_cert(ca, begin, end, dns_name=dns_name)
    return record.with_material(ca, leaf)
