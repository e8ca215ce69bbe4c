"""
TLS Primitives

Thin helpers over the cryptography x509 API: key generation, CA and leaf
issuance, PEM encoding and the checks the certificate manager uses to
decide whether stored material can be reused.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Tuple

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from ..core.utils import compute_hash

logger = logging.getLogger(__name__)

PUBLIC_EXPONENT = 65537
# Backdate notBefore to tolerate clock skew between nodes
CLOCK_SKEW = timedelta(minutes=5)


def generate_private_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    """Generate a new RSA private key"""
    return rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=key_size)


def private_key_to_pem(key: rsa.RSAPrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def certificate_to_pem(certificate: x509.Certificate) -> bytes:
    return certificate.public_bytes(serialization.Encoding.PEM)


def load_certificate(pem: bytes) -> x509.Certificate:
    """
    Parse the first certificate of a PEM blob.

    Raises:
        ValueError: If the data does not hold a PEM certificate
    """
    return x509.load_pem_x509_certificate(pem)


def load_private_key(pem: bytes) -> rsa.RSAPrivateKey:
    """
    Parse an unencrypted PEM private key.

    Raises:
        ValueError: If the data does not hold an RSA private key
    """
    key = serialization.load_pem_private_key(pem, password=None)
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValueError("only RSA private keys are supported")
    return key


def fingerprint(pem: bytes) -> str:
    """SHA-256 hex digest of PEM material, ignoring surrounding whitespace"""
    return compute_hash(pem.strip())


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def _validity(validity_days: int, now: Optional[datetime]) -> Tuple[datetime, datetime]:
    start = (now or datetime.now(timezone.utc)) - CLOCK_SKEW
    return start, start + CLOCK_SKEW + timedelta(days=validity_days)


def create_ca_certificate(key: rsa.RSAPrivateKey, common_name: str, validity_days: int,
                          now: Optional[datetime] = None) -> x509.Certificate:
    """Create a self-signed signing authority certificate"""
    not_before, not_after = _validity(validity_days, now)
    subject = _name(common_name)
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True, content_commitment=False, key_encipherment=False,
                data_encipherment=False, key_agreement=False, key_cert_sign=True,
                crl_sign=True, encipher_only=False, decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .sign(key, hashes.SHA256())
    )


def issue_certificate(key: rsa.RSAPrivateKey, dns_names: Iterable[str], validity_days: int,
                      issuer_certificate: Optional[x509.Certificate] = None,
                      issuer_key: Optional[rsa.RSAPrivateKey] = None,
                      now: Optional[datetime] = None) -> x509.Certificate:
    """
    Issue a server/client leaf certificate for ``dns_names``.

    The first DNS name becomes the subject common name. Without an issuer the
    certificate is self-signed.
    """
    names = list(dns_names)
    if not names:
        raise ValueError("at least one DNS name is required")

    not_before, not_after = _validity(validity_days, now)
    issuer_name = issuer_certificate.subject if issuer_certificate is not None else _name(names[0])
    signing_key = issuer_key if issuer_key is not None else key

    builder = (
        x509.CertificateBuilder()
        .subject_name(_name(names[0]))
        .issuer_name(issuer_name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True, content_commitment=False, key_encipherment=True,
                data_encipherment=False, key_agreement=False, key_cert_sign=False,
                crl_sign=False, encipher_only=False, decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]),
            critical=False,
        )
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(name) for name in names]), critical=False)
    )
    if issuer_certificate is not None:
        builder = builder.add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_certificate.public_key()),
            critical=False,
        )
    return builder.sign(signing_key, hashes.SHA256())


def is_signed_by(certificate: x509.Certificate, issuer: x509.Certificate) -> bool:
    """Check that ``certificate`` carries a valid signature from ``issuer``"""
    if certificate.issuer != issuer.subject:
        return False
    try:
        issuer.public_key().verify(
            certificate.signature,
            certificate.tbs_certificate_bytes,
            padding.PKCS1v15(),
            certificate.signature_hash_algorithm,
        )
    except InvalidSignature:
        return False
    return True


def issuer_common_name(certificate: x509.Certificate) -> Optional[str]:
    attributes = certificate.issuer.get_attributes_for_oid(NameOID.COMMON_NAME)
    return str(attributes[0].value) if attributes else None


def certificate_dns_names(certificate: x509.Certificate) -> List[str]:
    """DNS subject alternative names of a certificate (empty when it has none)"""
    try:
        extension = certificate.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return []
    return extension.value.get_values_for_type(x509.DNSName)


def expires_within(certificate: x509.Certificate, days: int, now: Optional[datetime] = None) -> bool:
    """True when the certificate expires less than ``days`` days from ``now``"""
    now = now or datetime.now(timezone.utc)
    return certificate.not_valid_after_utc - now < timedelta(days=days)
