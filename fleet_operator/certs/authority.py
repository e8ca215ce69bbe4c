"""
Certificate Authority Manager

Owns the operator's root signing authority and issues or retrieves the key
pairs feature controllers hand to their renderers.
"""

import base64
import binascii
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Tuple

from ..core.client import ClusterClient
from ..core.config import OperatorSettings
from ..core.constants import ErrorMessages, KubernetesConstants
from ..core.exceptions import (
    AlreadyExistsError,
    AuthorityProvisioningError,
    ClusterApiError,
    ConfigurationInvalidError,
    MissingAuthorityError,
)
from . import tls
from .bundle import TrustedBundle
from .keypair import Certificate, CertificateIssuer, CertificateManagementSettings, KeyPair

logger = logging.getLogger(__name__)

SECRET_API_VERSION = KubernetesConstants.CORE_API_VERSION
SECRET_KIND = KubernetesConstants.Kind.SECRET.value


def _secret_field(secret: Dict[str, Any], key: str) -> Optional[bytes]:
    """Decode one entry of a secret's ``data`` (base64) or ``stringData``"""
    value = (secret.get("data") or {}).get(key)
    if value:
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            return None
    value = (secret.get("stringData") or {}).get(key)
    return value.encode("utf-8") if value else None


class CertificateManager:
    """
    Issues and retrieves key pairs signed by the operator CA.

    The CA is provisioned lazily on first use and at most once per manager.
    Concurrent first use within a process is serialized by a lock; across
    processes the store's create-once semantics pick the winner and losers
    adopt the stored CA.
    """

    def __init__(self, client: ClusterClient, settings: OperatorSettings,
                 certificate_management: Optional[CertificateManagementSettings] = None):
        self.client = client
        self.settings = settings
        self.certificate_management = certificate_management
        self._ca: Optional[KeyPair] = None
        self._ca_certificate = None
        self._ca_private_key = None
        self._lock = threading.Lock()

    @classmethod
    def create(cls, client: ClusterClient, installation, settings: OperatorSettings) -> "CertificateManager":
        """
        Build a manager for an installation.

        Args:
            client: Cluster client used to read and store the CA secret
            installation: Installation settings; its ``certificate_management``
                attribute selects out-of-band issuance
            settings: Operator naming registry

        Raises:
            MissingAuthorityError: If certificate management is configured without a CA certificate
        """
        management = getattr(installation, "certificate_management", None) if installation is not None else None
        if management is not None:
            if not management.ca_cert:
                raise MissingAuthorityError(ErrorMessages.AuthorityError.MISSING_CA_CERT.value)
            logger.info("Certificate management is enabled; certificates are issued by the cluster signer")
        return cls(client, settings, certificate_management=management)

    # Root authority

    def key_pair(self) -> KeyPair:
        """The CA as a key pair (without private key under certificate management)"""
        with self._lock:
            if self._ca is None:
                self._ca = self._provision_ca()
            return self._ca

    def _provision_ca(self) -> KeyPair:
        namespace = self.settings.operator_namespace
        name = self.settings.ca_secret_name

        if self.certificate_management is not None:
            try:
                self._ca_certificate = tls.load_certificate(self.certificate_management.ca_cert)
            except ValueError as e:
                raise MissingAuthorityError(
                    ErrorMessages.AuthorityError.PROVISIONING_FAILED.format(error=e)
                ) from e
            return KeyPair(
                name=name,
                namespace=namespace,
                certificate_pem=self.certificate_management.ca_cert,
                issuer=CertificateIssuer.CERTIFICATE_MANAGEMENT,
                certificate_management=self.certificate_management,
            )

        try:
            secret = self.client.get_optional(SECRET_API_VERSION, SECRET_KIND, name, namespace)
            if secret is None:
                secret = self._create_ca_secret(name, namespace)
        except ClusterApiError as e:
            raise AuthorityProvisioningError(
                ErrorMessages.AuthorityError.PROVISIONING_FAILED.format(error=e)
            ) from e

        return self._load_ca(secret, name, namespace)

    def _create_ca_secret(self, name: str, namespace: str) -> Dict[str, Any]:
        logger.info(f"Creating operator CA {namespace}/{name}")
        key = tls.generate_private_key(self.settings.key_size)
        certificate = tls.create_ca_certificate(
            key, f"{self.settings.ca_common_name}@{int(datetime.now(timezone.utc).timestamp())}",
            self.settings.ca_validity_days,
        )
        candidate = KeyPair(
            name=name,
            namespace=namespace,
            certificate_pem=tls.certificate_to_pem(certificate),
            private_key_pem=tls.private_key_to_pem(key),
        )
        try:
            return self.client.create(candidate.secret(namespace))
        except AlreadyExistsError:
            logger.info(f"Operator CA {namespace}/{name} was created concurrently, adopting it")
            return self.client.get(SECRET_API_VERSION, SECRET_KIND, name, namespace)

    def _load_ca(self, secret: Dict[str, Any], name: str, namespace: str) -> KeyPair:
        certificate_pem = _secret_field(secret, KubernetesConstants.TLS_CERT_KEY)
        private_key_pem = _secret_field(secret, KubernetesConstants.TLS_PRIVATE_KEY)
        invalid = ErrorMessages.AuthorityError.INVALID_CA_SECRET.format(namespace=namespace, name=name)
        if not certificate_pem or not private_key_pem:
            raise AuthorityProvisioningError(invalid)
        try:
            self._ca_certificate = tls.load_certificate(certificate_pem)
            self._ca_private_key = tls.load_private_key(private_key_pem)
        except ValueError as e:
            raise AuthorityProvisioningError(f"{invalid}: {e}") from e

        return KeyPair(
            name=name,
            namespace=namespace,
            certificate_pem=certificate_pem,
            private_key_pem=private_key_pem,
            dns_names=(),
            issuer=CertificateIssuer.OPERATOR,
        )

    # Key pairs

    def _read_secret(self, name: str, namespace: str) -> Optional[Dict[str, Any]]:
        return self.client.get_optional(SECRET_API_VERSION, SECRET_KIND, name, namespace)

    def _classify(self, certificate) -> CertificateIssuer:
        """Tell operator-issued material apart from material someone else supplied"""
        if certificate.issuer == certificate.subject:
            return CertificateIssuer.SELF_SIGNED
        self.key_pair()
        if self.certificate_management is None and tls.is_signed_by(certificate, self._ca_certificate):
            return CertificateIssuer.OPERATOR
        return CertificateIssuer.USER_SUPPLIED

    def _issued_by_operator(self, certificate) -> bool:
        """True for material signed by this or an earlier operator CA"""
        common_name = tls.issuer_common_name(certificate) or ""
        return common_name.split("@", 1)[0] == self.settings.ca_common_name

    def get_or_create_key_pair(self, name: str, namespace: str, dns_names: Iterable[str]) -> KeyPair:
        """
        Return a key pair for ``name`` covering ``dns_names``.

        Stored material is reused when the operator CA signed it, it covers
        every requested DNS name and it is outside the renewal window.
        Material the operator did not issue is returned unchanged. Anything
        else is replaced by a freshly issued pair; persisting it is left to
        the caller's render and apply step.

        Raises:
            AuthorityProvisioningError: If the CA cannot be provisioned
            ClusterApiError: If the stored secret cannot be read
        """
        requested = tuple(dns_names)
        ca = self.key_pair()

        if self.certificate_management is not None:
            return KeyPair(
                name=name,
                namespace=namespace,
                certificate_pem=ca.certificate_pem,
                dns_names=requested,
                issuer=CertificateIssuer.CERTIFICATE_MANAGEMENT,
                certificate_management=self.certificate_management,
            )

        secret = self._read_secret(name, namespace)
        if secret is not None:
            existing = self._reusable(secret, name, namespace, requested)
            if existing is not None:
                return existing

        return self._issue(name, namespace, requested)

    def _reusable(self, secret: Dict[str, Any], name: str, namespace: str,
                  requested: Tuple[str, ...]) -> Optional[KeyPair]:
        certificate_pem = _secret_field(secret, KubernetesConstants.TLS_CERT_KEY)
        private_key_pem = _secret_field(secret, KubernetesConstants.TLS_PRIVATE_KEY)
        if not certificate_pem or not private_key_pem:
            logger.warning(f"Secret {namespace}/{name} is incomplete, issuing a new key pair")
            return None
        try:
            certificate = tls.load_certificate(certificate_pem)
        except ValueError as e:
            logger.warning(f"Secret {namespace}/{name} holds an unreadable certificate ({e}), issuing a new key pair")
            return None

        stored_names = tuple(tls.certificate_dns_names(certificate))
        if not tls.is_signed_by(certificate, self._ca_certificate):
            if self._issued_by_operator(certificate):
                logger.info(f"Key pair {namespace}/{name} was signed by a previous operator CA, reissuing")
                return None
            logger.debug(f"Keeping user supplied key pair {namespace}/{name}")
            return KeyPair(name=name, namespace=namespace, certificate_pem=certificate_pem,
                           private_key_pem=private_key_pem, dns_names=stored_names,
                           issuer=CertificateIssuer.USER_SUPPLIED)

        missing = sorted(set(requested) - set(stored_names))
        if missing:
            logger.info(f"Key pair {namespace}/{name} does not cover {', '.join(missing)}, reissuing")
            return None
        if tls.expires_within(certificate, self.settings.renewal_threshold_days):
            logger.info(f"Key pair {namespace}/{name} is about to expire, reissuing")
            return None

        return KeyPair(name=name, namespace=namespace, certificate_pem=certificate_pem,
                       private_key_pem=private_key_pem, dns_names=requested,
                       issuer=CertificateIssuer.OPERATOR)

    def _issue(self, name: str, namespace: str, dns_names: Tuple[str, ...]) -> KeyPair:
        logger.info(f"Issuing key pair {namespace}/{name} for {', '.join(dns_names)}")
        key = tls.generate_private_key(self.settings.key_size)
        certificate = tls.issue_certificate(
            key, dns_names, self.settings.certificate_validity_days,
            issuer_certificate=self._ca_certificate, issuer_key=self._ca_private_key,
        )
        return KeyPair(
            name=name,
            namespace=namespace,
            certificate_pem=tls.certificate_to_pem(certificate),
            private_key_pem=tls.private_key_to_pem(key),
            dns_names=dns_names,
            issuer=CertificateIssuer.OPERATOR,
        )

    def get_key_pair(self, name: str, namespace: str) -> Optional[KeyPair]:
        """
        Look up a stored key pair.

        Returns:
            The key pair, or None when the secret does not exist

        Raises:
            ConfigurationInvalidError: If the secret exists but holds no usable key pair
            ClusterApiError: If the secret cannot be read
        """
        secret = self._read_secret(name, namespace)
        if secret is None:
            return None

        certificate_pem = _secret_field(secret, KubernetesConstants.TLS_CERT_KEY)
        private_key_pem = _secret_field(secret, KubernetesConstants.TLS_PRIVATE_KEY)
        if not certificate_pem or not private_key_pem:
            raise ConfigurationInvalidError(
                f"secret {namespace}/{name} is missing {KubernetesConstants.TLS_CERT_KEY} "
                f"or {KubernetesConstants.TLS_PRIVATE_KEY}"
            )
        try:
            certificate = tls.load_certificate(certificate_pem)
        except ValueError as e:
            raise ConfigurationInvalidError(f"secret {namespace}/{name} holds an invalid certificate: {e}") from e

        return KeyPair(
            name=name,
            namespace=namespace,
            certificate_pem=certificate_pem,
            private_key_pem=private_key_pem,
            dns_names=tuple(tls.certificate_dns_names(certificate)),
            issuer=self._classify(certificate),
        )

    def get_certificate(self, name: str, namespace: str) -> Optional[Certificate]:
        """
        Look up the public certificate of a stored secret.

        Returns:
            The certificate, or None when the secret does not exist

        Raises:
            ConfigurationInvalidError: If the secret exists without a certificate
            ClusterApiError: If the secret cannot be read
        """
        secret = self._read_secret(name, namespace)
        if secret is None:
            return None

        certificate_pem = _secret_field(secret, KubernetesConstants.TLS_CERT_KEY)
        if not certificate_pem:
            raise ConfigurationInvalidError(
                f"secret {namespace}/{name} is missing {KubernetesConstants.TLS_CERT_KEY}"
            )
        return Certificate(name=name, namespace=namespace, certificate_pem=certificate_pem)

    def create_trusted_bundle(self, *certificates: Optional[Certificate]) -> TrustedBundle:
        """Bundle the CA certificate with ``certificates`` (None entries are skipped)"""
        return TrustedBundle.create(self.key_pair().certificate(), *certificates,
                                    name=self.settings.trusted_bundle_name)

    def create_self_signed_key_pair(self, name: str, namespace: str, dns_names: Iterable[str]) -> KeyPair:
        """Generate a self-signed key pair outside the operator CA"""
        names = tuple(dns_names)
        key = tls.generate_private_key(self.settings.key_size)
        certificate = tls.issue_certificate(key, names, self.settings.certificate_validity_days)
        logger.info(f"Generated self-signed key pair {namespace}/{name}")
        return KeyPair(
            name=name,
            namespace=namespace,
            certificate_pem=tls.certificate_to_pem(certificate),
            private_key_pem=tls.private_key_to_pem(key),
            dns_names=names,
            issuer=CertificateIssuer.SELF_SIGNED,
        )

    def get_or_create_self_signed_key_pair(self, name: str, namespace: str,
                                           dns_names: Iterable[str]) -> KeyPair:
        """Return the stored key pair for ``name`` or generate a self-signed one"""
        existing = self.get_key_pair(name, namespace)
        if existing is not None:
            return existing
        return self.create_self_signed_key_pair(name, namespace, dns_names)
