"""
Key Pair Module

Immutable TLS material handed from the certificate manager to the
renderers, plus the manifest fragments (secret, volume, mount, CSR init
container) a workload needs to consume it.
"""

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..core.constants import CertificateConstants, KubernetesConstants
from ..core.utils import compute_hash
from .tls import fingerprint as pem_fingerprint

CSR_MOUNT_PATH = "/certs-share"


class CertificateIssuer(str, Enum):
    """Where the material of a key pair came from"""
    OPERATOR = "operator"
    SELF_SIGNED = "self-signed"
    USER_SUPPLIED = "user-supplied"
    CERTIFICATE_MANAGEMENT = "certificate-management"

    def __str__(self) -> str:
        return self.value


def decode_pem(value: Any) -> bytes:
    """
    Normalize PEM material given as bytes, text or base64 text.

    Raises:
        ValueError: If the value is empty or cannot be decoded
    """
    if not value:
        raise ValueError("empty certificate data")
    raw = value.encode("utf-8") if isinstance(value, str) else bytes(value)
    if raw.lstrip().startswith(b"-----BEGIN"):
        return raw
    try:
        decoded = base64.b64decode(raw, validate=True)
    except (ValueError, TypeError) as e:
        raise ValueError(f"certificate data is neither PEM nor base64: {e}") from e
    if not decoded.lstrip().startswith(b"-----BEGIN"):
        raise ValueError("certificate data does not contain a PEM block")
    return decoded


@dataclass(frozen=True)
class CertificateManagementSettings:
    """Out-of-band issuance configured on the installation"""

    ca_cert: bytes
    signer_name: str = CertificateConstants.CSR_SIGNER_NAME
    key_algorithm: str = CertificateConstants.DEFAULT_KEY_ALGORITHM
    signature_algorithm: str = CertificateConstants.DEFAULT_SIGNATURE_ALGORITHM

    @classmethod
    def from_spec(cls, spec: Optional[Dict[str, Any]]) -> Optional["CertificateManagementSettings"]:
        """
        Build settings from an ``Installation.spec.certificateManagement`` block.

        Returns None when the block is absent. A block without ``caCert``
        yields settings with empty ``ca_cert``; the certificate manager
        rejects those.
        """
        if spec is None:
            return None
        ca_cert = spec.get("caCert")
        return cls(
            ca_cert=decode_pem(ca_cert) if ca_cert else b"",
            signer_name=spec.get("signerName") or CertificateConstants.CSR_SIGNER_NAME,
            key_algorithm=spec.get("keyAlgorithm") or CertificateConstants.DEFAULT_KEY_ALGORITHM,
            signature_algorithm=(spec.get("signatureAlgorithm")
                                 or CertificateConstants.DEFAULT_SIGNATURE_ALGORITHM),
        )


@dataclass(frozen=True)
class Certificate:
    """Public certificate material without a private key"""

    name: str
    namespace: str
    certificate_pem: bytes

    @property
    def fingerprint(self) -> str:
        return pem_fingerprint(self.certificate_pem)

    def hash_annotation_key(self) -> str:
        return f"{CertificateConstants.HASH_ANNOTATION_PREFIX}{self.name}"

    def hash_annotation_value(self) -> str:
        return self.fingerprint


@dataclass(frozen=True)
class KeyPair:
    """
    A certificate with its private key, or a reference to material issued
    out-of-band through certificate management.
    """

    name: str
    namespace: str
    certificate_pem: bytes
    private_key_pem: Optional[bytes] = field(default=None, repr=False)
    dns_names: Tuple[str, ...] = ()
    issuer: CertificateIssuer = CertificateIssuer.OPERATOR
    certificate_management: Optional[CertificateManagementSettings] = None

    @property
    def fingerprint(self) -> str:
        if self.use_certificate_management():
            # Issued at pod start, so track what is requested rather than the bytes
            return compute_hash(self.certificate_pem.strip() + b"\n" + ",".join(self.dns_names).encode("utf-8"))
        return pem_fingerprint(self.certificate_pem)

    def use_certificate_management(self) -> bool:
        return self.certificate_management is not None

    def certificate(self) -> Certificate:
        return Certificate(name=self.name, namespace=self.namespace, certificate_pem=self.certificate_pem)

    def hash_annotation_key(self) -> str:
        return f"{CertificateConstants.HASH_ANNOTATION_PREFIX}{self.name}"

    def hash_annotation_value(self) -> str:
        return self.fingerprint

    def secret(self, namespace: str) -> Dict[str, Any]:
        """Render the key pair as a ``kubernetes.io/tls`` secret in ``namespace``"""
        data = {
            KubernetesConstants.TLS_CERT_KEY: base64.b64encode(self.certificate_pem).decode("ascii"),
        }
        if self.private_key_pem is not None:
            data[KubernetesConstants.TLS_PRIVATE_KEY] = base64.b64encode(self.private_key_pem).decode("ascii")
        return {
            "apiVersion": KubernetesConstants.CORE_API_VERSION,
            "kind": KubernetesConstants.Kind.SECRET.value,
            "metadata": {"name": self.name, "namespace": namespace},
            "type": KubernetesConstants.TLS_SECRET_TYPE,
            "data": data,
        }

    @property
    def mount_dir(self) -> str:
        return f"/{self.name}"

    @property
    def certificate_mount_path(self) -> str:
        return f"{self.mount_dir}/{KubernetesConstants.TLS_CERT_KEY}"

    @property
    def private_key_mount_path(self) -> str:
        return f"{self.mount_dir}/{KubernetesConstants.TLS_PRIVATE_KEY}"

    def volume(self) -> Dict[str, Any]:
        if self.use_certificate_management():
            return {"name": self.name, "emptyDir": {}}
        return {"name": self.name, "secret": {"secretName": self.name}}

    def volume_mount(self) -> Dict[str, Any]:
        return {"name": self.name, "mountPath": self.mount_dir, "readOnly": True}

    def init_container(self, image: str, app_name: str) -> Dict[str, Any]:
        """
        CSR init container that requests the certificate at pod start and
        writes it into the key pair's emptyDir volume.
        """
        if not self.use_certificate_management():
            raise ValueError(f"key pair {self.name} is not issued through certificate management")

        management = self.certificate_management
        env: List[Dict[str, Any]] = [
            {"name": "CERTPATH", "value": f"{CSR_MOUNT_PATH}/{KubernetesConstants.TLS_CERT_KEY}"},
            {"name": "KEYPATH", "value": f"{CSR_MOUNT_PATH}/{KubernetesConstants.TLS_PRIVATE_KEY}"},
            {"name": "SIGNER", "value": management.signer_name},
            {"name": "COMMON_NAME", "value": self.dns_names[0] if self.dns_names else self.name},
            {"name": "KEY_ALGORITHM", "value": management.key_algorithm},
            {"name": "SIGNATURE_ALGORITHM", "value": management.signature_algorithm},
            {"name": "DNS_NAMES", "value": ",".join(self.dns_names)},
            {"name": "APP_NAME", "value": app_name},
            {"name": "POD_IP", "valueFrom": {"fieldRef": {"fieldPath": "status.podIP"}}},
            {"name": "POD_NAMESPACE", "valueFrom": {"fieldRef": {"fieldPath": "metadata.namespace"}}},
        ]
        return {
            "name": f"{self.name}-{CertificateConstants.CSR_INIT_CONTAINER_NAME}",
            "image": image,
            "imagePullPolicy": "IfNotPresent",
            "env": env,
            "volumeMounts": [{"name": self.name, "mountPath": CSR_MOUNT_PATH, "readOnly": False}],
        }
