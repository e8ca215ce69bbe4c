"""
Trusted Bundle Module

Aggregates CA certificates into one PEM blob with a single fingerprint.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from ..core.constants import CertificateConstants, KubernetesConstants
from ..core.utils import compute_hash
from .keypair import Certificate

DEFAULT_BUNDLE_NAME = "tigera-ca-bundle"


def _normalize(certificates) -> Tuple[Certificate, ...]:
    unique: Dict[str, Certificate] = {}
    for certificate in certificates:
        if certificate is None:
            continue
        unique.setdefault(certificate.fingerprint, certificate)
    return tuple(unique[key] for key in sorted(unique))


@dataclass(frozen=True)
class TrustedBundle:
    """
    Immutable set of certificates.

    Certificates are de-duplicated by content and ordered by fingerprint, so
    the bundle content and its fingerprint depend only on the set of
    certificates, never on the order they were added in.
    """

    certificates: Tuple[Certificate, ...] = ()
    name: str = DEFAULT_BUNDLE_NAME

    @classmethod
    def create(cls, *certificates: Optional[Certificate], name: str = DEFAULT_BUNDLE_NAME) -> "TrustedBundle":
        return cls(certificates=_normalize(certificates), name=name)

    def add_certificates(self, *certificates: Optional[Certificate]) -> "TrustedBundle":
        """Return a new bundle holding this bundle's certificates plus ``certificates``"""
        return TrustedBundle(certificates=_normalize(self.certificates + certificates), name=self.name)

    @property
    def pem(self) -> bytes:
        if not self.certificates:
            return b""
        return b"\n".join(c.certificate_pem.strip() for c in self.certificates) + b"\n"

    @property
    def fingerprint(self) -> str:
        return compute_hash(self.pem)

    def hash_annotations(self) -> Dict[str, str]:
        return {CertificateConstants.TRUSTED_BUNDLE_ANNOTATION: self.fingerprint}

    def config_map(self, namespace: str) -> Dict[str, Any]:
        """Render the bundle as a ConfigMap in ``namespace``"""
        return {
            "apiVersion": KubernetesConstants.CORE_API_VERSION,
            "kind": KubernetesConstants.Kind.CONFIG_MAP.value,
            "metadata": {
                "name": self.name,
                "namespace": namespace,
                "annotations": self.hash_annotations(),
            },
            "data": {CertificateConstants.TRUSTED_BUNDLE_KEY: self.pem.decode("utf-8")},
        }

    @property
    def mount_path(self) -> str:
        return f"{CertificateConstants.TRUSTED_BUNDLE_VOLUME_MOUNT_DIR}/{CertificateConstants.TRUSTED_BUNDLE_KEY}"

    def volume(self) -> Dict[str, Any]:
        return {"name": self.name, "configMap": {"name": self.name}}

    def volume_mount(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "mountPath": CertificateConstants.TRUSTED_BUNDLE_VOLUME_MOUNT_DIR,
            "readOnly": True,
        }
