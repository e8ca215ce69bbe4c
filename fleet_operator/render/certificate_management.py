"""
Certificate Management Renderer

Persists the key pairs and trusted bundle a feature's workloads mount, and
grants CSR creation to its service accounts when certificates are issued
through certificate management.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..certs.bundle import TrustedBundle
from ..certs.keypair import CertificateIssuer, KeyPair
from ..core.config import OperatorSettings
from ..core.constants import CertificateConstants
from ..core.exceptions import ConfigurationInvalidError
from .base import Component, ManifestTemplates, RenderResult
from .common import InstallationSpec, copy_to_namespace

logger = logging.getLogger(__name__)

# Key pairs whose material the operator generated and therefore stores
_PERSISTED_ISSUERS = (CertificateIssuer.OPERATOR, CertificateIssuer.SELF_SIGNED)


@dataclass
class CertificateManagementConfiguration:
    installation: InstallationSpec
    namespace: str
    service_accounts: List[Tuple[str, str]] = field(default_factory=list)
    key_pairs: List[KeyPair] = field(default_factory=list)
    # Key pairs another controller persists; only copied into the namespace
    shared_key_pairs: List[KeyPair] = field(default_factory=list)
    trusted_bundle: Optional[TrustedBundle] = None
    settings: OperatorSettings = field(default_factory=OperatorSettings)

    def validate(self) -> None:
        if not self.namespace:
            raise ConfigurationInvalidError("certificate management requires a target namespace")
        if any(key_pair is None for key_pair in list(self.key_pairs) + list(self.shared_key_pairs)):
            raise ConfigurationInvalidError("certificate management was given an unresolved key pair")


class CertificateManagementComponent(Component):
    """Key pair secrets, trusted bundle ConfigMap and CSR permissions for one namespace"""

    def __init__(self, config: CertificateManagementConfiguration):
        super().__init__()
        config.validate()
        self.config = config

    @property
    def csr_binding_name(self) -> str:
        return f"{self.config.namespace}:{CertificateConstants.CSR_CLUSTER_ROLE_NAME}"

    def objects(self) -> RenderResult:
        cfg = self.config
        to_create: List[Dict[str, Any]] = []
        to_delete: List[Dict[str, Any]] = []

        for key_pair in cfg.key_pairs:
            to_create.extend(self._key_pair_secrets(key_pair, persist=True))
        for key_pair in cfg.shared_key_pairs:
            to_create.extend(self._key_pair_secrets(key_pair, persist=False))

        if cfg.trusted_bundle is not None:
            to_create.append(cfg.trusted_bundle.config_map(cfg.namespace))

        binding = ManifestTemplates.cluster_role_binding_template(
            self.csr_binding_name, CertificateConstants.CSR_CLUSTER_ROLE_NAME, cfg.service_accounts)
        if cfg.installation.certificate_management is not None and cfg.service_accounts:
            to_create.append(binding)
        else:
            to_delete.append(binding)

        return RenderResult.build(to_create, to_delete)

    def _key_pair_secrets(self, key_pair: KeyPair, persist: bool) -> List[Dict[str, Any]]:
        if key_pair.use_certificate_management():
            # Issued at pod start by the init container
            return []

        secrets = []
        if persist and key_pair.issuer in _PERSISTED_ISSUERS:
            secrets.append(key_pair.secret(key_pair.namespace))
        if key_pair.namespace != self.config.namespace:
            secrets.extend(copy_to_namespace(self.config.namespace, key_pair.secret(key_pair.namespace)))
        return secrets
