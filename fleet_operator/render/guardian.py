"""
Guardian Renderer

Renders the tunnel client a managed cluster runs to reach its management
cluster.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..certs.bundle import TrustedBundle
from ..core.config import OperatorSettings
from ..core.constants import ErrorMessages, KubernetesConstants
from ..core.exceptions import ConfigurationInvalidError
from .base import Component, ManifestTemplates, RenderResult
from .common import (
    TOLERATE_CONTROL_PLANE,
    InstallationSpec,
    control_plane_tolerations,
    copy_to_namespace,
    grants_pod_security_policy,
    pod_security_policy_rule,
    pull_secret_references,
    secret_hash_annotations,
)
from .components import GUARDIAN, installation_reference

logger = logging.getLogger(__name__)

GUARDIAN_PORT = 9443
GUARDIAN_TARGET_PORT = 8080
TUNNEL_MOUNT_DIR = "/certs"
GUARDIAN_REPLICAS = 1


@dataclass
class GuardianConfiguration:
    installation: InstallationSpec
    url: str = ""
    tunnel_secret: Optional[Dict[str, Any]] = None
    trusted_bundle: Optional[TrustedBundle] = None
    settings: OperatorSettings = field(default_factory=OperatorSettings)
    pull_secrets: List[Dict[str, Any]] = field(default_factory=list)
    management_cluster_present: bool = False
    tunnel_ca_type: str = "Tigera"

    def validate(self) -> None:
        self.installation.validate()
        if self.management_cluster_present:
            raise ConfigurationInvalidError(ErrorMessages.ConfigError.MANAGEMENT_CLUSTER_CONFLICT.value)
        if not self.url:
            raise ConfigurationInvalidError(ErrorMessages.ConfigError.MISSING_CONNECTION.value)
        if self.tunnel_secret is None:
            raise ConfigurationInvalidError(ErrorMessages.ConfigError.MISSING_KEY_PAIR.format(
                component="guardian", name=self.settings.guardian_secret_name))
        if self.trusted_bundle is None:
            raise ConfigurationInvalidError(ErrorMessages.ConfigError.MISSING_BUNDLE.format(component="guardian"))


class GuardianComponent(Component):
    """Management cluster tunnel client"""

    def __init__(self, config: GuardianConfiguration):
        super().__init__()
        config.validate()
        self.config = config
        self.settings = config.settings
        self.namespace = config.settings.guardian_namespace
        self.guardian_name = config.settings.guardian_name
        self.image = installation_reference(GUARDIAN, config.installation)

    def objects(self) -> RenderResult:
        cfg = self.config
        to_create: List[Dict[str, Any]] = [
            ManifestTemplates.namespace_template(self.namespace, pod_security="restricted",
                                                 openshift=cfg.installation.openshift),
        ]
        to_create.extend(copy_to_namespace(self.namespace, *cfg.pull_secrets))
        to_create.extend(copy_to_namespace(self.namespace, self._tunnel_secret()))
        to_create.extend([
            ManifestTemplates.service_account_template(self.guardian_name, self.namespace),
            self._cluster_role(),
            ManifestTemplates.cluster_role_binding_template(
                self.guardian_name, self.guardian_name, [(self.guardian_name, self.namespace)]),
            self._deployment(),
            self._service(),
        ])
        return RenderResult.build(to_create)

    def _tunnel_secret(self) -> Dict[str, Any]:
        secret = dict(self.config.tunnel_secret)
        secret["metadata"] = dict(secret.get("metadata") or {}, name=self.settings.guardian_secret_name)
        return secret

    def _cluster_role(self) -> Dict[str, Any]:
        rules = [
            {
                # Requests from the management cluster run as the impersonated user
                "apiGroups": [KubernetesConstants.CORE_API_GROUP],
                "resources": ["users", "groups", "serviceaccounts"],
                "verbs": ["impersonate"],
            },
        ]
        if grants_pod_security_policy(self.config.installation, self.settings.use_psp):
            rules.append(pod_security_policy_rule(self.guardian_name))
        return ManifestTemplates.cluster_role_template(self.guardian_name, rules)

    def _service(self) -> Dict[str, Any]:
        ports = [{"name": "https", "port": 443, "targetPort": GUARDIAN_TARGET_PORT, "protocol": "TCP"}]
        return ManifestTemplates.service_template(self.guardian_name, self.namespace, self.guardian_name, ports)

    def _deployment(self) -> Dict[str, Any]:
        cfg = self.config
        bundle = cfg.trusted_bundle
        tunnel_volume = self.settings.guardian_secret_name
        env = [
            {"name": "GUARDIAN_PORT", "value": str(GUARDIAN_PORT)},
            {"name": "GUARDIAN_LOGLEVEL", "value": "INFO"},
            {"name": "GUARDIAN_VOLTRON_URL", "value": cfg.url},
            {"name": "GUARDIAN_VOLTRON_CA_TYPE", "value": cfg.tunnel_ca_type},
            {"name": "GUARDIAN_PACKET_CAPTURE_CA_BUNDLE_PATH", "value": bundle.mount_path},
            {"name": "GUARDIAN_PROMETHEUS_CA_BUNDLE_PATH", "value": bundle.mount_path},
            {"name": "GUARDIAN_QUERYSERVER_CA_BUNDLE_PATH", "value": bundle.mount_path},
        ]
        container = {
            "name": self.guardian_name,
            "image": self.image,
            "env": env,
            "volumeMounts": [
                {"name": tunnel_volume, "mountPath": TUNNEL_MOUNT_DIR, "readOnly": True},
                bundle.volume_mount(),
            ],
            "livenessProbe": {
                "httpGet": {"path": "/health", "port": 9080},
                "initialDelaySeconds": 90,
                "periodSeconds": 10,
            },
            "readinessProbe": {
                "httpGet": {"path": "/health", "port": 9080},
                "initialDelaySeconds": 10,
                "periodSeconds": 5,
            },
            "securityContext": {"runAsNonRoot": True, "allowPrivilegeEscalation": False},
        }
        tolerations = control_plane_tolerations(cfg.installation)
        tolerations.extend(dict(toleration) for toleration in TOLERATE_CONTROL_PLANE)
        spec = {
            "serviceAccountName": self.guardian_name,
            "imagePullSecrets": pull_secret_references(cfg.pull_secrets),
            "nodeSelector": dict(cfg.installation.control_plane_node_selector),
            "tolerations": tolerations,
            "containers": [container],
            "volumes": [
                {"name": tunnel_volume, "secret": {"secretName": tunnel_volume}},
                bundle.volume(),
            ],
        }
        annotations = dict(bundle.hash_annotations())
        annotations.update(secret_hash_annotations(self._tunnel_secret()))
        template = ManifestTemplates.pod_template(self.guardian_name, spec, annotations)
        return ManifestTemplates.deployment_template(self.guardian_name, self.namespace, GUARDIAN_REPLICAS, template)
