"""
Deep Packet Inspection Renderer

Renders the per-node deep packet inspection DaemonSet and its supporting
namespace, secrets and RBAC.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..certs.bundle import TrustedBundle
from ..certs.keypair import KeyPair
from ..core.config import OperatorSettings
from ..core.constants import ErrorMessages, KubernetesConstants
from ..core.exceptions import ConfigurationInvalidError
from .base import Component, ManifestTemplates, RenderResult
from .common import (
    TOLERATE_ALL,
    InstallationSpec,
    copy_to_namespace,
    grants_pod_security_policy,
    pod_security_policy_rule,
    pull_secret_references,
    secret_hash_annotations,
)
from .components import CSR_INIT_CONTAINER, DEEP_PACKET_INSPECTION, installation_reference

logger = logging.getLogger(__name__)

SNORT_ALERTS_VOLUME = "log-snort-alters"
SNORT_ALERTS_PATH = "/var/log/calico/snort-alerts"
READINESS_PORT = 9097

DEFAULT_RESOURCES = {
    "limits": {"cpu": "1", "memory": "1Gi"},
    "requests": {"cpu": "100m", "memory": "100Mi"},
}


@dataclass(frozen=True)
class TyphaNodeTLS:
    """TLS material the DPI agent uses to talk to Typha"""
    trusted_bundle: TrustedBundle
    node_secret: KeyPair
    typha_common_name: str = ""
    typha_uri_san: str = ""


@dataclass
class DPIConfiguration:
    installation: InstallationSpec
    typha_node_tls: Optional[TyphaNodeTLS] = None
    settings: OperatorSettings = field(default_factory=OperatorSettings)
    pull_secrets: List[Dict[str, Any]] = field(default_factory=list)
    es_secrets: List[Dict[str, Any]] = field(default_factory=list)
    resources: Optional[Dict[str, Any]] = None
    has_no_license: bool = False
    has_no_dpi_resource: bool = False

    @property
    def active(self) -> bool:
        return not (self.has_no_license or self.has_no_dpi_resource)

    def validate(self) -> None:
        self.installation.validate()
        if not self.active:
            return
        if self.typha_node_tls is None or self.typha_node_tls.node_secret is None:
            raise ConfigurationInvalidError(ErrorMessages.ConfigError.MISSING_KEY_PAIR.format(
                component="deep packet inspection", name=self.settings.node_secret_name))
        if self.typha_node_tls.trusted_bundle is None:
            raise ConfigurationInvalidError(
                ErrorMessages.ConfigError.MISSING_BUNDLE.format(component="deep packet inspection"))


class DPIComponent(Component):
    """Deep packet inspection DaemonSet"""

    def __init__(self, config: DPIConfiguration):
        super().__init__()
        config.validate()
        self.config = config
        self.settings = config.settings
        self.namespace = config.settings.dpi_namespace
        self.dpi_name = config.settings.dpi_name
        self.image = installation_reference(DEEP_PACKET_INSPECTION, config.installation)
        self.csr_image = installation_reference(CSR_INIT_CONTAINER, config.installation)

    def objects(self) -> RenderResult:
        cfg = self.config
        to_create: List[Dict[str, Any]] = []
        to_delete: List[Dict[str, Any]] = []

        namespace = ManifestTemplates.namespace_template(
            self.namespace, pod_security="privileged", openshift=cfg.installation.openshift)
        if cfg.has_no_license:
            to_delete.append(namespace)
        else:
            to_create.append(namespace)

        if cfg.active:
            to_create.extend(copy_to_namespace(self.namespace, *cfg.es_secrets))
            to_create.extend(copy_to_namespace(self.namespace, *cfg.pull_secrets))
            to_create.extend([
                self._service_account(),
                self._cluster_role(),
                self._cluster_role_binding(),
                self._daemon_set(),
            ])
        else:
            logger.debug(f"Deep packet inspection inactive (license missing: {cfg.has_no_license}, "
                         f"resource missing: {cfg.has_no_dpi_resource})")
            for secret in list(cfg.es_secrets) + list(cfg.pull_secrets):
                to_delete.append(ManifestTemplates.secret_stub(secret["metadata"]["name"], self.namespace))
            to_delete.extend([
                self._service_account(),
                self._cluster_role(),
                self._cluster_role_binding(),
                ManifestTemplates.daemon_set_template(self.dpi_name, self.namespace, {}),
            ])

        return RenderResult.build(to_create, to_delete)

    def _service_account(self) -> Dict[str, Any]:
        return ManifestTemplates.service_account_template(self.dpi_name, self.namespace)

    def _cluster_role(self) -> Dict[str, Any]:
        verbs = KubernetesConstants.RBACVerb
        rules = [
            {
                "apiGroups": [KubernetesConstants.CRD_PROJECTCALICO_API_GROUP],
                "resources": ["deeppacketinspections"],
                "verbs": [verb.value for verb in verbs.get_read_verbs()],
            },
            {
                # Status updates of the DPI resource
                "apiGroups": [KubernetesConstants.CRD_PROJECTCALICO_API_GROUP],
                "resources": ["deeppacketinspections/status"],
                "verbs": [verbs.UPDATE.value],
            },
            {
                # Typha endpoint discovery
                "apiGroups": [KubernetesConstants.CORE_API_GROUP],
                "resources": ["endpoints", "services"],
                "verbs": [verbs.WATCH.value, verbs.LIST.value, verbs.GET.value],
            },
        ]
        if grants_pod_security_policy(self.config.installation, self.settings.use_psp):
            rules.append(pod_security_policy_rule(self.dpi_name))
        return ManifestTemplates.cluster_role_template(self.dpi_name, rules)

    def _cluster_role_binding(self) -> Dict[str, Any]:
        return ManifestTemplates.cluster_role_binding_template(
            self.dpi_name, self.dpi_name, [(self.dpi_name, self.namespace)])

    def _annotations(self) -> Dict[str, str]:
        tls = self.config.typha_node_tls
        annotations = dict(tls.trusted_bundle.hash_annotations())
        annotations[tls.node_secret.hash_annotation_key()] = tls.node_secret.hash_annotation_value()
        annotations.update(secret_hash_annotations(*self.config.es_secrets))
        return annotations

    def _env(self) -> List[Dict[str, Any]]:
        tls = self.config.typha_node_tls
        settings = self.settings
        env = [
            {"name": "DPI_NODENAME", "valueFrom": {"fieldRef": {"fieldPath": "spec.nodeName"}}},
            {"name": "DPI_TYPHAK8SNAMESPACE", "value": settings.typha_namespace},
            {"name": "DPI_TYPHAK8SSERVICENAME", "value": settings.typha_service_name},
            {"name": "DPI_TYPHACAFILE", "value": tls.trusted_bundle.mount_path},
            {"name": "DPI_TYPHACERTFILE", "value": tls.node_secret.certificate_mount_path},
            {"name": "DPI_TYPHAKEYFILE", "value": tls.node_secret.private_key_mount_path},
        ]
        # At least one of CN or URI SAN identifies Typha
        if tls.typha_common_name:
            env.append({"name": "DPI_TYPHACN", "value": tls.typha_common_name})
        if tls.typha_uri_san:
            env.append({"name": "DPI_TYPHAURISAN", "value": tls.typha_uri_san})

        es_host = f"{settings.es_gateway_service_name}.{settings.es_gateway_namespace}.svc"
        env.extend([
            {"name": "ELASTIC_SCHEME", "value": "https"},
            {"name": "ELASTIC_HOST", "value": es_host},
            {"name": "ELASTIC_PORT", "value": str(settings.es_gateway_port)},
            {"name": "ELASTIC_CA", "value": tls.trusted_bundle.mount_path},
            {"name": "ELASTIC_USER", "valueFrom": {"secretKeyRef": {
                "name": settings.dpi_es_user_secret, "key": "username"}}},
            {"name": "ELASTIC_PASSWORD", "valueFrom": {"secretKeyRef": {
                "name": settings.dpi_es_user_secret, "key": "password"}}},
        ])
        return env

    def _container(self) -> Dict[str, Any]:
        tls = self.config.typha_node_tls
        return {
            "name": self.dpi_name,
            "image": self.image,
            "resources": self.config.resources or DEFAULT_RESOURCES,
            "env": self._env(),
            "volumeMounts": [
                tls.trusted_bundle.volume_mount(),
                tls.node_secret.volume_mount(),
                {"name": SNORT_ALERTS_VOLUME, "mountPath": SNORT_ALERTS_PATH},
            ],
            # Snort needs privileged host network access on OpenShift
            "securityContext": {"privileged": self.config.installation.openshift},
            "readinessProbe": {
                "httpGet": {"host": "localhost", "path": "/readiness", "port": READINESS_PORT, "scheme": "HTTP"},
                "timeoutSeconds": 10,
                "initialDelaySeconds": 90,
                "periodSeconds": 10,
            },
        }

    def _daemon_set(self) -> Dict[str, Any]:
        tls = self.config.typha_node_tls
        spec = {
            "tolerations": [dict(toleration) for toleration in TOLERATE_ALL],
            "imagePullSecrets": pull_secret_references(self.config.pull_secrets),
            "serviceAccountName": self.dpi_name,
            "terminationGracePeriodSeconds": 0,
            "hostNetwork": True,
            # In-cluster services stay resolvable on the host network
            "dnsPolicy": "ClusterFirstWithHostNet",
            "containers": [self._container()],
            "volumes": [
                tls.trusted_bundle.volume(),
                tls.node_secret.volume(),
                {"name": SNORT_ALERTS_VOLUME,
                 "hostPath": {"path": SNORT_ALERTS_PATH, "type": "DirectoryOrCreate"}},
            ],
        }
        if tls.node_secret.use_certificate_management():
            spec["initContainers"] = [tls.node_secret.init_container(self.csr_image, self.dpi_name)]

        template = ManifestTemplates.pod_template(self.dpi_name, spec, self._annotations())
        return ManifestTemplates.daemon_set_template(self.dpi_name, self.namespace, template)
