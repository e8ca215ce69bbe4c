"""
Elasticsearch Gateway Renderer

Renders the gateway Deployment that fronts Elasticsearch and Kibana, its
service, RBAC and the public certificate secret other components trust.
"""

import base64
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
    InstallationSpec,
    control_plane_affinity,
    control_plane_tolerations,
    copy_to_namespace,
    pull_secret_references,
    secret_hash_annotations,
)
from .components import CSR_INIT_CONTAINER, ELASTICSEARCH_GATEWAY, installation_reference

logger = logging.getLogger(__name__)

GATEWAY_PORT = 5554
HEALTH_PORT = 8080
ELASTICSEARCH_SERVICE = "tigera-secure-es-http"
KIBANA_SERVICE = "tigera-secure-kb-http"
KIBANA_NAMESPACE = "tigera-kibana"
ELASTIC_USER_SECRET = "tigera-secure-es-elastic-user"


@dataclass
class EsGatewayConfiguration:
    installation: InstallationSpec
    key_pair: Optional[KeyPair] = None
    trusted_bundle: Optional[TrustedBundle] = None
    settings: OperatorSettings = field(default_factory=OperatorSettings)
    pull_secrets: List[Dict[str, Any]] = field(default_factory=list)
    user_secrets: List[Dict[str, Any]] = field(default_factory=list)
    es_admin_user_name: str = "elastic"

    def validate(self) -> None:
        self.installation.validate()
        if self.key_pair is None:
            raise ConfigurationInvalidError(ErrorMessages.ConfigError.MISSING_KEY_PAIR.format(
                component="elasticsearch gateway", name=self.settings.es_gateway_cert_secret))
        if self.trusted_bundle is None:
            raise ConfigurationInvalidError(
                ErrorMessages.ConfigError.MISSING_BUNDLE.format(component="elasticsearch gateway"))


class EsGatewayComponent(Component):
    """Elasticsearch gateway Deployment"""

    def __init__(self, config: EsGatewayConfiguration):
        super().__init__()
        config.validate()
        self.config = config
        self.settings = config.settings
        self.namespace = config.settings.es_gateway_namespace
        self.gateway_name = config.settings.es_gateway_name
        self.image = installation_reference(ELASTICSEARCH_GATEWAY, config.installation)
        self.csr_image = installation_reference(CSR_INIT_CONTAINER, config.installation)

    def objects(self) -> RenderResult:
        # User secrets keep the namespace they were issued for
        to_create: List[Dict[str, Any]] = [
            copy_to_namespace(secret["metadata"].get("namespace") or self.namespace, secret)[0]
            for secret in self.config.user_secrets
        ]
        to_create.extend([
            self._service(),
            self._role(),
            self._role_binding(),
            ManifestTemplates.service_account_template(self.gateway_name, self.namespace),
            self._deployment(),
            self._public_cert_secret(),
        ])
        return RenderResult.build(to_create)

    def _service(self) -> Dict[str, Any]:
        ports = [{
            "name": "es-gateway-elasticsearch-port",
            "port": self.settings.es_gateway_port,
            "targetPort": GATEWAY_PORT,
            "protocol": "TCP",
        }]
        return ManifestTemplates.service_template(
            self.settings.es_gateway_service_name, self.namespace, self.gateway_name, ports)

    def _role(self) -> Dict[str, Any]:
        rules = [{
            "apiGroups": [KubernetesConstants.CORE_API_GROUP],
            "resources": ["secrets"],
            "verbs": [verb.value for verb in KubernetesConstants.RBACVerb.get_read_verbs()],
        }]
        return ManifestTemplates.role_template(self.gateway_name, self.namespace, rules)

    def _role_binding(self) -> Dict[str, Any]:
        return ManifestTemplates.role_binding_template(
            self.gateway_name, self.namespace, self.gateway_name, self.gateway_name)

    def _public_cert_secret(self) -> Dict[str, Any]:
        certificate = self.config.key_pair.certificate_pem
        return {
            "apiVersion": KubernetesConstants.CORE_API_VERSION,
            "kind": KubernetesConstants.Kind.SECRET.value,
            "metadata": {
                "name": self.settings.es_gateway_public_cert_secret,
                "namespace": self.settings.operator_namespace,
            },
            "data": {KubernetesConstants.TLS_CERT_KEY: base64.b64encode(certificate).decode("ascii")},
        }

    def _annotations(self) -> Dict[str, str]:
        key_pair = self.config.key_pair
        annotations = dict(self.config.trusted_bundle.hash_annotations())
        annotations[key_pair.hash_annotation_key()] = key_pair.hash_annotation_value()
        annotations.update(secret_hash_annotations(*self.config.user_secrets))
        return annotations

    def _env(self) -> List[Dict[str, Any]]:
        key_pair = self.config.key_pair
        return [
            {"name": "ES_GATEWAY_LOG_LEVEL", "value": "INFO"},
            {"name": "ES_GATEWAY_ELASTIC_ENDPOINT",
             "value": f"https://{ELASTICSEARCH_SERVICE}.{self.namespace}.svc:{self.settings.es_gateway_port}"},
            {"name": "ES_GATEWAY_KIBANA_ENDPOINT",
             "value": f"https://{KIBANA_SERVICE}.{KIBANA_NAMESPACE}.svc:5601"},
            {"name": "ES_GATEWAY_HTTPS_CERT", "value": key_pair.certificate_mount_path},
            {"name": "ES_GATEWAY_HTTPS_KEY", "value": key_pair.private_key_mount_path},
            {"name": "ES_GATEWAY_ELASTIC_CA_BUNDLE_PATH", "value": self.config.trusted_bundle.mount_path},
            {"name": "ES_GATEWAY_ELASTIC_USERNAME", "value": self.config.es_admin_user_name},
            {"name": "ES_GATEWAY_ELASTIC_PASSWORD", "valueFrom": {"secretKeyRef": {
                "name": ELASTIC_USER_SECRET, "key": self.config.es_admin_user_name}}},
        ]

    def _deployment(self) -> Dict[str, Any]:
        cfg = self.config
        container = {
            "name": self.gateway_name,
            "image": self.image,
            "env": self._env(),
            "volumeMounts": [cfg.key_pair.volume_mount(), cfg.trusted_bundle.volume_mount()],
            "readinessProbe": {
                "httpGet": {"path": "/health", "port": HEALTH_PORT, "scheme": "HTTPS"},
                "initialDelaySeconds": 10,
                "periodSeconds": 5,
            },
            "securityContext": {
                "runAsNonRoot": True,
                "allowPrivilegeEscalation": False,
                "capabilities": {"drop": ["ALL"]},
            },
        }
        spec: Dict[str, Any] = {
            "serviceAccountName": self.gateway_name,
            "imagePullSecrets": pull_secret_references(cfg.pull_secrets),
            "nodeSelector": dict(cfg.installation.control_plane_node_selector),
            "tolerations": control_plane_tolerations(cfg.installation),
            "containers": [container],
            "volumes": [cfg.key_pair.volume(), cfg.trusted_bundle.volume()],
        }
        if cfg.key_pair.use_certificate_management():
            spec["initContainers"] = [cfg.key_pair.init_container(self.csr_image, self.gateway_name)]

        affinity = control_plane_affinity(cfg.installation, self.gateway_name, self.namespace)
        if affinity is not None:
            spec["affinity"] = affinity

        template = ManifestTemplates.pod_template(self.gateway_name, spec, self._annotations())
        return ManifestTemplates.deployment_template(
            self.gateway_name, self.namespace, cfg.installation.control_plane_replicas, template)
