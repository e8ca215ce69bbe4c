"""
Common Render Helpers

Installation settings and the manifest fragments shared by every feature
area: pull secret handling, secret copies, anti-affinity, tolerations and
hash annotations.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..certs.keypair import CertificateManagementSettings
from ..core.constants import CertificateConstants, ErrorMessages, KubernetesConstants, OperatorConstants
from ..core.exceptions import ConfigurationInvalidError
from ..core.utils import compute_hash

OPENSHIFT_PROVIDER = "OpenShift"
DEFAULT_CONTROL_PLANE_REPLICAS = 2

# Tolerations that let a pod run on every node regardless of taints
TOLERATE_ALL = [
    {"operator": "Exists", "effect": "NoSchedule"},
    {"operator": "Exists", "effect": "NoExecute"},
    {"key": "CriticalAddonsOnly", "operator": "Exists"},
]

TOLERATE_CONTROL_PLANE = [
    {"key": "node-role.kubernetes.io/master", "effect": "NoSchedule"},
    {"key": "node-role.kubernetes.io/control-plane", "effect": "NoSchedule"},
]

# Server-assigned metadata dropped when a secret is copied
_COPY_METADATA_DROP = ("resourceVersion", "uid", "creationTimestamp", "generation",
                       "managedFields", "ownerReferences", "selfLink")


@dataclass(frozen=True)
class InstallationSpec:
    """The installation-wide settings renderers and the certificate manager read"""

    variant: str = OperatorConstants.TIGERA_SECURE_VARIANT
    kubernetes_provider: str = ""
    registry: str = ""
    image_path: str = ""
    image_prefix: str = ""
    image_pull_secrets: tuple = ()
    control_plane_replicas: int = DEFAULT_CONTROL_PLANE_REPLICAS
    control_plane_node_selector: Dict[str, str] = field(default_factory=dict, hash=False)
    control_plane_tolerations: tuple = field(default=(), hash=False)
    certificate_management: Optional[CertificateManagementSettings] = None

    @property
    def openshift(self) -> bool:
        return self.kubernetes_provider == OPENSHIFT_PROVIDER

    def validate(self) -> None:
        if self.control_plane_replicas < 1:
            raise ConfigurationInvalidError(
                ErrorMessages.ConfigError.INVALID_REPLICAS.format(replicas=self.control_plane_replicas)
            )

    @classmethod
    def from_resource(cls, installation: Dict[str, Any]) -> "InstallationSpec":
        """
        Build settings from an Installation resource.

        The computed ``status.computed`` spec wins over ``spec`` when the
        installation controller has populated it.
        """
        spec = (installation.get("status") or {}).get("computed") or installation.get("spec") or {}
        replicas = spec.get("controlPlaneReplicas")
        return cls(
            variant=spec.get("variant") or OperatorConstants.CALICO_VARIANT,
            kubernetes_provider=spec.get("kubernetesProvider") or "",
            registry=spec.get("registry") or "",
            image_path=spec.get("imagePath") or "",
            image_prefix=spec.get("imagePrefix") or "",
            image_pull_secrets=tuple(ref["name"] for ref in spec.get("imagePullSecrets") or []),
            control_plane_replicas=DEFAULT_CONTROL_PLANE_REPLICAS if replicas is None else int(replicas),
            control_plane_node_selector=dict(spec.get("controlPlaneNodeSelector") or {}),
            control_plane_tolerations=tuple(spec.get("controlPlaneTolerations") or ()),
            certificate_management=CertificateManagementSettings.from_spec(spec.get("certificateManagement")),
        )


def pull_secret_references(pull_secrets: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """``imagePullSecrets`` entries for the given secrets, sorted by name"""
    names = sorted({secret["metadata"]["name"] for secret in pull_secrets})
    return [{"name": name} for name in names]


def copy_to_namespace(namespace: str, *secrets: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Copies of ``secrets`` placed in ``namespace``.

    Server-assigned metadata, owner references and annotations are dropped
    so the copy only carries what the operator intends to own.
    """
    copies = []
    for secret in secrets:
        duplicate = copy.deepcopy(secret)
        duplicate.setdefault("apiVersion", KubernetesConstants.CORE_API_VERSION)
        duplicate.setdefault("kind", KubernetesConstants.Kind.SECRET.value)
        metadata = duplicate.setdefault("metadata", {})
        for key in _COPY_METADATA_DROP:
            metadata.pop(key, None)
        metadata.pop("annotations", None)
        metadata["namespace"] = namespace
        copies.append(duplicate)
    return copies


def secret_hash_annotations(*secrets: Dict[str, Any]) -> Dict[str, str]:
    """One hash annotation per secret, keyed by secret name, over its data"""
    return {
        f"{CertificateConstants.HASH_ANNOTATION_PREFIX}{secret['metadata']['name']}":
            compute_hash(secret.get("data") or {})
        for secret in secrets
    }


def pod_anti_affinity(app_name: str, namespace: str) -> Dict[str, Any]:
    """Preferred anti-affinity spreading pods labelled k8s-app=<app_name> across hosts"""
    return {
        "podAntiAffinity": {
            "preferredDuringSchedulingIgnoredDuringExecution": [
                {
                    "weight": 1,
                    "podAffinityTerm": {
                        "labelSelector": {
                            "matchExpressions": [
                                {
                                    "key": KubernetesConstants.K8S_APP_LABEL,
                                    "operator": "In",
                                    "values": [app_name],
                                }
                            ]
                        },
                        "namespaces": [namespace],
                        "topologyKey": KubernetesConstants.HOSTNAME_TOPOLOGY_KEY,
                    },
                }
            ]
        }
    }


def control_plane_affinity(installation: InstallationSpec, app_name: str,
                           namespace: str) -> Optional[Dict[str, Any]]:
    """Anti-affinity for multi-replica control plane workloads, None for a single replica"""
    if installation.control_plane_replicas > 1:
        return pod_anti_affinity(app_name, namespace)
    return None


def control_plane_tolerations(installation: InstallationSpec) -> List[Dict[str, Any]]:
    return [copy.deepcopy(toleration) for toleration in installation.control_plane_tolerations]


def pod_security_policy_rule(name: str) -> Dict[str, Any]:
    """RBAC rule granting ``use`` of the named PodSecurityPolicy"""
    return {
        "apiGroups": [KubernetesConstants.POLICY_API_GROUP],
        "resources": ["podsecuritypolicies"],
        "verbs": [KubernetesConstants.RBACVerb.USE.value],
        "resourceNames": [name],
    }


def grants_pod_security_policy(installation: InstallationSpec, use_psp: bool) -> bool:
    return use_psp and not installation.openshift
