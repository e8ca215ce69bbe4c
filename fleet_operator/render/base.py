"""
Base Renderer Classes and Common Logic

This module provides the descriptor and result types every renderer
produces, the Component interface and the manifest templates shared by
all feature areas.
"""

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple

from ..core.constants import ErrorMessages, KubernetesConstants
from ..core.exceptions import ConfigurationInvalidError

logger = logging.getLogger(__name__)

Kind = KubernetesConstants.Kind


class DependencyTier(IntEnum):
    """Apply order of a resource; lower tiers are applied first"""
    NAMESPACE = 0
    CONFIGURATION = 1
    ROLE = 2
    BINDING = 3
    SERVICE = 4
    WORKLOAD = 5

    @classmethod
    def for_kind(cls, kind: str) -> "DependencyTier":
        return DEFAULT_TIERS.get(kind, cls.CONFIGURATION)


DEFAULT_TIERS = {
    Kind.NAMESPACE.value: DependencyTier.NAMESPACE,
    Kind.SECRET.value: DependencyTier.CONFIGURATION,
    Kind.CONFIG_MAP.value: DependencyTier.CONFIGURATION,
    Kind.SERVICE_ACCOUNT.value: DependencyTier.CONFIGURATION,
    Kind.CLUSTER_ROLE.value: DependencyTier.ROLE,
    Kind.ROLE.value: DependencyTier.ROLE,
    Kind.CLUSTER_ROLE_BINDING.value: DependencyTier.BINDING,
    Kind.ROLE_BINDING.value: DependencyTier.BINDING,
    Kind.SERVICE.value: DependencyTier.SERVICE,
    Kind.DEPLOYMENT.value: DependencyTier.WORKLOAD,
    Kind.DAEMON_SET.value: DependencyTier.WORKLOAD,
    Kind.STATEFUL_SET.value: DependencyTier.WORKLOAD,
}


class ResourceKey(NamedTuple):
    """Identity of a resource across reconciliation passes"""
    kind: str
    namespace: str
    name: str

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind} {self.namespace}/{self.name}"
        return f"{self.kind} {self.name}"


@dataclass(frozen=True)
class ResourceDescriptor:
    """One desired (or to-be-removed) cluster object"""

    api_version: str
    kind: str
    name: str
    namespace: str
    body: Dict[str, Any] = field(compare=True, hash=False)
    tier: DependencyTier = DependencyTier.CONFIGURATION

    @classmethod
    def from_manifest(cls, manifest: Dict[str, Any], tier: Optional[DependencyTier] = None) -> "ResourceDescriptor":
        """
        Wrap a manifest, taking identity from its apiVersion, kind and metadata.

        Raises:
            ConfigurationInvalidError: If the manifest has no kind, apiVersion or name
        """
        metadata = manifest.get("metadata") or {}
        kind = manifest.get("kind")
        api_version = manifest.get("apiVersion")
        name = metadata.get("name")
        if not kind or not api_version or not name:
            raise ConfigurationInvalidError(f"manifest is missing apiVersion, kind or metadata.name: {metadata}")
        return cls(
            api_version=api_version,
            kind=kind,
            name=name,
            namespace=metadata.get("namespace") or "",
            body=copy.deepcopy(manifest),
            tier=tier if tier is not None else DependencyTier.for_kind(kind),
        )

    @property
    def key(self) -> ResourceKey:
        return ResourceKey(self.kind, self.namespace, self.name)

    @property
    def cluster_scoped(self) -> bool:
        return not self.namespace


def descriptors(*manifests: Dict[str, Any]) -> List[ResourceDescriptor]:
    """Wrap manifests with their default tiers"""
    return [ResourceDescriptor.from_manifest(manifest) for manifest in manifests]


@dataclass(frozen=True)
class RenderResult:
    """
    Resources to create (in apply order) and resources to delete.

    Construction validates that no identity appears twice, that the two
    sets are disjoint and that tiers in ``to_create`` never decrease.
    """

    to_create: Tuple[ResourceDescriptor, ...] = ()
    to_delete: Tuple[ResourceDescriptor, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "to_create", tuple(self.to_create))
        object.__setattr__(self, "to_delete", tuple(self.to_delete))
        self._validate()

    def _validate(self) -> None:
        created = set()
        previous_tier = DependencyTier.NAMESPACE
        for descriptor in self.to_create:
            if descriptor.key in created:
                raise ConfigurationInvalidError(
                    ErrorMessages.ConfigError.DUPLICATE_IDENTITY.format(identity=descriptor.key)
                )
            if descriptor.tier < previous_tier:
                raise ConfigurationInvalidError(
                    ErrorMessages.ConfigError.DEPENDENCY_ORDER.format(identity=descriptor.key)
                )
            created.add(descriptor.key)
            previous_tier = descriptor.tier

        deleted = set()
        for descriptor in self.to_delete:
            if descriptor.key in created:
                raise ConfigurationInvalidError(
                    ErrorMessages.ConfigError.OVERLAPPING_IDENTITY.format(identity=descriptor.key)
                )
            if descriptor.key in deleted:
                raise ConfigurationInvalidError(
                    ErrorMessages.ConfigError.DUPLICATE_IDENTITY.format(identity=descriptor.key)
                )
            deleted.add(descriptor.key)

    @classmethod
    def build(cls, to_create: Iterable[Dict[str, Any]] = (), to_delete: Iterable[Dict[str, Any]] = ()) -> "RenderResult":
        """
        Build a result from manifests.

        ``to_create`` is stably sorted by tier, so renderers may list
        manifests in reading order and rely on the tier tags for apply order.
        """
        create = sorted(descriptors(*to_create), key=lambda descriptor: descriptor.tier)
        return cls(to_create=tuple(create), to_delete=tuple(descriptors(*to_delete)))

    def create_keys(self) -> List[ResourceKey]:
        return [descriptor.key for descriptor in self.to_create]

    def delete_keys(self) -> List[ResourceKey]:
        return [descriptor.key for descriptor in self.to_delete]

    def get(self, kind: str, name: str, namespace: str = "") -> Optional[Dict[str, Any]]:
        """Manifest of a resource in ``to_create``, or None"""
        key = ResourceKey(kind, namespace, name)
        for descriptor in self.to_create:
            if descriptor.key == key:
                return descriptor.body
        return None

    def __add__(self, other: "RenderResult") -> "RenderResult":
        """Merge two results, re-establishing tier order"""
        create = sorted(self.to_create + other.to_create, key=lambda descriptor: descriptor.tier)
        return RenderResult(to_create=tuple(create), to_delete=self.to_delete + other.to_delete)


class Component(ABC):
    """Base class for all renderers"""

    def __init__(self):
        self.logger = logger

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    def objects(self) -> RenderResult:
        """Render the desired state for this component"""

    def ready(self) -> bool:
        """Whether every input the component needs has been resolved"""
        return True


class ManifestTemplates:
    """Templates for Kubernetes manifests"""

    @staticmethod
    def _labels(app_name: Optional[str] = None) -> Dict[str, str]:
        labels = {KubernetesConstants.MANAGED_BY_LABEL: KubernetesConstants.OPERATOR_COMPONENT}
        if app_name:
            labels[KubernetesConstants.K8S_APP_LABEL] = app_name
        return labels

    @staticmethod
    def namespace_template(name: str, pod_security: Optional[str] = None,
                           openshift: bool = False) -> Dict[str, Any]:
        """Namespace manifest template"""
        labels = {KubernetesConstants.NAME_LABEL: name}
        annotations = {}
        if pod_security:
            labels[KubernetesConstants.PSS_ENFORCE_LABEL] = pod_security
            labels[KubernetesConstants.PSS_ENFORCE_VERSION_LABEL] = "latest"
        if openshift:
            annotations["openshift.io/node-selector"] = ""
        manifest = {
            'apiVersion': KubernetesConstants.CORE_API_VERSION,
            'kind': Kind.NAMESPACE.value,
            'metadata': {
                'name': name,
                'labels': labels,
            }
        }
        if annotations:
            manifest['metadata']['annotations'] = annotations
        return manifest

    @staticmethod
    def service_account_template(name: str, namespace: str) -> Dict[str, Any]:
        """ServiceAccount manifest template"""
        return {
            'apiVersion': KubernetesConstants.CORE_API_VERSION,
            'kind': Kind.SERVICE_ACCOUNT.value,
            'metadata': {
                'name': name,
                'namespace': namespace
            }
        }

    @staticmethod
    def cluster_role_template(name: str, rules: List[Dict[str, Any]]) -> Dict[str, Any]:
        """ClusterRole manifest template"""
        return {
            'apiVersion': KubernetesConstants.RBAC_API_VERSION,
            'kind': Kind.CLUSTER_ROLE.value,
            'metadata': {
                'name': name
            },
            'rules': rules
        }

    @staticmethod
    def cluster_role_binding_template(name: str, role_name: str,
                                      service_accounts: List[Tuple[str, str]]) -> Dict[str, Any]:
        """ClusterRoleBinding manifest template binding (name, namespace) service accounts"""
        return {
            'apiVersion': KubernetesConstants.RBAC_API_VERSION,
            'kind': Kind.CLUSTER_ROLE_BINDING.value,
            'metadata': {
                'name': name
            },
            'roleRef': {
                'apiGroup': KubernetesConstants.RBAC_API_GROUP,
                'kind': Kind.CLUSTER_ROLE.value,
                'name': role_name
            },
            'subjects': [
                {'kind': Kind.SERVICE_ACCOUNT.value, 'name': account, 'namespace': account_namespace}
                for account, account_namespace in service_accounts
            ]
        }

    @staticmethod
    def role_template(name: str, namespace: str, rules: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Role manifest template"""
        return {
            'apiVersion': KubernetesConstants.RBAC_API_VERSION,
            'kind': Kind.ROLE.value,
            'metadata': {
                'name': name,
                'namespace': namespace
            },
            'rules': rules
        }

    @staticmethod
    def role_binding_template(name: str, namespace: str, role_name: str,
                              service_account_name: str) -> Dict[str, Any]:
        """RoleBinding manifest template"""
        return {
            'apiVersion': KubernetesConstants.RBAC_API_VERSION,
            'kind': Kind.ROLE_BINDING.value,
            'metadata': {
                'name': name,
                'namespace': namespace
            },
            'roleRef': {
                'apiGroup': KubernetesConstants.RBAC_API_GROUP,
                'kind': Kind.ROLE.value,
                'name': role_name
            },
            'subjects': [{
                'kind': Kind.SERVICE_ACCOUNT.value,
                'name': service_account_name,
                'namespace': namespace
            }]
        }

    @staticmethod
    def service_template(name: str, namespace: str, app_name: str,
                         ports: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Service manifest template selecting pods labelled k8s-app=<app_name>"""
        return {
            'apiVersion': KubernetesConstants.CORE_API_VERSION,
            'kind': Kind.SERVICE.value,
            'metadata': {
                'name': name,
                'namespace': namespace,
                'labels': ManifestTemplates._labels(app_name)
            },
            'spec': {
                'selector': {KubernetesConstants.K8S_APP_LABEL: app_name},
                'ports': ports
            }
        }

    @staticmethod
    def secret_stub(name: str, namespace: str) -> Dict[str, Any]:
        """Secret identity without data, for delete lists"""
        return {
            'apiVersion': KubernetesConstants.CORE_API_VERSION,
            'kind': Kind.SECRET.value,
            'metadata': {
                'name': name,
                'namespace': namespace
            }
        }

    @staticmethod
    def pod_template(app_name: str, spec: Dict[str, Any],
                     annotations: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Pod template labelled k8s-app=<app_name>"""
        metadata = {'labels': {KubernetesConstants.K8S_APP_LABEL: app_name}}
        if annotations:
            metadata['annotations'] = dict(sorted(annotations.items()))
        return {'metadata': metadata, 'spec': spec}

    @staticmethod
    def deployment_template(name: str, namespace: str, replicas: int,
                            template: Dict[str, Any]) -> Dict[str, Any]:
        """Deployment manifest template"""
        return {
            'apiVersion': KubernetesConstants.APPS_API_VERSION,
            'kind': Kind.DEPLOYMENT.value,
            'metadata': {
                'name': name,
                'namespace': namespace,
                'labels': ManifestTemplates._labels(name)
            },
            'spec': {
                'replicas': replicas,
                'selector': {'matchLabels': {KubernetesConstants.K8S_APP_LABEL: name}},
                'template': template
            }
        }

    @staticmethod
    def daemon_set_template(name: str, namespace: str, template: Dict[str, Any]) -> Dict[str, Any]:
        """DaemonSet manifest template"""
        return {
            'apiVersion': KubernetesConstants.APPS_API_VERSION,
            'kind': Kind.DAEMON_SET.value,
            'metadata': {
                'name': name,
                'namespace': namespace,
                'labels': ManifestTemplates._labels(name)
            },
            'spec': {
                'selector': {'matchLabels': {KubernetesConstants.K8S_APP_LABEL: name}},
                'template': template
            }
        }
