"""
Cluster Client Module

Generic object access to the cluster API. Every reader and writer in the
operator goes through the ClusterClient interface so the same pipeline runs
against a live cluster or the in-memory store used in tests.
"""

import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from kubernetes import client, config
from kubernetes.config.config_exception import ConfigException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import (
    ConflictError,
    DynamicApiError,
    NotFoundError as DynamicNotFoundError,
    ResourceNotFoundError,
)

from .exceptions import (
    AlreadyExistsError,
    AuthenticationError,
    ClusterApiError,
    NotFoundError,
)
from .utils import disable_ssl_warnings, mask_sensitive_info, validate_cluster_url

logger = logging.getLogger(__name__)


def object_reference(api_version: str, kind: str, name: str, namespace: str = "") -> str:
    """Human readable identity used in log and error messages"""
    if namespace:
        return f"{api_version}/{kind} {namespace}/{name}"
    return f"{api_version}/{kind} {name}"


class ClusterClient(ABC):
    """
    Cluster API capability: get, list, create, replace and delete on
    dict-shaped manifests keyed by (apiVersion, kind, namespace, name).

    Implementations raise NotFoundError for missing objects,
    AlreadyExistsError when a create collides with an existing identity and
    ClusterApiError for any other rejected request.
    """

    @abstractmethod
    def get(self, api_version: str, kind: str, name: str, namespace: str = "") -> Dict[str, Any]:
        """Fetch one object"""

    @abstractmethod
    def list(self, api_version: str, kind: str, namespace: str = "",
             label_selector: Optional[str] = None) -> List[Dict[str, Any]]:
        """List objects of a kind, optionally within a namespace"""

    @abstractmethod
    def create(self, manifest: Dict[str, Any]) -> Dict[str, Any]:
        """Create an object and return the stored version"""

    @abstractmethod
    def replace(self, manifest: Dict[str, Any]) -> Dict[str, Any]:
        """Replace an existing object and return the stored version"""

    @abstractmethod
    def delete(self, api_version: str, kind: str, name: str, namespace: str = "") -> None:
        """Delete one object"""

    def get_optional(self, api_version: str, kind: str, name: str,
                     namespace: str = "") -> Optional[Dict[str, Any]]:
        """Fetch one object, returning None when it does not exist"""
        try:
            return self.get(api_version, kind, name, namespace)
        except NotFoundError:
            return None


class ClusterAuth:
    """Handles cluster authentication and API client construction"""

    def __init__(self, skip_tls: bool = False):
        """
        Initialize cluster authentication handler

        Args:
            skip_tls: Whether to skip TLS verification for requests
        """
        self.skip_tls = skip_tls
        self.cluster_url = None
        self.api_client = None

    def configure_auth(self, cluster_url: Optional[str] = None, token: Optional[str] = None) -> client.ApiClient:
        """
        Configure authentication with provided URL and token, or discover from context

        Args:
            cluster_url: API server URL (optional)
            token: Bearer token (optional)

        Returns:
            Configured kubernetes ApiClient

        Raises:
            AuthenticationError: If authentication configuration fails
            ConfigurationError: If provided parameters are invalid
        """
        if cluster_url and token:
            validate_cluster_url(cluster_url)
            logger.info("Using provided cluster URL and token for authentication")
            self.cluster_url = cluster_url
            self.api_client = self._configure_with_token(cluster_url, token)
        else:
            self.api_client = self._discover_from_context()

        return self.api_client

    def _configure_with_token(self, cluster_url: str, token: str) -> client.ApiClient:
        configuration = client.Configuration()
        configuration.host = cluster_url
        configuration.api_key = {"authorization": token}
        configuration.api_key_prefix = {"authorization": "Bearer"}

        if self.skip_tls:
            configuration.verify_ssl = False
            configuration.ssl_ca_cert = None
            disable_ssl_warnings()

        logger.info(f"Configured Kubernetes client for {mask_sensitive_info(cluster_url, token)}")
        return client.ApiClient(configuration)

    def _discover_from_context(self) -> client.ApiClient:
        """
        Discover authentication from in-cluster config, falling back to kubeconfig

        Raises:
            AuthenticationError: If neither source is usable
        """
        try:
            config.load_incluster_config()
            self.cluster_url = (
                f"https://{os.getenv('KUBERNETES_SERVICE_HOST')}:"
                f"{os.getenv('KUBERNETES_SERVICE_PORT', '443')}"
            )
            logger.info("Successfully loaded in-cluster config")
        except ConfigException as incluster_error:
            logger.debug(f"In-cluster config unavailable: {incluster_error}")
            try:
                config.load_kube_config()
                logger.info("Successfully loaded kubeconfig")
            except (ConfigException, OSError) as kubeconfig_error:
                raise AuthenticationError(
                    f"Failed to configure authentication: {kubeconfig_error}"
                ) from kubeconfig_error

        api_client = client.ApiClient()
        if self.skip_tls:
            api_client.configuration.verify_ssl = False
            api_client.configuration.ssl_ca_cert = None
            disable_ssl_warnings()
        return api_client

    def is_authenticated(self) -> bool:
        """Check if authentication is properly configured"""
        return self.api_client is not None


class KubernetesClusterClient(ClusterClient):
    """ClusterClient backed by the kubernetes dynamic client"""

    def __init__(self, api_client: client.ApiClient):
        self.dynamic = DynamicClient(api_client)

    @classmethod
    def from_context(cls, cluster_url: Optional[str] = None, token: Optional[str] = None,
                     skip_tls: bool = False) -> "KubernetesClusterClient":
        """Build a client from explicit credentials or the ambient context"""
        return cls(ClusterAuth(skip_tls=skip_tls).configure_auth(cluster_url, token))

    def _resource(self, api_version: str, kind: str):
        try:
            return self.dynamic.resources.get(api_version=api_version, kind=kind)
        except ResourceNotFoundError as e:
            raise ClusterApiError(f"Resource type {api_version}/{kind} is not served by the cluster: {e}",
                                  status=404, reason="ResourceTypeNotFound") from e

    @staticmethod
    def _translate(error: DynamicApiError, reference: str, creating: bool = False) -> ClusterApiError:
        if isinstance(error, DynamicNotFoundError):
            return NotFoundError(f"{reference} not found")
        # A conflict on create is always a name collision
        if creating and isinstance(error, ConflictError):
            return AlreadyExistsError(f"{reference} already exists")
        return ClusterApiError(f"{reference}: {error.summary()}",
                               status=getattr(error, "status", None),
                               reason=getattr(error, "reason", None))

    @staticmethod
    def _identity(manifest: Dict[str, Any]):
        metadata = manifest.get("metadata", {})
        return (manifest["apiVersion"], manifest["kind"],
                metadata["name"], metadata.get("namespace", ""))

    def get(self, api_version: str, kind: str, name: str, namespace: str = "") -> Dict[str, Any]:
        reference = object_reference(api_version, kind, name, namespace)
        resource = self._resource(api_version, kind)
        try:
            return resource.get(name=name, namespace=namespace or None).to_dict()
        except DynamicApiError as e:
            raise self._translate(e, reference) from e

    def list(self, api_version: str, kind: str, namespace: str = "",
             label_selector: Optional[str] = None) -> List[Dict[str, Any]]:
        reference = object_reference(api_version, kind, "*", namespace)
        resource = self._resource(api_version, kind)
        try:
            result = resource.get(namespace=namespace or None, label_selector=label_selector)
        except DynamicApiError as e:
            raise self._translate(e, reference) from e
        return result.to_dict().get("items", [])

    def create(self, manifest: Dict[str, Any]) -> Dict[str, Any]:
        api_version, kind, name, namespace = self._identity(manifest)
        reference = object_reference(api_version, kind, name, namespace)
        resource = self._resource(api_version, kind)
        try:
            created = resource.create(body=manifest, namespace=namespace or None)
        except DynamicApiError as e:
            raise self._translate(e, reference, creating=True) from e
        logger.debug(f"Created {reference}")
        return created.to_dict()

    def replace(self, manifest: Dict[str, Any]) -> Dict[str, Any]:
        api_version, kind, name, namespace = self._identity(manifest)
        reference = object_reference(api_version, kind, name, namespace)
        resource = self._resource(api_version, kind)
        try:
            replaced = resource.replace(body=manifest, name=name, namespace=namespace or None)
        except DynamicApiError as e:
            raise self._translate(e, reference) from e
        logger.debug(f"Replaced {reference}")
        return replaced.to_dict()

    def delete(self, api_version: str, kind: str, name: str, namespace: str = "") -> None:
        reference = object_reference(api_version, kind, name, namespace)
        resource = self._resource(api_version, kind)
        try:
            resource.delete(name=name, namespace=namespace or None)
        except DynamicApiError as e:
            raise self._translate(e, reference) from e
        logger.debug(f"Deleted {reference}")
