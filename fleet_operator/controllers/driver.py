"""
Feature Controller Base

Shared plumbing of the per-feature controllers: reading the inbound custom
resources, gating on the license and mapping pipeline errors to outcomes.
Every pass runs the whole pipeline from the start.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Union

from ..core.client import ClusterClient
from ..core.config import OperatorSettings
from ..core.constants import ErrorMessages, KubernetesConstants, OperatorConstants
from ..core.exceptions import (
    ApplyError,
    AuthorityProvisioningError,
    ClusterApiError,
    ConfigurationInvalidError,
    InputNotReadyError,
    MissingAuthorityError,
)
from ..reconcile.handler import ComponentHandler
from ..render.base import Component, RenderResult
from ..render.common import InstallationSpec
from .status import ReconcileOutcome, StatusManager, WorkloadRef

logger = logging.getLogger(__name__)

SECRET_API_VERSION = KubernetesConstants.CORE_API_VERSION
SECRET_KIND = KubernetesConstants.Kind.SECRET.value


class ReconcileRequest(NamedTuple):
    """Identity of the resource whose change triggered a pass"""
    name: str
    namespace: str = ""


class FeatureController(ABC):
    """
    Base class for the per-feature controllers.

    Subclasses implement ``run`` and raise the package exceptions for
    anything that stops the pass; ``reconcile`` turns them into outcomes.
    """

    feature = ""

    def __init__(self, client: ClusterClient, settings: Optional[OperatorSettings] = None,
                 status: Optional[StatusManager] = None,
                 license_api_ready: Callable[[], bool] = lambda: True):
        self.client = client
        self.settings = settings or OperatorSettings()
        self.status = status or StatusManager(self.feature, client)
        self.license_api_ready = license_api_ready

    def reconcile(self, request: ReconcileRequest) -> ReconcileOutcome:
        """Run one pass and report how it ended"""
        logger.info(f"Reconciling {self.feature} ({request.namespace}/{request.name})")
        try:
            return self.run(request)
        except InputNotReadyError as e:
            self.status.set_degraded(e.reason)
            if e.retry_after is None:
                return ReconcileOutcome.degraded(e.reason)
            return ReconcileOutcome.retry_after(e.retry_after, e.reason)
        except ConfigurationInvalidError as e:
            logger.error(f"Invalid {self.feature} configuration: {e}")
            self.status.set_degraded("Invalid configuration", str(e))
            return ReconcileOutcome.degraded(str(e))
        except MissingAuthorityError as e:
            self.status.set_degraded("Invalid certificate management configuration", str(e))
            return ReconcileOutcome.degraded(str(e))
        # The batch did not converge; the whole pipeline runs again later
        except AuthorityProvisioningError as e:
            self.status.set_degraded("Unable to create the operator CA", str(e))
            return ReconcileOutcome.degraded(str(e), self.settings.error_retry_seconds)
        except ApplyError as e:
            self.status.set_degraded("Error creating / updating / deleting resource", str(e))
            return ReconcileOutcome.degraded(str(e), self.settings.error_retry_seconds)
        except ClusterApiError as e:
            logger.error(f"Cluster request failed while reconciling {self.feature}: {e}")
            self.status.set_degraded("Error querying the cluster", str(e))
            return ReconcileOutcome.degraded(str(e), self.settings.error_retry_seconds)

    @abstractmethod
    def run(self, request: ReconcileRequest) -> ReconcileOutcome:
        """The feature pipeline: fetch, certificates, render, apply"""

    # Input helpers

    def get_singleton(self, api_version: str, kind: str, namespace: str = "") -> Optional[Dict[str, Any]]:
        """The first resource of a kind, or None when there is none"""
        items = self.client.list(api_version, kind, namespace)
        if len(items) > 1:
            logger.warning(f"Found {len(items)} {kind} resources, using {items[0]['metadata']['name']}")
        return items[0] if items else None

    def fetch_installation(self) -> InstallationSpec:
        """
        Raises:
            InputNotReadyError: If there is no Installation
            ConfigurationInvalidError: If it requests fewer than one replica
        """
        installation = self.client.get_optional(
            KubernetesConstants.OPERATOR_API_VERSION, OperatorConstants.Resource.INSTALLATION.value,
            OperatorConstants.DEFAULT_INSTANCE_NAME)
        if installation is None:
            raise InputNotReadyError(ErrorMessages.InputError.INSTALLATION_NOT_FOUND.value)
        spec = InstallationSpec.from_resource(installation)
        spec.validate()
        return spec

    def fetch_license_features(self) -> List[str]:
        """
        Features granted by the cluster license.

        Raises:
            InputNotReadyError: If the license API is not ready or no license exists
        """
        retry = self.settings.license_retry_seconds
        if not self.license_api_ready():
            raise InputNotReadyError(ErrorMessages.InputError.LICENSE_NOT_READY.value, retry)
        license_key = self.client.get_optional(
            KubernetesConstants.PROJECTCALICO_API_VERSION, OperatorConstants.Resource.LICENSE_KEY.value,
            OperatorConstants.DEFAULT_INSTANCE_NAME)
        if license_key is None:
            raise InputNotReadyError(ErrorMessages.InputError.LICENSE_NOT_FOUND.value, retry)
        return list((license_key.get("status") or {}).get("features") or [])

    def fetch_secret(self, name: str, namespace: str, retry_after: Optional[float] = None) -> Dict[str, Any]:
        """
        Raises:
            InputNotReadyError: If the secret does not exist
        """
        secret = self.client.get_optional(SECRET_API_VERSION, SECRET_KIND, name, namespace)
        if secret is None:
            raise InputNotReadyError(ErrorMessages.InputError.SECRET_NOT_AVAILABLE.format(name=name), retry_after)
        return secret

    def fetch_pull_secrets(self, installation: InstallationSpec) -> List[Dict[str, Any]]:
        """The installation's image pull secrets from the operator namespace"""
        return [
            self.fetch_secret(name, self.settings.operator_namespace, self.settings.short_retry_seconds)
            for name in installation.image_pull_secrets
        ]

    # Apply helpers

    def apply(self, owner: Optional[Dict[str, Any]], inventory_name: str,
              *components: Union[Component, RenderResult]) -> None:
        """
        Apply one or more components as a single batch.

        The objects of every component are merged into one tier-ordered
        result, so a namespace is created before the certificates placed in
        it and those before the workloads mounting them.

        Raises:
            ApplyError: If any object could not be applied
            ConfigurationInvalidError: If two components render the same identity
        """
        result = RenderResult()
        for component in components:
            result = result + (component.objects() if isinstance(component, Component) else component)
        handler = ComponentHandler(self.client, owner, self.settings, inventory_name=inventory_name)
        handler.create_or_update_or_delete(result)

    def finish(self, workloads: List[WorkloadRef]) -> ReconcileOutcome:
        """Clear the degraded state and wait for the workloads to become available"""
        self.status.clear_degraded()
        self.status.track_workloads(workloads)
        if not self.status.is_available():
            return ReconcileOutcome.retry_after(self.settings.availability_retry_seconds,
                                                f"Waiting for {self.feature} to become available")
        logger.info(f"{self.feature} is converged")
        return ReconcileOutcome.converged()
