"""
Cluster Connection Controller

On a managed cluster, runs the guardian tunnel client described by the
ManagementClusterConnection. On a management cluster, makes sure the
tunnel server secret exists.
"""

import logging
from typing import Any, Dict

from ..certs.authority import CertificateManager
from ..core.constants import ErrorMessages, KubernetesConstants, OperatorConstants
from ..core.exceptions import ConfigurationInvalidError, InputNotReadyError
from ..render import component_for
from ..render.base import RenderResult
from ..render.certificate_management import CertificateManagementConfiguration
from ..render.guardian import GuardianConfiguration
from ..render.passthrough import PassthroughConfiguration
from .driver import FeatureController, ReconcileRequest
from .status import ReconcileOutcome

logger = logging.getLogger(__name__)

TUNNEL_SERVER_DNS_NAME = "voltron"


class ClusterConnectionController(FeatureController):
    """Reconciles the management cluster connection"""

    feature = "management-cluster-connection"

    def run(self, request: ReconcileRequest) -> ReconcileOutcome:
        settings = self.settings
        installation = self.fetch_installation()

        management_cluster = self.get_singleton(
            KubernetesConstants.OPERATOR_API_VERSION, OperatorConstants.Resource.MANAGEMENT_CLUSTER.value)
        connection = self.get_singleton(
            KubernetesConstants.OPERATOR_API_VERSION, OperatorConstants.Resource.MANAGEMENT_CLUSTER_CONNECTION.value)

        if connection is not None and management_cluster is not None:
            raise ConfigurationInvalidError(ErrorMessages.ConfigError.MANAGEMENT_CLUSTER_CONFLICT.value)

        certificate_manager = CertificateManager.create(self.client, installation, settings)

        if connection is None:
            # Prune a guardian left over from an earlier connection
            self.apply(None, "guardian", RenderResult())
            if management_cluster is not None:
                self._ensure_tunnel_secret(management_cluster, certificate_manager)
                return ReconcileOutcome.converged()
            logger.info("No ManagementClusterConnection found")
            self.status.on_cr_not_found()
            return ReconcileOutcome.converged()

        self.status.on_cr_found()
        pull_secrets = self.fetch_pull_secrets(installation)
        tunnel_secret = self.fetch_secret(settings.guardian_secret_name, settings.operator_namespace,
                                          settings.short_retry_seconds)

        bundle = certificate_manager.create_trusted_bundle()
        for secret_name in (settings.packet_capture_cert_secret, settings.prometheus_tls_secret):
            certificate = certificate_manager.get_certificate(secret_name, settings.operator_namespace)
            if certificate is None:
                raise InputNotReadyError(ErrorMessages.InputError.SECRET_NOT_AVAILABLE.format(name=secret_name),
                                         settings.short_retry_seconds)
            bundle = bundle.add_certificates(certificate)

        spec = connection.get("spec") or {}
        guardian = component_for(GuardianConfiguration(
            installation=installation,
            url=spec.get("managementClusterAddr", ""),
            tunnel_secret=tunnel_secret,
            trusted_bundle=bundle,
            settings=settings,
            pull_secrets=pull_secrets,
            tunnel_ca_type=(spec.get("tls") or {}).get("ca") or "Tigera",
        ))
        certificates = component_for(CertificateManagementConfiguration(
            installation=installation,
            namespace=settings.guardian_namespace,
            service_accounts=[(settings.guardian_name, settings.guardian_namespace)],
            trusted_bundle=bundle,
            settings=settings,
        ))

        self.apply(connection, "guardian", guardian, certificates)

        return self.finish([(KubernetesConstants.APPS_API_VERSION, KubernetesConstants.Kind.DEPLOYMENT.value,
                             settings.guardian_namespace, settings.guardian_name)])

    def _ensure_tunnel_secret(self, management_cluster: Dict[str, Any],
                              certificate_manager: CertificateManager) -> None:
        """Store a self-signed tunnel server key pair unless one already exists"""
        settings = self.settings
        key_pair = certificate_manager.get_or_create_self_signed_key_pair(
            settings.tunnel_secret_name, settings.operator_namespace, [TUNNEL_SERVER_DNS_NAME])
        component = component_for(PassthroughConfiguration(
            to_create=[key_pair.secret(settings.operator_namespace)]))
        self.apply(management_cluster, "tunnel", component)
