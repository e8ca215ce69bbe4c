"""
Deep Packet Inspection Controller

Runs the DPI DaemonSet while the license grants the feature and at least
one DeepPacketInspection resource exists; tears it down otherwise.
"""

import logging

from ..certs.authority import CertificateManager
from ..core.constants import ErrorMessages, KubernetesConstants, OperatorConstants
from ..core.exceptions import InputNotReadyError
from ..render.base import RenderResult
from ..render.certificate_management import CertificateManagementConfiguration
from ..render.dpi import DPIConfiguration, TyphaNodeTLS
from ..render import component_for
from .driver import FeatureController, ReconcileRequest
from .status import ReconcileOutcome

logger = logging.getLogger(__name__)

DPI_API_VERSION = f"{KubernetesConstants.CRD_PROJECTCALICO_API_GROUP}/v1"
NODE_DNS_NAME = "calico-node"


class DPIController(FeatureController):
    """Reconciles deep packet inspection"""

    feature = "deep-packet-inspection"

    @property
    def inventory_name(self) -> str:
        return "dpi"

    def run(self, request: ReconcileRequest) -> ReconcileOutcome:
        settings = self.settings

        dpi_resources = self.client.list(DPI_API_VERSION, OperatorConstants.Resource.DEEP_PACKET_INSPECTION.value)
        has_no_dpi_resource = not dpi_resources
        if has_no_dpi_resource:
            logger.info("No DeepPacketInspection resource found")
        else:
            self.status.on_cr_found()

        features = self.fetch_license_features()
        has_no_license = OperatorConstants.Feature.DEEP_PACKET_INSPECTION.value not in features

        installation = self.fetch_installation()
        if installation.variant != OperatorConstants.TIGERA_SECURE_VARIANT:
            raise InputNotReadyError(ErrorMessages.InputError.INSTALLATION_NOT_READY.value,
                                     settings.short_retry_seconds)
        pull_secrets = self.fetch_pull_secrets(installation)

        active = not (has_no_license or has_no_dpi_resource)
        typha_node_tls = None
        es_secrets = []
        certificates = RenderResult()
        if active:
            certificate_manager = CertificateManager.create(self.client, installation, settings)
            node_secret = self._node_key_pair(certificate_manager, installation)
            gateway_certificate = certificate_manager.get_certificate(
                settings.es_gateway_public_cert_secret, settings.operator_namespace)
            if gateway_certificate is None:
                raise InputNotReadyError(ErrorMessages.InputError.SECRET_NOT_AVAILABLE.format(
                    name=settings.es_gateway_public_cert_secret), settings.short_retry_seconds)
            bundle = certificate_manager.create_trusted_bundle(gateway_certificate)
            typha_node_tls = TyphaNodeTLS(trusted_bundle=bundle, node_secret=node_secret,
                                          typha_common_name=settings.typha_common_name)
            es_secrets = [self.fetch_secret(settings.dpi_es_user_secret, settings.operator_namespace,
                                            settings.short_retry_seconds)]

            certificates = component_for(CertificateManagementConfiguration(
                installation=installation,
                namespace=settings.dpi_namespace,
                service_accounts=[(settings.dpi_name, settings.dpi_namespace)],
                shared_key_pairs=[node_secret],
                trusted_bundle=bundle,
                settings=settings,
            ))

        component = component_for(DPIConfiguration(
            installation=installation,
            typha_node_tls=typha_node_tls,
            settings=settings,
            pull_secrets=pull_secrets,
            es_secrets=es_secrets,
            has_no_license=has_no_license,
            has_no_dpi_resource=has_no_dpi_resource,
        ))

        # Certificates of an earlier active pass are pruned when inactive
        self.apply(None, self.inventory_name, component, certificates)

        if has_no_license:
            message = ErrorMessages.InputError.FEATURE_NOT_ACTIVE.value
            logger.info("Deep packet inspection is not part of this license")
            self.status.set_degraded(message)
            return ReconcileOutcome.degraded(message)
        if has_no_dpi_resource:
            self.status.on_cr_not_found()
            return ReconcileOutcome.converged()

        return self.finish([(KubernetesConstants.APPS_API_VERSION, KubernetesConstants.Kind.DAEMON_SET.value,
                             settings.dpi_namespace, settings.dpi_name)])

    def _node_key_pair(self, certificate_manager: CertificateManager, installation):
        """The calico-node key pair DPI presents to Typha"""
        settings = self.settings
        if installation.certificate_management is not None:
            return certificate_manager.get_or_create_key_pair(
                settings.node_secret_name, settings.operator_namespace, [NODE_DNS_NAME])
        node_secret = certificate_manager.get_key_pair(settings.node_secret_name, settings.operator_namespace)
        if node_secret is None:
            raise InputNotReadyError(ErrorMessages.InputError.SECRET_NOT_AVAILABLE.format(
                name=settings.node_secret_name), settings.short_retry_seconds)
        return node_secret
